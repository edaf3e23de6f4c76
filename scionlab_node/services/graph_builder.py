"""
Service graph construction

Derives the SCION role services, the VPN tunnel and the aggregate lab target
from a validated bundle and ISD-AS identifier. The dependency structure is
kept as a networkx DiGraph (edge u -> v: u must be started before v) so the
start order and the graph invariants can be checked before anything is
handed to the supervisor.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import networkx as nx

from ..bundle.models import ConfigBundle
from ..config import (CERT_DIR, Executables, RUNTIME_GEN_ROOT, SCION_GROUP,
                      SCION_USER, SCRATCH_ROOT, STATE_DIR)
from ..errors import ValidationError
from .descriptors import (RestartPolicy, ServiceDescriptor, SystemAccount,
                          TargetDescriptor, TmpfilesRule)
from .hooks import scratch_reset_hook, tls_bootstrap_hook
from .isd_as import ISDAS
from .vpn import tunnel_descriptor

logger = logging.getLogger(__name__)


LAB_TARGET = "scionlab"
NETWORK_ONLINE = "network-online.target"
DOCUMENTATION = ("https://www.scionlab.org",)
ENVIRONMENT = (("TZ", "UTC"), ("GODEBUG", "cgocheck=0"))
RESTART_POLICY = RestartPolicy(kind="on-failure", backoff_seconds=10)

DISPATCHER = "dispatcher"
BORDER_ROUTER = "border-router"
CONTROL_SERVICE = "control-service"
DAEMON = "daemon"


@dataclass(frozen=True)
class RoleTemplate:
    """Fixed per-role template, paths relative to the runtime gen root"""
    role: str
    description: str
    binary: str
    config_template: str
    scratch_dir: Optional[str] = None
    needs_tls: bool = False

    @property
    def base_name(self) -> str:
        return f"scion-{self.role}"

    def config_file(self, gen_root: str, ia: ISDAS) -> str:
        relative = self.config_template.format(isd=ia.isd, as_=ia.as_id, ia=ia.file_format)
        return f"{gen_root.rstrip('/')}/{relative}"


ROLE_TEMPLATES: Tuple[RoleTemplate, ...] = (
    RoleTemplate(DISPATCHER, "SCION Dispatcher", "godispatcher",
                 "ISD{isd}/AS{as_}/dispatcher/disp.toml",
                 scratch_dir=f"{SCRATCH_ROOT}/dispatcher"),
    RoleTemplate(BORDER_ROUTER, "SCION Border Router", "border",
                 "ISD{isd}/AS{as_}/br{ia}/br.toml"),
    RoleTemplate(CONTROL_SERVICE, "SCION Control Service", "cs",
                 "ISD{isd}/AS{as_}/cs{ia}/cs.toml",
                 needs_tls=True),
    RoleTemplate(DAEMON, "SCION Daemon", "sciond",
                 "ISD{isd}/AS{as_}/endhost/sd.toml",
                 scratch_dir=f"{SCRATCH_ROOT}/sciond"),
)

TMPFILES_DIRS = (
    SCRATCH_ROOT,
    f"{SCRATCH_ROOT}/dispatcher",
    f"{SCRATCH_ROOT}/sciond",
    STATE_DIR,
    f"{STATE_DIR}/logs",
    f"{STATE_DIR}/traces",
    f"{STATE_DIR}/gen",
    f"{STATE_DIR}/gen-cache",
    CERT_DIR,
)


@dataclass(frozen=True)
class ServiceGraph:
    """Complete, validated set of units for one node"""
    identifier: ISDAS
    roles: Dict[str, ServiceDescriptor]
    tunnel: ServiceDescriptor
    target: TargetDescriptor
    tmpfiles: Tuple[TmpfilesRule, ...]
    account: SystemAccount
    graph: nx.DiGraph
    bundle: ConfigBundle
    executables: Executables

    @property
    def services(self) -> List[ServiceDescriptor]:
        """Tunnel followed by the role services in start order"""
        by_unit = {s.unit_name: s for s in self.roles.values()}
        by_unit[self.tunnel.unit_name] = self.tunnel
        return [by_unit[u] for u in self.start_order() if u in by_unit]

    def start_order(self) -> List[str]:
        """Deterministic topological order of every unit"""
        return list(nx.lexicographical_topological_sort(self.graph))

    def dependencies(self, unit: str) -> List[str]:
        """Units that must be started before unit"""
        return sorted(self.graph.predecessors(unit))

    def dependents(self, unit: str) -> List[str]:
        return sorted(self.graph.successors(unit))


class ServiceGraphBuilder:
    """Build the service graph for a SCIONLab node"""

    def __init__(self,
                 executables: Optional[Executables] = None,
                 gen_root: str = RUNTIME_GEN_ROOT,
                 working_directory: str = STATE_DIR,
                 cert_dir: str = CERT_DIR):
        """
        Args:
            executables: Absolute paths of the programs units refer to
            gen_root: Runtime location of the configuration tree
            working_directory: Working directory of every role service
            cert_dir: Where the control service keeps its TLS material
        """
        self.executables = executables or Executables()
        self.gen_root = gen_root
        self.working_directory = working_directory
        self.cert_dir = cert_dir

    def build(self, bundle: ConfigBundle, identifier: Optional[str]) -> ServiceGraph:
        """
        Build the service graph

        Args:
            bundle: Bundle with both paths set
            identifier: ISD-AS identifier, e.g. ``16-ffaa_0_1002``

        Returns:
            Fully wired and checked ServiceGraph

        Raises:
            ValidationError: naming the first missing or invalid input
        """
        self._validate(bundle, identifier)
        ia = ISDAS.parse(identifier)

        tunnel = tunnel_descriptor(self.executables)
        roles = {}
        for template in ROLE_TEMPLATES:
            roles[template.role] = self._role_descriptor(template, ia, tunnel, roles.get(DISPATCHER))

        target = TargetDescriptor(
            name=LAB_TARGET,
            description="SCIONLab Service",
            requires=frozenset({tunnel.unit_name}),
            after=frozenset({tunnel.unit_name}),
            wants=frozenset(s.unit_name for s in roles.values()),
        )

        graph = self._dependency_graph(roles, tunnel, target)
        self._check_invariants(graph, roles, tunnel, target)

        logger.info("Built service graph for %s: %s", ia,
                    ", ".join(nx.lexicographical_topological_sort(graph)))

        return ServiceGraph(
            identifier=ia,
            roles=roles,
            tunnel=tunnel,
            target=target,
            tmpfiles=tuple(TmpfilesRule(path=p, user=SCION_USER, group=SCION_GROUP)
                           for p in TMPFILES_DIRS),
            account=SystemAccount(user=SCION_USER, group=SCION_GROUP,
                                  description="SCIONLab user"),
            graph=nx.freeze(graph),
            bundle=bundle,
            executables=self.executables,
        )

    def _validate(self, bundle: ConfigBundle, identifier: Optional[str]):
        if bundle is None:
            raise ValidationError('bundle')
        if bundle.vpn_config_path is None:
            raise ValidationError('vpn_config_path')
        if bundle.config_dir is None:
            raise ValidationError('config_dir')
        if identifier is None:
            raise ValidationError('identifier')

    def _role_descriptor(self,
                         template: RoleTemplate,
                         ia: ISDAS,
                         tunnel: ServiceDescriptor,
                         dispatcher: Optional[ServiceDescriptor]) -> ServiceDescriptor:
        config_file = template.config_file(self.gen_root, ia)

        hooks = []
        if template.scratch_dir:
            hooks.append(scratch_reset_hook(self.executables, template.scratch_dir))
        if template.needs_tls:
            hooks.append(tls_bootstrap_hook(self.executables, self.cert_dir))

        depends_on = frozenset()
        if template.role != DISPATCHER:
            depends_on = frozenset({dispatcher.unit_name})

        return ServiceDescriptor(
            base_name=template.base_name,
            instance_suffix=ia.file_format,
            description=template.description,
            exec_start=(
                self.executables.wrapper,
                self.executables.scion_binary(template.binary),
                config_file,
                ia.file_format,
            ),
            config_file=config_file,
            depends_on=depends_on,
            after=frozenset({NETWORK_ONLINE, tunnel.unit_name}),
            wants=frozenset({NETWORK_ONLINE}),
            part_of=frozenset({f"{LAB_TARGET}.target"}),
            pre_start=tuple(hooks),
            restart=RESTART_POLICY,
            user=SCION_USER,
            group=SCION_GROUP,
            working_directory=self.working_directory,
            environment=ENVIRONMENT,
            documentation=DOCUMENTATION,
            kill_mode="control-group",
        )

    def _dependency_graph(self,
                          roles: Dict[str, ServiceDescriptor],
                          tunnel: ServiceDescriptor,
                          target: TargetDescriptor) -> nx.DiGraph:
        """Start-order edges between the units this node owns"""
        G = nx.DiGraph()
        G.add_node(tunnel.unit_name, kind='tunnel')
        G.add_node(target.unit_name, kind='target')
        for role, service in roles.items():
            G.add_node(service.unit_name, kind='role', role=role)

        for dep in target.requires:
            G.add_edge(dep, target.unit_name, requires=True)
        for service in roles.values():
            G.add_edge(target.unit_name, service.unit_name, requires=False)
            for dep in service.depends_on:
                G.add_edge(dep, service.unit_name, requires=True)
        return G

    def _check_invariants(self,
                          G: nx.DiGraph,
                          roles: Dict[str, ServiceDescriptor],
                          tunnel: ServiceDescriptor,
                          target: TargetDescriptor):
        if not nx.is_directed_acyclic_graph(G):
            raise ValidationError('dependencies', "service dependencies contain a cycle")

        role_units = {s.unit_name for s in roles.values()}
        dispatcher = roles[DISPATCHER].unit_name
        if set(G.predecessors(dispatcher)) & role_units:
            raise ValidationError('dependencies', "dispatcher must not depend on another SCION service")
        for role, service in roles.items():
            if role != DISPATCHER and dispatcher not in service.depends_on:
                raise ValidationError('dependencies', f"{service.unit_name} must require {dispatcher}")
            if tunnel.unit_name not in service.ordered_after:
                raise ValidationError('dependencies', f"{service.unit_name} must start after {tunnel.unit_name}")

        tunnel_dependents = [u for u in G.successors(tunnel.unit_name)
                             if G.nodes[u]['kind'] == 'target']
        if tunnel_dependents != [target.unit_name]:
            raise ValidationError('dependencies', "exactly one target must depend on the VPN tunnel")
