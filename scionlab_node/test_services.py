"""
Tests for service graph construction and rendering
"""

from pathlib import Path

import networkx as nx
import pytest

from scionlab_node.bundle import ConfigBundle
from scionlab_node.config import Executables
from scionlab_node.errors import ValidationError
from scionlab_node.services import ISDAS, ServiceGraphBuilder
from scionlab_node.services.graph_builder import (BORDER_ROUTER, CONTROL_SERVICE,
                                                  DAEMON, DISPATCHER)
from scionlab_node.services.units import (render_service, render_sysusers,
                                          render_target, render_tmpfiles, render_units)
from scionlab_node.services.vpn import render_openvpn_config

IA = "16-ffaa_0_1002"
DISPATCHER_UNIT = f"scion-dispatcher@{IA}.service"


@pytest.fixture
def bundle():
    return ConfigBundle(
        vpn_config_path=Path("/srv/bundle/client-scionlab.conf"),
        config_dir=Path("/srv/bundle/gen"),
    )


@pytest.fixture
def graph(bundle):
    return ServiceGraphBuilder().build(bundle, IA)


def test_isd_as_parse():
    ia = ISDAS.parse("16-ffaa:0:1002")
    assert ia.isd == 16
    assert ia.as_id == "ffaa_0_1002"
    assert ia.file_format == IA
    assert (ia.isd_dir, ia.as_dir) == ("ISD16", "ASffaa_0_1002")

    assert ISDAS.parse("1-150").file_format == "1-150"


@pytest.mark.parametrize("identifier", [
    "16", "16-", "-ffaa_0_1002", "x-ffaa_0_1002", "16-zzzz_0_1",
    "16-ffaa_0", "16-ffaa_0:1002", "70000-1", "1-99999999999", "",
])
def test_isd_as_rejects_malformed(identifier):
    with pytest.raises(ValidationError) as exc:
        ISDAS.parse(identifier)
    assert exc.value.field == "identifier"


def test_four_roles_with_instance_and_config(graph):
    assert set(graph.roles) == {DISPATCHER, BORDER_ROUTER, CONTROL_SERVICE, DAEMON}

    for service in graph.roles.values():
        assert service.instance_suffix == IA
        assert service.unit_name == f"{service.base_name}@{IA}.service"
        assert IA in service.config_file or (
            "ISD16" in service.config_file and "ASffaa_0_1002" in service.config_file
        )
        assert service.config_file.startswith("/etc/scion/gen/")
        assert service.exec_start[-1] == IA
        assert service.exec_start[-2] == service.config_file

    assert graph.roles[BORDER_ROUTER].config_file == \
        f"/etc/scion/gen/ISD16/ASffaa_0_1002/br{IA}/br.toml"


def test_dispatcher_is_root_of_role_graph(graph):
    dispatcher = graph.roles[DISPATCHER]
    assert dispatcher.depends_on == frozenset()

    role_units = {s.unit_name for s in graph.roles.values()}
    assert not set(graph.dependencies(DISPATCHER_UNIT)) & role_units

    for role in (BORDER_ROUTER, CONTROL_SERVICE, DAEMON):
        service = graph.roles[role]
        assert service.depends_on == frozenset({DISPATCHER_UNIT})
        assert DISPATCHER_UNIT in service.ordered_after
        assert DISPATCHER_UNIT in graph.dependencies(service.unit_name)


def test_single_target_depends_on_tunnel(graph):
    assert graph.tunnel.unit_name == "openvpn-scion.service"
    assert graph.target.requires == frozenset({"openvpn-scion.service"})
    assert graph.target.after == frozenset({"openvpn-scion.service"})
    assert graph.target.wants == frozenset(s.unit_name for s in graph.roles.values())

    targets = [u for u in graph.dependents("openvpn-scion.service")
               if graph.graph.nodes[u]['kind'] == 'target']
    assert targets == ["scionlab.target"]


def test_start_order(graph):
    order = graph.start_order()
    assert order[:3] == ["openvpn-scion.service", "scionlab.target", DISPATCHER_UNIT]
    assert len(order) == 6
    assert [s.unit_name for s in graph.services][:2] == ["openvpn-scion.service", DISPATCHER_UNIT]


def test_graph_is_frozen(graph):
    assert nx.is_frozen(graph.graph)
    with pytest.raises(nx.NetworkXError):
        graph.graph.add_edge("a", "b")


def test_restart_policy_and_baseline(graph):
    for service in graph.roles.values():
        assert service.restart.kind == "on-failure"
        assert service.restart.backoff_seconds == 10
        assert (service.user, service.group) == ("scion", "scion")
        assert service.working_directory == "/var/lib/scion"
        assert service.env == {"TZ": "UTC", "GODEBUG": "cgocheck=0"}
        assert "network-online.target" in service.after
        assert service.part_of == frozenset({"scionlab.target"})


def test_pre_start_hooks(graph):
    dispatcher_hooks = graph.roles[DISPATCHER].pre_start
    assert [h.argv for h in dispatcher_hooks] == [("/usr/bin/rm", "-rf", "/run/shm/dispatcher/")]

    daemon_hooks = graph.roles[DAEMON].pre_start
    assert [h.argv for h in daemon_hooks] == [("/usr/bin/rm", "-rf", "/run/shm/sciond/")]

    cs_hooks = graph.roles[CONTROL_SERVICE].pre_start
    assert [h.name for h in cs_hooks] == ["tls-bootstrap"]
    assert "/var/lib/scion/gen-certs" in cs_hooks[0].argv

    assert graph.roles[BORDER_ROUTER].pre_start == ()


def test_executables_are_injected(bundle):
    executables = Executables(
        wrapper="/opt/scion/bin/wrapper",
        scion_bin_dir="/opt/scion/bin",
        rm="/bin/rm",
    )
    graph = ServiceGraphBuilder(executables).build(bundle, IA)

    cs = graph.roles[CONTROL_SERVICE]
    assert cs.exec_start[:2] == ("/opt/scion/bin/wrapper", "/opt/scion/bin/cs")
    assert graph.roles[DISPATCHER].pre_start[0].argv[0] == "/bin/rm"


@pytest.mark.parametrize("field", ["vpn_config_path", "config_dir"])
def test_missing_bundle_field(field):
    values = {"vpn_config_path": Path("/x.conf"), "config_dir": Path("/gen")}
    values[field] = None

    with pytest.raises(ValidationError) as exc:
        ServiceGraphBuilder().build(ConfigBundle(**values), IA)
    assert exc.value.field == field
    assert field in str(exc.value)


def test_missing_bundle_and_identifier(bundle):
    with pytest.raises(ValidationError) as exc:
        ServiceGraphBuilder().build(None, IA)
    assert exc.value.field == "bundle"

    with pytest.raises(ValidationError) as exc:
        ServiceGraphBuilder().build(bundle, None)
    assert exc.value.field == "identifier"


def test_render_service(graph):
    unit = render_service(graph.roles[CONTROL_SERVICE])

    assert "Description=SCION Control Service" in unit
    assert f"Requires={DISPATCHER_UNIT}" in unit
    assert f"After=network-online.target openvpn-scion.service {DISPATCHER_UNIT}" in unit
    assert "PartOf=scionlab.target" in unit
    assert "ExecStartPre=/usr/bin/scionlab-node tls-bootstrap" in unit
    assert (f"ExecStart=/usr/bin/scion-systemd-wrapper /usr/bin/cs "
            f"/etc/scion/gen/ISD16/ASffaa_0_1002/cs{IA}/cs.toml {IA}") in unit
    assert "Restart=on-failure" in unit
    assert "RestartSec=10" in unit
    assert 'Environment="TZ=UTC"' in unit
    assert "KillMode=control-group" in unit

    dispatcher = render_service(graph.roles[DISPATCHER])
    assert "Requires=" not in dispatcher
    assert "ExecStartPre=/usr/bin/rm -rf /run/shm/dispatcher/" in dispatcher


def test_role_units_start_after_tunnel(graph):
    units = render_units(graph)

    for service in graph.roles.values():
        after = [l for l in units[service.unit_name].splitlines() if l.startswith("After=")]
        assert len(after) == 1
        assert "openvpn-scion.service" in after[0][len("After="):].split()
        assert "scionlab.target" in graph.dependencies(service.unit_name)


def test_render_target(graph):
    target = render_target(graph.target)
    assert "Requires=openvpn-scion.service" in target
    assert "After=openvpn-scion.service" in target
    wants = [l for l in target.splitlines() if l.startswith("Wants=")]
    assert len(wants) == 1
    assert sorted(wants[0][len("Wants="):].split()) == sorted(graph.target.wants)
    assert "WantedBy=multi-user.target" in target


def test_render_units_covers_graph(graph):
    units = render_units(graph)
    assert set(units) == set(graph.start_order())


def test_tmpfiles_and_sysusers(graph):
    lines = render_tmpfiles(graph.tmpfiles).splitlines()
    assert len(lines) == 9
    assert lines[0] == "d /run/shm 0750 scion scion -"
    assert "d /var/lib/scion/gen-certs 0750 scion scion -" in lines

    sysusers = render_sysusers(graph.account)
    assert "g scion -" in sysusers
    assert 'u scion - "SCIONLab user"' in sysusers


def test_openvpn_config_appends_dns_trailer(tmp_path):
    profile = tmp_path / "client-scionlab.conf"
    profile.write_text("client\nremote 192.0.2.10 1194")

    rendered = render_openvpn_config(profile, Executables(update_resolved="/opt/update-resolved"))
    assert rendered.startswith("client\nremote 192.0.2.10 1194\n")
    assert "script-security 2" in rendered
    assert "up /opt/update-resolved" in rendered
    assert "down /opt/update-resolved" in rendered
    assert rendered.rstrip().endswith("dhcp-option DOMAIN-ROUTE .")
