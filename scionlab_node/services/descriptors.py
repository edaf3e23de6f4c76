"""
Service descriptors handed to the process supervisor

Instancing and ordering are explicit typed fields; unit names are derived
from them rather than assembled ad hoc.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional, Tuple


@dataclass(frozen=True)
class RestartPolicy:
    """Supervisor restart policy"""
    kind: str = "on-failure"
    backoff_seconds: int = 10


@dataclass(frozen=True)
class PreStartHook:
    """Command run by the supervisor before the main process"""
    name: str
    argv: Tuple[str, ...]


@dataclass(frozen=True)
class TmpfilesRule:
    """Directory created with owner/group/mode before any service starts"""
    path: str
    mode: str = "0750"
    user: str = "scion"
    group: str = "scion"
    type: str = "d"
    age: str = "-"


@dataclass(frozen=True)
class SystemAccount:
    """System user and its primary group"""
    user: str
    group: str
    description: str = ""


@dataclass(frozen=True)
class ServiceDescriptor:
    """One supervised service"""
    base_name: str
    description: str
    exec_start: Tuple[str, ...]
    instance_suffix: Optional[str] = None
    config_file: Optional[str] = None
    depends_on: FrozenSet[str] = frozenset()  # hard requirements, also ordered after
    after: FrozenSet[str] = frozenset()
    wants: FrozenSet[str] = frozenset()
    part_of: FrozenSet[str] = frozenset()
    pre_start: Tuple[PreStartHook, ...] = ()
    restart: RestartPolicy = RestartPolicy()
    user: Optional[str] = None
    group: Optional[str] = None
    working_directory: Optional[str] = None
    environment: Tuple[Tuple[str, str], ...] = ()
    documentation: Tuple[str, ...] = ()
    service_type: str = "simple"
    kill_mode: Optional[str] = None
    remain_after_exit: bool = False

    @property
    def unit_name(self) -> str:
        if self.instance_suffix:
            return f"{self.base_name}@{self.instance_suffix}.service"
        return f"{self.base_name}.service"

    @property
    def ordered_after(self) -> FrozenSet[str]:
        return self.after | self.depends_on

    @property
    def env(self) -> Dict[str, str]:
        return dict(self.environment)


@dataclass(frozen=True)
class TargetDescriptor:
    """Aggregate unit grouping the role services"""
    name: str
    description: str
    requires: FrozenSet[str] = frozenset()
    after: FrozenSet[str] = frozenset()
    wants: FrozenSet[str] = frozenset()
    wanted_by: FrozenSet[str] = field(default_factory=lambda: frozenset({"multi-user.target"}))

    @property
    def unit_name(self) -> str:
        return f"{self.name}.target"
