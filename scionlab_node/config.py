"""
Node configuration

Loads the operator-facing node configuration from YAML on top of built-in
defaults. Executable locations are part of the configuration so the service
graph never resolves binaries by name.
"""

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ValidationError

logger = logging.getLogger(__name__)


# Runtime layout on the provisioned host
RUNTIME_GEN_ROOT = "/etc/scion/gen"
OPENVPN_CONFIG_PATH = "/etc/openvpn/scion.conf"
STATE_DIR = "/var/lib/scion"
CERT_DIR = "/var/lib/scion/gen-certs"
SCRATCH_ROOT = "/run/shm"

SCION_USER = "scion"
SCION_GROUP = "scion"


@dataclass
class Executables:
    """Absolute paths of every external program a unit refers to"""
    wrapper: str = "/usr/bin/scion-systemd-wrapper"
    scion_bin_dir: str = "/usr/bin"
    openssl: str = "/usr/bin/openssl"
    rm: str = "/usr/bin/rm"
    openvpn: str = "/usr/sbin/openvpn"
    update_resolved: str = "/usr/libexec/openvpn/update-systemd-resolved"
    provisioner: str = "/usr/bin/scionlab-node"

    def scion_binary(self, name: str) -> str:
        return str(Path(self.scion_bin_dir) / name)


@dataclass
class NodeConfig:
    """Operator inputs for one provisioning run"""
    vpn_config: Optional[Path] = None
    config_directory: Optional[Path] = None
    config_tarball: Optional[Path] = None
    isd_as: Optional[str] = None
    bundle_dir: Path = Path("/var/lib/scionlab/bundle")
    executables: Executables = field(default_factory=Executables)

    DEFAULT_CONFIG = {
        'vpn_config': None,
        'config_directory': None,
        'config_tarball': None,
        'isd_as': None,
        'bundle_dir': '/var/lib/scionlab/bundle',
        'executables': {},
    }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeConfig":
        """Build a config from a plain mapping, unknown keys are rejected"""
        config = copy.deepcopy(cls.DEFAULT_CONFIG)
        unknown = set(data) - set(config)
        if unknown:
            raise ValidationError(sorted(unknown)[0], f"unknown configuration keys: {', '.join(sorted(unknown))}")
        config.update({k: v for k, v in data.items() if v is not None})

        exec_overrides = config['executables'] or {}
        if not isinstance(exec_overrides, dict):
            raise ValidationError('executables', "executables must be a mapping")
        try:
            executables = Executables(**exec_overrides)
        except TypeError as e:
            raise ValidationError('executables', f"invalid executables section: {e}") from e

        def _path(value):
            return Path(value) if value is not None else None

        isd_as = config['isd_as']
        return cls(
            vpn_config=_path(config['vpn_config']),
            config_directory=_path(config['config_directory']),
            config_tarball=_path(config['config_tarball']),
            isd_as=str(isd_as) if isd_as is not None else None,
            bundle_dir=Path(config['bundle_dir']),
            executables=executables,
        )

    @classmethod
    def load(cls, config_path: Optional[Path] = None, **overrides) -> "NodeConfig":
        """
        Load configuration from a YAML file

        Args:
            config_path: YAML file, skipped when None
            **overrides: values taking precedence over the file (None is ignored)

        Returns:
            Parsed configuration

        Raises:
            ValidationError: the file cannot be loaded or has unknown keys
        """
        data = {}
        if config_path is not None:
            try:
                with open(config_path) as f:
                    data = yaml.safe_load(f) or {}
            except OSError as e:
                raise ValidationError('config', f"cannot read {config_path}: {e}") from e
            except yaml.YAMLError as e:
                raise ValidationError('config', f"{config_path} is not valid YAML: {e}") from e
            if not isinstance(data, dict):
                raise ValidationError('config', f"{config_path} does not contain a mapping")
            logger.debug("Loaded node configuration from %s", config_path)

        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_dict(data)
