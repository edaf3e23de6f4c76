"""Bundle data model"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


VPN_PROFILE_NAME = "client-scionlab.conf"
GEN_DIR_NAME = "gen"
IDENTITY_DOCUMENT = "scionlab-config.json"  # relative to gen/


@dataclass(frozen=True)
class ConfigBundle:
    """Normalized VPN profile plus SCION configuration tree"""
    vpn_config_path: Optional[Path]
    config_dir: Optional[Path]

    @property
    def identity_document(self) -> Optional[Path]:
        if self.config_dir is None:
            return None
        return Path(self.config_dir) / IDENTITY_DOCUMENT
