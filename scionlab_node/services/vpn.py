"""
VPN tunnel to the SCIONLab attachment point

The bundle's client profile is installed with a trailer that lets
systemd-resolved manage DNS for the tunnel link.
"""

from pathlib import Path

from ..config import Executables, OPENVPN_CONFIG_PATH
from .descriptors import RestartPolicy, ServiceDescriptor

VPN_INSTANCE = "scion"
VPN_UNIT_BASE = f"openvpn-{VPN_INSTANCE}"


def render_openvpn_config(profile_path: Path, executables: Executables) -> str:
    """Client profile followed by the systemd-resolved DNS trailer"""
    profile = Path(profile_path).read_text()
    if profile and not profile.endswith('\n'):
        profile += '\n'

    lines = [
        "# Manage DNS configuration on a per-link basis for systemd-resolved",
        "script-security 2",
        f"up {executables.update_resolved}",
        "up-restart",
        f"down {executables.update_resolved}",
        "down-pre",
        "",
        "# Send all DNS traffic through the VPN tunnel and prevent DNS leaks",
        "dhcp-option DOMAIN-ROUTE .",
    ]
    return profile + '\n'.join(lines) + '\n'


def tunnel_descriptor(executables: Executables,
                      config_path: str = OPENVPN_CONFIG_PATH) -> ServiceDescriptor:
    """The tunnel service the lab target waits for"""
    return ServiceDescriptor(
        base_name=VPN_UNIT_BASE,
        description=f"OpenVPN instance '{VPN_INSTANCE}'",
        exec_start=(executables.openvpn, "--suppress-timestamps", "--config", config_path),
        config_file=config_path,
        after=frozenset({"network.target"}),
        wants=frozenset({"network.target"}),
        restart=RestartPolicy(kind="always", backoff_seconds=10),
        service_type="notify",
    )
