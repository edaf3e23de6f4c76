"""
systemd rendering

Formats descriptors as unit files, plus the tmpfiles.d and sysusers.d
fragments the supervisor applies before any service starts.
"""

import shlex
from typing import Dict, Iterable

from .descriptors import ServiceDescriptor, SystemAccount, TargetDescriptor, TmpfilesRule


def _join(units: Iterable[str]) -> str:
    return ' '.join(sorted(units))


def _command(argv) -> str:
    return ' '.join(shlex.quote(a) for a in argv)


def render_service(service: ServiceDescriptor) -> str:
    """Format a service descriptor as a .service unit"""
    lines = []

    lines.append("[Unit]")
    lines.append(f"Description={service.description}")
    for url in service.documentation:
        lines.append(f"Documentation={url}")
    if service.ordered_after:
        lines.append(f"After={_join(service.ordered_after)}")
    if service.depends_on:
        lines.append(f"Requires={_join(service.depends_on)}")
    if service.wants:
        lines.append(f"Wants={_join(service.wants)}")
    if service.part_of:
        lines.append(f"PartOf={_join(service.part_of)}")
    lines.append("")

    lines.append("[Service]")
    lines.append(f"Type={service.service_type}")
    if service.user:
        lines.append(f"User={service.user}")
    if service.group:
        lines.append(f"Group={service.group}")
    if service.working_directory:
        lines.append(f"WorkingDirectory={service.working_directory}")
    for key, value in service.environment:
        lines.append(f'Environment="{key}={value}"')
    for hook in service.pre_start:
        lines.append(f"ExecStartPre={_command(hook.argv)}")
    lines.append(f"ExecStart={_command(service.exec_start)}")
    lines.append(f"Restart={service.restart.kind}")
    lines.append(f"RestartSec={service.restart.backoff_seconds}")
    lines.append(f"RemainAfterExit={'yes' if service.remain_after_exit else 'no'}")
    if service.kill_mode:
        lines.append(f"KillMode={service.kill_mode}")

    return '\n'.join(lines) + '\n'


def render_target(target: TargetDescriptor) -> str:
    """Format the aggregate target"""
    lines = [
        "[Unit]",
        f"Description={target.description}",
        f"After={_join(target.after)}",
        f"Requires={_join(target.requires)}",
        f"Wants={_join(target.wants)}",
        "",
        "[Install]",
        f"WantedBy={_join(target.wanted_by)}",
    ]
    return '\n'.join(lines) + '\n'


def render_tmpfiles(rules: Iterable[TmpfilesRule]) -> str:
    """tmpfiles.d fragment, one rule per line"""
    lines = [f"{r.type} {r.path} {r.mode} {r.user} {r.group} {r.age}" for r in rules]
    return '\n'.join(lines) + '\n'


def render_sysusers(account: SystemAccount) -> str:
    """sysusers.d fragment for the service account"""
    lines = [
        f"g {account.group} -",
        f'u {account.user} - "{account.description}"',
    ]
    return '\n'.join(lines) + '\n'


def render_units(graph) -> Dict[str, str]:
    """
    Render every unit of a ServiceGraph

    Returns:
        Mapping of unit file name to contents
    """
    units = {s.unit_name: render_service(s) for s in graph.services}
    units[graph.target.unit_name] = render_target(graph.target)
    return units
