#!/usr/bin/env python3
"""
SCIONLab Node CLI

Command-line interface for transforming configuration bundles and
provisioning SCION services.
"""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .bundle import BundleTransformer
from .config import NodeConfig
from .errors import HookFailure, ProvisioningError
from .provision import install, plan as build_plan, render as render_files
from .services.hooks import ensure_tls_material

app = typer.Typer(help="SCIONLab AS node provisioning")
console = Console()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _load_config(config: Optional[Path],
                 tarball: Optional[Path],
                 vpn_config: Optional[Path],
                 config_directory: Optional[Path],
                 isd_as: Optional[str],
                 bundle_dir: Optional[Path]) -> NodeConfig:
    return NodeConfig.load(
        config,
        config_tarball=tarball,
        vpn_config=vpn_config,
        config_directory=config_directory,
        isd_as=isd_as,
        bundle_dir=bundle_dir,
    )


def _fail(error: Exception):
    console.print(f"{type(error).__name__}: {error}", style="red", markup=False)
    raise typer.Exit(code=1)


@app.command()
def transform(
    tarball: Path = typer.Argument(..., help="Configuration tarball downloaded from SCIONLab"),
    output: Path = typer.Option(Path("./scionlab-bundle"), help="Bundle output directory"),
):
    """Normalize a configuration tarball and inject a fresh host identity"""
    try:
        with console.status("Transforming configuration bundle..."):
            bundle = BundleTransformer().transform_file(tarball, output)
    except ProvisioningError as e:
        _fail(e)

    table = Table(title="Configuration Bundle")
    table.add_column("Artifact", style="cyan")
    table.add_column("Path", style="green")
    table.add_row("VPN profile", str(bundle.vpn_config_path))
    table.add_row("Config directory", str(bundle.config_dir))
    table.add_row("Identity document", str(bundle.identity_document))
    console.print(table)


@app.command()
def plan(
    config: Path = typer.Option(None, help="Node configuration file (YAML)"),
    tarball: Path = typer.Option(None, help="Configuration tarball"),
    vpn_config: Path = typer.Option(None, help="OpenVPN client profile"),
    config_directory: Path = typer.Option(None, help="SCION gen/ directory"),
    isd_as: str = typer.Option(None, help="ISD-AS identifier, e.g. 16-ffaa_0_1002"),
    bundle_dir: Path = typer.Option(None, help="Where a tarball is transformed to"),
):
    """Show the services and their start order"""
    try:
        node = _load_config(config, tarball, vpn_config, config_directory, isd_as, bundle_dir)
        graph = build_plan(node)
    except (ProvisioningError, OSError) as e:
        _fail(e)

    table = Table(title=f"Service Plan for {graph.identifier}")
    table.add_column("#", style="dim")
    table.add_column("Unit", style="cyan")
    table.add_column("Depends on", style="yellow")
    table.add_column("Config", style="green")

    services = {s.unit_name: s for s in graph.services}
    for i, unit in enumerate(graph.start_order(), 1):
        service = services.get(unit)
        table.add_row(
            str(i),
            unit,
            ", ".join(graph.dependencies(unit)) or "-",
            service.config_file if service and service.config_file else "-",
        )

    console.print(table)


@app.command()
def render(
    config: Path = typer.Option(None, help="Node configuration file (YAML)"),
    tarball: Path = typer.Option(None, help="Configuration tarball"),
    vpn_config: Path = typer.Option(None, help="OpenVPN client profile"),
    config_directory: Path = typer.Option(None, help="SCION gen/ directory"),
    isd_as: str = typer.Option(None, help="ISD-AS identifier"),
    bundle_dir: Path = typer.Option(None, help="Where a tarball is transformed to"),
    unit: str = typer.Option(None, help="Only print this file (e.g. scionlab.target)"),
):
    """Print the files that would be installed"""
    try:
        node = _load_config(config, tarball, vpn_config, config_directory, isd_as, bundle_dir)
        files = render_files(build_plan(node))
    except (ProvisioningError, OSError) as e:
        _fail(e)

    for path, content in sorted(files.items()):
        if unit and Path(path).name != unit:
            continue
        console.rule(f"[cyan]{path}")
        console.print(content, markup=False, highlight=False)


@app.command()
def provision(
    config: Path = typer.Option(None, help="Node configuration file (YAML)"),
    tarball: Path = typer.Option(None, help="Configuration tarball"),
    vpn_config: Path = typer.Option(None, help="OpenVPN client profile"),
    config_directory: Path = typer.Option(None, help="SCION gen/ directory"),
    isd_as: str = typer.Option(None, help="ISD-AS identifier"),
    bundle_dir: Path = typer.Option(None, help="Where a tarball is transformed to"),
    root: Path = typer.Option(Path("/"), help="Installation root"),
    force: bool = typer.Option(False, "--force", help="Re-transform the tarball (new host identity)"),
):
    """Transform, build and install the node configuration"""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console
    ) as progress:
        try:
            task = progress.add_task("Resolving configuration bundle...", total=1)
            node = _load_config(config, tarball, vpn_config, config_directory, isd_as, bundle_dir)
            graph = build_plan(node, force=force)
            progress.advance(task)

            task = progress.add_task("Installing units...", total=1)
            written = install(graph, root)
            progress.advance(task)
        except (ProvisioningError, OSError) as e:
            progress.stop()
            _fail(e)

    table = Table(title="Provisioning Summary")
    table.add_column("Item", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("ISD-AS", str(graph.identifier))
    table.add_row("Services", str(len(graph.services)))
    table.add_row("Files written", str(len(written)))
    table.add_row("Target", graph.target.unit_name)
    console.print(table)


@app.command("tls-bootstrap")
def tls_bootstrap(
    cert_dir: Path = typer.Option(Path("/var/lib/scion/gen-certs"), help="TLS material directory"),
    openssl: str = typer.Option("openssl", help="openssl executable"),
):
    """Create the control service TLS key and certificate if missing"""
    try:
        key_created, cert_created = ensure_tls_material(cert_dir, openssl)
    except HookFailure as e:
        _fail(e)

    if not (key_created or cert_created):
        logger.info("TLS material already present in %s", cert_dir)


if __name__ == "__main__":
    app()
