"""
Provisioning pipeline

Phase 1 resolves the operator inputs into one canonical ConfigBundle, either
by transforming a tarball or by taking the given paths. Phase 2 builds the
service graph from that bundle alone and installs the rendered files.
"""

import hashlib
import logging
import os
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from .bundle import BundleTransformer, ConfigBundle
from .bundle.models import GEN_DIR_NAME, VPN_PROFILE_NAME
from .config import NodeConfig, OPENVPN_CONFIG_PATH, RUNTIME_GEN_ROOT
from .errors import ArchiveError, MissingArtifactError, ValidationError
from .services import ISDAS, ServiceGraph, ServiceGraphBuilder
from .services.units import render_sysusers, render_tmpfiles, render_units
from .services.vpn import render_openvpn_config

logger = logging.getLogger(__name__)

SYSTEMD_DIR = "etc/systemd/system"
TMPFILES_FILE = "etc/tmpfiles.d/scionlab.conf"
SYSUSERS_FILE = "etc/sysusers.d/scionlab.conf"
SOURCE_DIGEST_FILE = ".source-sha256"


def _existing_bundle(bundle_dir: Path) -> Optional[ConfigBundle]:
    vpn = bundle_dir / VPN_PROFILE_NAME
    gen = bundle_dir / GEN_DIR_NAME
    if vpn.is_file() and gen.is_dir():
        return ConfigBundle(vpn_config_path=vpn, config_dir=gen)
    return None


def _recorded_digest(bundle_dir: Path) -> Optional[str]:
    try:
        return (bundle_dir / SOURCE_DIGEST_FILE).read_text().strip()
    except FileNotFoundError:
        return None


def resolve_bundle(config: NodeConfig,
                   transformer: Optional[BundleTransformer] = None,
                   force: bool = False) -> ConfigBundle:
    """
    Turn operator inputs into a canonical bundle

    Exactly one of ``config_tarball`` or the pair ``vpn_config`` and
    ``config_directory`` must be given. A tarball is transformed into
    ``bundle_dir`` once; later runs with the same tarball reuse that bundle,
    and with it the host identity, unless ``force`` is set. A different
    tarball is transformed again.

    Raises:
        ValidationError: inputs missing or conflicting
        MissingArtifactError: a given path does not exist
        TransformError: the tarball could not be transformed
    """
    manual = (config.vpn_config, config.config_directory)

    if config.config_tarball is not None:
        if any(p is not None for p in manual):
            raise ValidationError(
                'config_tarball',
                "config_tarball conflicts with vpn_config/config_directory, set only one"
            )
        return _bundle_from_tarball(config, transformer or BundleTransformer(), force)

    if config.vpn_config is None and config.config_directory is None:
        raise ValidationError(
            'config_tarball',
            "either config_tarball or both vpn_config and config_directory are required"
        )
    if config.vpn_config is None:
        raise ValidationError('vpn_config')
    if config.config_directory is None:
        raise ValidationError('config_directory')

    if not config.vpn_config.is_file():
        raise MissingArtifactError(f"VPN profile {config.vpn_config} not found")
    if not config.config_directory.is_dir():
        raise MissingArtifactError(f"configuration directory {config.config_directory} not found")

    return ConfigBundle(vpn_config_path=config.vpn_config, config_dir=config.config_directory)


def _bundle_from_tarball(config: NodeConfig,
                         transformer: BundleTransformer,
                         force: bool) -> ConfigBundle:
    bundle_dir = config.bundle_dir
    try:
        tarball = config.config_tarball.read_bytes()
    except OSError as e:
        raise ArchiveError(f"cannot read {config.config_tarball}: {e}") from e
    digest = hashlib.sha256(tarball).hexdigest()

    existing = _existing_bundle(bundle_dir)
    if existing is not None and not force:
        if _recorded_digest(bundle_dir) == digest:
            logger.info("Reusing bundle at %s", bundle_dir)
            return existing
        logger.info("Tarball %s differs from the one bundled at %s, transforming again",
                    config.config_tarball, bundle_dir)

    if not bundle_dir.exists():
        bundle = transformer.transform(tarball, bundle_dir)
        (bundle_dir / SOURCE_DIGEST_FILE).write_text(digest + "\n")
        return bundle

    # Keep the current bundle until the replacement is complete
    replacement = bundle_dir.with_name(f"{bundle_dir.name}.new")
    if replacement.exists():
        shutil.rmtree(replacement)
    transformer.transform(tarball, replacement)
    (replacement / SOURCE_DIGEST_FILE).write_text(digest + "\n")
    shutil.rmtree(bundle_dir)
    replacement.rename(bundle_dir)
    logger.info("Replaced bundle at %s", bundle_dir)
    return _existing_bundle(bundle_dir)


def plan(config: NodeConfig,
         transformer: Optional[BundleTransformer] = None,
         force: bool = False) -> ServiceGraph:
    """Resolve the bundle and build the service graph"""
    # Reject a bad identifier before a tarball is transformed
    ISDAS.parse(config.isd_as)
    bundle = resolve_bundle(config, transformer, force)
    builder = ServiceGraphBuilder(config.executables)
    return builder.build(bundle, config.isd_as)


def render(graph: ServiceGraph) -> Dict[str, str]:
    """
    Render every file installed for a graph

    Returns:
        Mapping of root-relative path to contents
    """
    files = {
        OPENVPN_CONFIG_PATH.lstrip('/'): render_openvpn_config(
            graph.bundle.vpn_config_path,
            graph.executables,
        ),
        TMPFILES_FILE: render_tmpfiles(graph.tmpfiles),
        SYSUSERS_FILE: render_sysusers(graph.account),
    }
    for unit, content in render_units(graph).items():
        files[f"{SYSTEMD_DIR}/{unit}"] = content
    return files


def _write_private(path: Path, content: str):
    """Write a file that is never readable by group or others"""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    # O_CREAT mode does not apply to an existing file
    os.fchmod(fd, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(content)


def install(graph: ServiceGraph, root: Path) -> List[Path]:
    """
    Write the configuration tree and rendered files below root

    All files are rendered before the first write, so a rendering failure
    leaves root untouched.

    Returns:
        Written paths, configuration tree first
    """
    root = Path(root)
    files = render(graph)

    gen_target = root / RUNTIME_GEN_ROOT.lstrip('/')
    gen_target.parent.mkdir(parents=True, exist_ok=True)
    if gen_target.exists():
        shutil.rmtree(gen_target)
    shutil.copytree(graph.bundle.config_dir, gen_target, symlinks=True)
    written = [gen_target]

    secret = OPENVPN_CONFIG_PATH.lstrip('/')
    for relative, content in sorted(files.items()):
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        if relative == secret:
            _write_private(path, content)
        else:
            path.write_text(content)
        written.append(path)

    logger.info("Installed %d files below %s", len(written), root)
    return written
