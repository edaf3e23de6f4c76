"""
Bundle transformer

Turns a SCIONLab configuration tarball into a normalized bundle:
- extraction into a private working area
- artifact lookup (one client VPN profile, one gen/ tree)
- gen/ reference rewriting to the runtime root
- host identity injection

The output directory only appears once every step succeeded.
"""

import io
import logging
import shutil
import tarfile
import tempfile
import zlib
from pathlib import Path
from typing import Optional, Tuple

from ..config import RUNTIME_GEN_ROOT
from ..errors import ArchiveError, MissingArtifactError, TransformError
from .identity import HostIdentity, inject_identity
from .models import ConfigBundle, GEN_DIR_NAME, IDENTITY_DOCUMENT, VPN_PROFILE_NAME
from .rewrite import PathRewriter

logger = logging.getLogger(__name__)


class BundleTransformer:
    """Normalize SCIONLab configuration tarballs"""

    PROFILE_PATTERN = "client-scionlab-*.conf"

    def __init__(self,
                 runtime_root: str = RUNTIME_GEN_ROOT,
                 max_workers: Optional[int] = None):
        """
        Args:
            runtime_root: Absolute location the gen/ tree is served from
            max_workers: Threads used for reference rewriting
        """
        self.runtime_root = runtime_root
        self.rewriter = PathRewriter(runtime_root, relative_root=f"{GEN_DIR_NAME}/",
                                     max_workers=max_workers)

    def transform(self, tarball: bytes, output_dir: Path) -> ConfigBundle:
        """
        Transform tarball contents into a bundle at output_dir

        Each call generates a new host identity, so two runs over the same
        tarball differ in host_id/host_secret only.

        Args:
            tarball: Raw archive bytes (never modified)
            output_dir: Where the bundle is published; must not exist or be empty

        Returns:
            Bundle pointing at output_dir/client-scionlab.conf and output_dir/gen

        Raises:
            ArchiveError: corrupt or unreadable archive
            MissingArtifactError: missing or ambiguous VPN profile, missing gen/
            MalformedIdentityDocumentError: identity document is not a JSON object
        """
        output_dir = Path(output_dir)
        if output_dir.exists() and (not output_dir.is_dir() or any(output_dir.iterdir())):
            raise TransformError(f"output location {output_dir} is not an empty directory")
        output_dir.parent.mkdir(parents=True, exist_ok=True)

        staging = Path(tempfile.mkdtemp(prefix=f".{output_dir.name}.", dir=output_dir.parent))
        try:
            with tempfile.TemporaryDirectory(prefix="scionlab-extract-") as workdir:
                extract_root = Path(workdir)
                self._extract(tarball, extract_root)
                profile, gen_dir = self._locate_artifacts(extract_root)

                shutil.copyfile(profile, staging / VPN_PROFILE_NAME)
                shutil.copytree(gen_dir, staging / GEN_DIR_NAME, symlinks=True)

            self.rewriter.rewrite_tree(staging)

            identity_doc = staging / GEN_DIR_NAME / IDENTITY_DOCUMENT
            if not identity_doc.is_file():
                raise MissingArtifactError(f"{GEN_DIR_NAME}/{IDENTITY_DOCUMENT} not found in bundle")
            inject_identity(identity_doc, HostIdentity.generate())

            if output_dir.exists():
                output_dir.rmdir()
            staging.rename(output_dir)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        logger.info("Bundle published at %s", output_dir)
        return ConfigBundle(
            vpn_config_path=output_dir / VPN_PROFILE_NAME,
            config_dir=output_dir / GEN_DIR_NAME,
        )

    def transform_file(self, tarball_path: Path, output_dir: Path) -> ConfigBundle:
        """Transform a tarball read from disk"""
        try:
            data = Path(tarball_path).read_bytes()
        except OSError as e:
            raise ArchiveError(f"cannot read {tarball_path}: {e}") from e
        return self.transform(data, output_dir)

    def _extract(self, tarball: bytes, dest: Path):
        """Extract archive bytes, refusing members that escape dest"""
        if not hasattr(tarfile, 'data_filter'):
            raise ArchiveError("tarfile extraction filters are unavailable, "
                               "Python 3.10.12, 3.11.4 or 3.12 is required")
        try:
            with tarfile.open(fileobj=io.BytesIO(tarball), mode='r:*') as tar:
                tar.extractall(dest, filter='data')
        except (tarfile.TarError, zlib.error, EOFError, OSError, ValueError) as e:
            raise ArchiveError(f"cannot extract configuration tarball: {e}") from e

    def _locate_artifacts(self, root: Path) -> Tuple[Path, Path]:
        """Find the single client VPN profile and the gen/ tree"""
        profiles = sorted(p for p in root.glob(self.PROFILE_PATTERN) if p.is_file())
        if not profiles:
            raise MissingArtifactError(f"no {self.PROFILE_PATTERN} found in tarball")
        if len(profiles) > 1:
            names = ', '.join(p.name for p in profiles)
            raise MissingArtifactError(f"ambiguous VPN profile, found {len(profiles)}: {names}")

        gen_dir = root / GEN_DIR_NAME
        if not gen_dir.is_dir():
            raise MissingArtifactError(f"no {GEN_DIR_NAME}/ directory found in tarball")

        logger.debug("Found VPN profile %s", profiles[0].name)
        return profiles[0], gen_dir
