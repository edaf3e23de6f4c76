"""
Pre-start hooks

The control service needs a TLS keypair before its first start. The hook is
safe to run on every activation: existing material is never touched.
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import Optional, Tuple

from ..config import Executables
from ..errors import HookFailure
from .descriptors import PreStartHook

logger = logging.getLogger(__name__)

TLS_KEY_NAME = "tls.key"
TLS_CERT_NAME = "tls.pem"
TLS_KEY_BITS = 2048
TLS_CERT_DAYS = 3650
TLS_SUBJECT = "/CN=scion_def_srv"
KEY_UMASK = 0o177


def scratch_reset_hook(executables: Executables, scratch_dir: str) -> PreStartHook:
    """Remove a role's scratch directory so stale sockets cannot block a restart"""
    return PreStartHook(
        name="reset-scratch",
        argv=(executables.rm, "-rf", scratch_dir.rstrip('/') + '/'),
    )


def tls_bootstrap_hook(executables: Executables, cert_dir: str) -> PreStartHook:
    """Hook that runs ensure_tls_material through the provisioner CLI"""
    return PreStartHook(
        name="tls-bootstrap",
        argv=(executables.provisioner, "tls-bootstrap",
              "--cert-dir", cert_dir,
              "--openssl", executables.openssl),
    )


def _run(hook: str, argv, umask: Optional[int] = None):
    old = os.umask(umask) if umask is not None else None
    try:
        subprocess.run(argv, check=True, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise HookFailure(hook, f"{argv[0]} not found") from e
    except subprocess.CalledProcessError as e:
        raise HookFailure(hook, f"{argv[0]} exited with {e.returncode}: {e.stderr.strip()}") from e
    finally:
        if old is not None:
            os.umask(old)


def ensure_tls_material(cert_dir: Path, openssl: str = "openssl") -> Tuple[bool, bool]:
    """
    Create the control service TLS key and self-signed certificate if missing

    Args:
        cert_dir: Directory holding tls.key and tls.pem
        openssl: openssl executable

    Returns:
        (key_created, cert_created)

    Raises:
        HookFailure: if openssl is missing or fails
    """
    cert_dir = Path(cert_dir)
    key_path = cert_dir / TLS_KEY_NAME
    cert_path = cert_dir / TLS_CERT_NAME

    if not cert_dir.is_dir():
        raise HookFailure("tls-bootstrap", f"certificate directory {cert_dir} does not exist")

    key_created = False
    if not key_path.exists():
        _run("tls-bootstrap",
             [openssl, "genrsa", "-out", str(key_path), str(TLS_KEY_BITS)],
             KEY_UMASK)
        key_created = True
        logger.info("Generated TLS key %s", key_path)

    cert_created = False
    if not cert_path.exists():
        _run("tls-bootstrap",
             [openssl, "req", "-new", "-x509",
              "-key", str(key_path), "-out", str(cert_path),
              "-days", str(TLS_CERT_DAYS), "-subj", TLS_SUBJECT])
        cert_created = True
        logger.info("Generated self-signed TLS certificate %s", cert_path)

    return key_created, cert_created
