"""
Host identity generation and injection

Every transform run draws a fresh identity; nothing is cached across runs.
"""

import json
import logging
import secrets
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import MalformedIdentityDocumentError

logger = logging.getLogger(__name__)

IDENTITY_BYTES = 16


@dataclass(frozen=True)
class HostIdentity:
    """Per-host identity written into the configuration document"""
    host_id: str
    host_secret: str = field(repr=False)

    @classmethod
    def generate(cls) -> "HostIdentity":
        """Draw two independent 128-bit values from the OS CSPRNG"""
        host_id = secrets.token_bytes(IDENTITY_BYTES)
        host_secret = secrets.token_bytes(IDENTITY_BYTES)
        # Collision is astronomically unlikely, but the two must differ
        while host_secret == host_id:
            host_secret = secrets.token_bytes(IDENTITY_BYTES)
        return cls(host_id=host_id.hex(), host_secret=host_secret.hex())


def inject_identity(document_path: Path, identity: HostIdentity) -> None:
    """
    Set host_id and host_secret in the identity document

    Args:
        document_path: JSON document holding a single object
        identity: Identity to persist

    Raises:
        MalformedIdentityDocumentError: if the document is unreadable,
            not JSON, or not a JSON object
    """
    document_path = Path(document_path)
    try:
        with open(document_path) as f:
            document = json.load(f)
    except (OSError, UnicodeDecodeError) as e:
        raise MalformedIdentityDocumentError(f"cannot read {document_path.name}: {e}") from e
    except json.JSONDecodeError as e:
        raise MalformedIdentityDocumentError(f"{document_path.name} is not valid JSON: {e}") from e

    if not isinstance(document, dict):
        raise MalformedIdentityDocumentError(
            f"{document_path.name} must hold a JSON object, got {type(document).__name__}"
        )

    document['host_id'] = identity.host_id
    document['host_secret'] = identity.host_secret

    with open(document_path, 'w') as f:
        json.dump(document, f, indent=2)
        f.write('\n')

    logger.info("Injected host identity %s into %s", identity.host_id, document_path.name)
