"""
Error taxonomy for the provisioning pipeline

Transformation errors are fatal and surface before any unit is installed.
"""

from typing import Optional


class ProvisioningError(Exception):
    """Base class for every provisioning failure"""


class TransformError(ProvisioningError):
    """Bundle could not be turned into a normalized configuration tree"""


class ArchiveError(TransformError):
    """Tarball is corrupt or unreadable"""


class MissingArtifactError(TransformError):
    """Expected file is absent, or more than one candidate matched"""


class MalformedIdentityDocumentError(TransformError):
    """Host identity document is not a JSON object"""


class ValidationError(ProvisioningError):
    """Graph preconditions are unmet"""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"missing required field: {field}")


class HookFailure(ProvisioningError):
    """A pre-start hook failed; only its own service is affected"""

    def __init__(self, hook: str, message: str):
        self.hook = hook
        super().__init__(f"{hook}: {message}")
