"""
Bundle Layer - SCIONLab configuration tarball normalization

Components:
- transformer: extract, locate artifacts, stage and publish the bundle
- rewrite: relative gen/ references to the runtime root
- identity: per-host identity injection
"""

from .models import ConfigBundle
from .identity import HostIdentity
from .transformer import BundleTransformer

__all__ = ['ConfigBundle', 'HostIdentity', 'BundleTransformer']
