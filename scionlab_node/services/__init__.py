"""
Service Layer - SCION role services and their start ordering

Components:
- graph_builder: role descriptors, lab target and dependency graph
- hooks: pre-start hooks (scratch reset, TLS bootstrap)
- units: systemd unit, tmpfiles.d and sysusers.d rendering
- vpn: OpenVPN tunnel configuration
"""

from .graph_builder import ServiceGraph, ServiceGraphBuilder
from .isd_as import ISDAS

__all__ = ['ServiceGraph', 'ServiceGraphBuilder', 'ISDAS']
