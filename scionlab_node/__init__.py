"""
SCIONLab Node Provisioner

Turns a SCIONLab configuration tarball into a normalized configuration tree
and derives the ordered set of SCION services for the host supervisor.
"""

__version__ = "0.3.0"
