"""
docker-volume-rbd - Docker volume plugin backed by Ceph RBD images.

This package provides the plugin server, the volume lifecycle driver and an
administration CLI for Docker volumes that map onto Ceph RBD block images.
"""

__version__ = "0.1.0"
__all__ = ["api", "cli", "driver"]
