"""
Homelab provisioner — declarative, idempotent provisioning for a personal server.
"""

__version__ = "0.1.0"
