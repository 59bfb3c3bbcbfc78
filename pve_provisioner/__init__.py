"""Proxmox VE provisioning engine."""

__version__ = "1.0.0"
