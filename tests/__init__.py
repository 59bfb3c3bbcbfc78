"""Test package for pve-provisioner."""
