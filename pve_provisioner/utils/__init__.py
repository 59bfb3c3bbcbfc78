"""Utilities package for pve-provisioner."""

from .errors import ErrorCategory, ProvisioningError
from .retry import retry_with_backoff
from .secure_logging import redact_payload, setup_secure_logging

__all__ = [
    "ErrorCategory",
    "ProvisioningError",
    "retry_with_backoff",
    "redact_payload",
    "setup_secure_logging",
]
