"""
Logging setup and payload redaction for pve-provisioner.
"""

import logging
import os
from typing import Any, Dict, Mapping

SENSITIVE_KEYS = frozenset(
    {"password", "cipassword", "sshkeys", "ssh-public-keys", "token_secret"}
)
REDACTED = "[REDACTED]"


def setup_secure_logging(level: str = None):
    """Setup logging for the service process."""
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # aiohttp logs every request/response at INFO/DEBUG
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.client").setLevel(logging.WARNING)


def redact_payload(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``payload`` safe to write to logs."""
    if not payload:
        return {}
    return {
        key: (REDACTED if key in SENSITIVE_KEYS and value else value)
        for key, value in payload.items()
    }
