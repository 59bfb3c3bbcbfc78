"""
pve-provisioner - FastMCP with HTTP Transport

Exposes Proxmox VE provisioning (VM creation, template cloning, container
creation and lifecycle) as MCP tools. Configure through the environment:
PROXMOX_API_URL, PROXMOX_NODE, PROXMOX_TOKEN_ID, PROXMOX_TOKEN_SECRET and
the PROVISIONER_* settings.
"""

import logging
import os

from pve_provisioner.server.config import ProvisionerSettings, create_mcp_instance
from pve_provisioner.server.dependencies import Dependencies
from pve_provisioner.tools import register_all_tools
from pve_provisioner.utils.secure_logging import setup_secure_logging

setup_secure_logging()
logger = logging.getLogger(__name__)

settings = ProvisionerSettings.from_env()
for problem in settings.validate():
    logger.warning(f"Configuration: {problem}")

mcp = create_mcp_instance()
deps = Dependencies(settings)

register_all_tools(mcp, deps)


def main():
    host = os.getenv("PROVISIONER_HOST", "0.0.0.0")
    port = int(os.getenv("PROVISIONER_PORT", "8080"))
    logger.info(f"Starting pve-provisioner on http://{host}:{port}")
    logger.info(f"Proxmox API: {settings.api_url} (default node: {settings.node or 'unset'})")
    logger.info(f"Identifier allocation: {settings.allocation.policy.value}")

    # Use HTTP streaming transport
    mcp.run(transport="http", host=host, port=port)


if __name__ == "__main__":
    main()
