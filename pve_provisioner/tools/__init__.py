"""Tool registry for the pve-provisioner MCP server."""
import logging

from fastmcp import FastMCP

from pve_provisioner.server.dependencies import Dependencies
from pve_provisioner.tools.provisioning_tools import register_tools as register_provisioning_tools

logger = logging.getLogger(__name__)


def register_all_tools(mcp: FastMCP, deps: Dependencies):
    """Register all tools with the MCP instance."""
    register_provisioning_tools(mcp, deps)
