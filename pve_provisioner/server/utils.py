"""Shared utility functions for MCP tools."""

from pve_provisioner.utils.errors import ProvisioningError


def format_error(e: Exception, tool_name: str) -> dict:
    """Format error with context.

    Engine errors keep their category and structured details so callers
    can tell validation failures from remote ones.
    """
    if isinstance(e, ProvisioningError):
        return {"success": False, **e.to_dict(), "tool": tool_name}
    return {
        "success": False,
        "error": str(e),
        "category": "validation",
        "error_type": type(e).__name__,
        "tool": tool_name,
    }


def format_response(data: dict) -> dict:
    return {"success": True, **data}
