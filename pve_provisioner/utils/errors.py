from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    REMOTE_UNAVAILABLE = "remote_unavailable"
    REMOTE_REJECTED = "remote_rejected"
    CONFIGURATION = "configuration"
    PARTIAL = "partial"


class ProvisioningError(Exception):
    """Base exception for the provisioning engine, carrying a category."""

    retryable = False

    def __init__(
        self, message: str, category: ErrorCategory = ErrorCategory.VALIDATION
    ):
        super().__init__(message)
        self.message = message
        self.category = category

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "category": self.category.value,
            "error_type": type(self).__name__,
            "retryable": self.retryable,
        }


class MissingFieldError(ProvisioningError):
    """One or more required fields are absent from a specification."""

    def __init__(self, fields: Sequence[str], message: Optional[str] = None):
        self.fields = list(fields)
        super().__init__(
            message or f"Missing required field(s): {', '.join(self.fields)}"
        )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["fields"] = self.fields
        return result


class InvalidDescriptorError(ProvisioningError):
    """A configuration descriptor (disk, size) cannot be parsed."""

    def __init__(self, field_name: str, value: str, reason: str):
        self.field_name = field_name
        self.value = value
        super().__init__(f"Invalid {field_name} '{value}': {reason}")


class AlreadyExistsError(ProvisioningError):
    """The requested identifier is already in use.

    ``source`` is ``"local"`` when the inventory check caught it and
    ``"remote"`` when the control plane rejected the create call.
    """

    def __init__(
        self,
        vmid: Optional[int] = None,
        node: Optional[str] = None,
        source: str = "local",
        detail: Optional[str] = None,
    ):
        self.vmid = vmid
        self.node = node
        self.source = source
        self.detail = detail
        if vmid is not None:
            where = f" on node {node}" if node else ""
            message = f"Instance with ID {vmid} already exists{where}"
        else:
            message = detail or "Instance already exists"
        super().__init__(message, ErrorCategory.CONFLICT)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"vmid": self.vmid, "node": self.node, "source": self.source})
        return result


class ResourceNotFoundError(ProvisioningError):
    """A named cluster resource is not admissible.

    The message always enumerates the alternatives the caller could use.
    """

    resource_kind = "resource"

    def __init__(self, requested: str, available: Sequence[str]):
        self.requested = requested
        self.available = list(available)
        available_str = ", ".join(self.available)
        super().__init__(
            f"{self.resource_kind} {requested} not found. "
            f"Available {self.resource_kind}s: [{available_str}]",
            ErrorCategory.NOT_FOUND,
        )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"requested": self.requested, "available": self.available})
        return result


class StorageNotFoundError(ResourceNotFoundError):
    resource_kind = "storage"


class NetworkNotFoundError(ResourceNotFoundError):
    resource_kind = "network bridge"


class MediaNotFoundError(ResourceNotFoundError):
    resource_kind = "boot media"


class TemplateNotFoundError(MediaNotFoundError):
    resource_kind = "template"


class InstanceNotFoundError(ProvisioningError):
    """The instance targeted by an operation does not exist."""

    def __init__(
        self,
        vmid: Optional[int] = None,
        node: Optional[str] = None,
        detail: Optional[str] = None,
    ):
        self.vmid = vmid
        self.node = node
        if vmid is not None:
            message = f"Instance with ID {vmid} does not exist"
            if node:
                message += f" on node {node}"
        else:
            message = detail or "Instance does not exist"
        super().__init__(message, ErrorCategory.NOT_FOUND)


class IdentifierPoolExhaustedError(ProvisioningError):
    def __init__(self, start: int, end: int):
        self.start = start
        self.end = end
        super().__init__(
            f"No free identifier left in pool {start}-{end}", ErrorCategory.CONFLICT
        )


class RemoteError(ProvisioningError):
    """Base for failures reported by, or while reaching, the control plane."""


class RemoteUnavailableError(RemoteError):
    """Transport failure or timeout; the caller may retry with backoff."""

    retryable = True

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.REMOTE_UNAVAILABLE)


class RemoteRejectedError(RemoteError):
    """The control plane refused the request; its message is kept verbatim."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        category: ErrorCategory = ErrorCategory.REMOTE_REJECTED,
    ):
        self.status = status
        super().__init__(message, category)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["status"] = self.status
        return result


class RemoteNotImplementedError(RemoteRejectedError):
    """HTTP 501: server-side configuration or version incompatibility."""

    def __init__(self, message: str):
        super().__init__(
            "The Proxmox API returned 'Not Implemented' (501). The request "
            "parameters or storage format are not supported by this Proxmox "
            f"installation. Original error: {message}",
            status=501,
            category=ErrorCategory.CONFIGURATION,
        )


class PartialProvisioningError(ProvisioningError):
    """The instance exists but a later workflow step failed."""

    def __init__(
        self,
        node: str,
        vmid: int,
        failed_step: str,
        cause: Exception,
        completed_steps: Optional[List[str]] = None,
    ):
        self.node = node
        self.vmid = vmid
        self.failed_step = failed_step
        self.cause = cause
        self.completed_steps = list(completed_steps or [])
        super().__init__(
            f"Instance {vmid} on node {node} was created but step "
            f"'{failed_step}' failed: {cause}",
            ErrorCategory.PARTIAL,
        )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "node": self.node,
                "vmid": self.vmid,
                "failed_step": self.failed_step,
                "completed_steps": self.completed_steps,
                "cause": self.cause.to_dict()
                if isinstance(self.cause, ProvisioningError)
                else str(self.cause),
            }
        )
        return result
