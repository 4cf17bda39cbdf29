"""
Error types and message utilities for the registry GC listener.

Every failure the listener reports carries a category, a primary message and
a list of suggested fixes so that a log line is enough for an operator to act
on. The registry client raises TransportError / ProtocolError / NotFound, the
garbage collector raises ReclamationFailure.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Categories of errors for better error handling"""
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    CONFIGURATION = "configuration"
    PERMISSION = "permission"
    PROTOCOL = "protocol"
    NOT_FOUND = "not_found"
    RECLAMATION = "reclamation"
    UNKNOWN = "unknown"


class ActionableError(Exception):
    """Exception with actionable guidance for users"""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize actionable error

        Args:
            message: Primary error message
            category: Error category for classification
            suggestions: List of suggested fixes
            details: Additional context information
        """
        self.message = message
        self.category = category
        self.suggestions = suggestions or []
        self.details = details or {}
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message with suggestions"""
        lines = [f"❌ {self.message}"]

        if self.suggestions:
            lines.append("\n💡 Suggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        if self.details:
            lines.append("\n📋 Additional details:")
            for key, value in self.details.items():
                lines.append(f"   {key}: {value}")

        return "\n".join(lines)


class TransportError(ActionableError):
    """The registry could not be reached (connection refused, DNS, timeout)."""


class ProtocolError(ActionableError):
    """The registry answered with a non-success status or a malformed body."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        self.status_code = status_code
        kwargs.setdefault("category", ErrorCategory.PROTOCOL)
        super().__init__(message, **kwargs)


class NotFound(ProtocolError):
    """The resource vanished between listing and use.

    Expected during normal operation: a tag may be deleted or re-pushed by
    someone else while a prune is running. Callers treat it as "already gone".
    """

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.NOT_FOUND)
        super().__init__(message, status_code=404, **kwargs)


class ReclamationFailure(ActionableError):
    """registry garbage-collect exited non-zero or could not be started."""

    def __init__(self, message: str, output: str = "", returncode: Optional[int] = None, **kwargs):
        self.output = output
        self.returncode = returncode
        kwargs.setdefault("category", ErrorCategory.RECLAMATION)
        super().__init__(message, **kwargs)


def create_registry_connection_error(registry_url: str, error: Exception) -> TransportError:
    """Create actionable error for registry connection failures"""
    error_str = str(error).lower()

    suggestions = [
        f"Verify the registry URL is correct: {registry_url}",
        "Check network connectivity to the registry",
        "Check if the registry service is running",
    ]

    if "timeout" in error_str or "timed out" in error_str:
        suggestions.insert(1, "Check if the registry is experiencing high load")
        suggestions.insert(2, "Raise REGISTRY_TIMEOUT if large catalogs are slow to list")

    if "name resolution" in error_str or "dns" in error_str or "name or service not known" in error_str:
        suggestions.insert(1, "Verify DNS resolution for the registry hostname")

    return TransportError(
        message=f"Failed to connect to Docker registry at {registry_url}",
        category=ErrorCategory.CONNECTION,
        suggestions=suggestions,
        details={
            "registry_url": registry_url,
            "error_type": type(error).__name__,
            "error_message": str(error)
        }
    )


def create_registry_protocol_error(registry_url: str, operation: str, status_code: Optional[int],
                                   body: str = "") -> ProtocolError:
    """Create actionable error for unexpected registry responses"""
    suggestions = []
    category = ErrorCategory.PROTOCOL

    if status_code in (401, 403):
        category = ErrorCategory.AUTHENTICATION
        suggestions.extend([
            "Verify REGISTRY_USER and REGISTRY_PASS are set correctly",
            "Check the user is allowed to list and delete in this registry",
        ])
    elif status_code == 405:
        category = ErrorCategory.CONFIGURATION
        suggestions.extend([
            "Enable deletes in the registry (storage.delete.enabled: true)",
            "Or set REGISTRY_STORAGE_DELETE_ENABLED=true on the registry container",
        ])
    elif status_code is not None and status_code >= 500:
        suggestions.append("Check the registry logs; the next scheduled run will retry")
    else:
        suggestions.append(f"Verify {registry_url} speaks the Docker Registry HTTP API v2")

    details: Dict[str, Any] = {"registry_url": registry_url, "operation": operation}
    if status_code is not None:
        details["status_code"] = status_code
    if body:
        details["body"] = body[:200]

    status_text = f"status {status_code}" if status_code is not None else "a malformed response"
    return ProtocolError(
        message=f"Registry returned {status_text} for {operation}",
        status_code=status_code,
        category=category,
        suggestions=suggestions,
        details=details,
    )


def create_reclamation_error(command: List[str], returncode: Optional[int], output: str = "",
                             error: Optional[Exception] = None) -> ReclamationFailure:
    """Create actionable error for a failed garbage-collect invocation"""
    suggestions = [
        "Check the registry configuration file path (REGISTRY_CONFIG)",
        "Verify the listener has write access to the registry storage volume",
    ]

    if error is not None and isinstance(error, FileNotFoundError):
        suggestions.insert(0, f"Install the registry binary or fix PATH ('{command[0]}' not found)")
    if "read-only" in output.lower():
        suggestions.insert(0, "Mount the registry storage volume read-write")

    details: Dict[str, Any] = {"command": " ".join(command)}
    if returncode is not None:
        details["returncode"] = returncode
    if error is not None:
        details["error_type"] = type(error).__name__
        details["error_message"] = str(error)

    return ReclamationFailure(
        message="Registry garbage collection failed",
        output=output,
        returncode=returncode,
        suggestions=suggestions,
        details=details,
    )


def create_kubernetes_error(operation: str, error: Exception) -> ActionableError:
    """Create actionable error for Kubernetes API failures"""
    error_str = str(error).lower()

    suggestions = [
        "Verify Kubernetes cluster access (kubectl cluster-info)",
        "Verify RBAC permissions for pods/exec in the registry namespace",
        "Check if the namespace exists and is accessible"
    ]

    if "403" in error_str or "forbidden" in error_str:
        suggestions.insert(0, "Verify service account has required permissions")

    if "404" in error_str or "not found" in error_str:
        suggestions.insert(0, "Verify REGISTRY_STATEFULSET names an existing StatefulSet")

    return ActionableError(
        message=f"Kubernetes operation failed: {operation}",
        category=ErrorCategory.PERMISSION if "403" in error_str or "forbidden" in error_str else ErrorCategory.RECLAMATION,
        suggestions=suggestions,
        details={
            "operation": operation,
            "error_type": type(error).__name__,
            "error_message": str(error)
        }
    )
