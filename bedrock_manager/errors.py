"""Error types raised by the server manager core."""

from typing import Optional


class ManagerError(Exception):
    """Base error carrying the failed operation and server it concerned."""

    def __init__(self, message: str, operation: Optional[str] = None,
                 server_id: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.server_id = server_id
        self.cause = cause

    def __str__(self) -> str:
        parts = []
        if self.operation:
            parts.append(self.operation)
        if self.server_id:
            parts.append(self.server_id)
        prefix = f"[{' '.join(parts)}] " if parts else ""
        return f"{prefix}{self.message}"

    def to_dict(self) -> dict:
        """Structured form for display to users."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "operation": self.operation,
            "server_id": self.server_id,
        }


class ValidationError(ManagerError, ValueError):
    """Malformed metadata or input (name, memory, network out of bounds)."""


class NotFoundError(ManagerError, LookupError):
    """Referenced server has no metadata record or no container."""


class ConflictError(ManagerError):
    """A container already exists where one was about to be created."""


class OrchestrationError(ManagerError, RuntimeError):
    """The Docker Engine rejected a request or did not answer in time."""


class ExecutionError(ManagerError, RuntimeError):
    """A command could not be run inside a server container."""
