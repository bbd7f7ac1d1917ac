"""Exceptions for the routing, retrieval and vector store layers."""

from typing import Optional


class CatalogError(Exception):
    """Base exception for catalog component errors."""

    def __init__(self, message: str, stage: str):
        self.message = message
        self.stage = stage
        super().__init__(message)


class InputValidationError(CatalogError):
    """Malformed caller input (empty query, missing collection key, bad limits)."""

    def __init__(self, message: str, stage: str = "validation"):
        super().__init__(message, stage)


class CapabilityUnavailableError(CatalogError):
    """A required collaborator or capability is not attached."""

    def __init__(self, message: str, stage: str = "capability"):
        super().__init__(message, stage)


class NoCapableTargetsError(CapabilityUnavailableError):
    """No router target satisfies the required capability."""

    def __init__(self, capability: Optional[str]):
        self.capability = capability
        super().__init__(
            f"No targets match required capability: {capability or 'none'}",
            "routing",
        )


class TargetFailureError(CatalogError):
    """A single routed target failed; the original error is kept as ``cause``."""

    def __init__(
        self,
        message: str,
        target_id: Optional[str] = None,
        kind: str = "error",
        cause: Optional[BaseException] = None,
    ):
        self.target_id = target_id
        self.kind = kind
        self.cause = cause
        super().__init__(message, "routing")


class NoAvailableTargetsError(CatalogError):
    """All capable targets are cooling down."""

    def __init__(self, message: str = "No available targets (all in cooldown or failing)."):
        super().__init__(message, "routing")


class StoreUnavailableError(CatalogError):
    """Vector store unreachable, timing out or answering with a 5xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, "vector_store")


class StoreProtocolError(CatalogError):
    """Vector store returned a malformed or error response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, "vector_store")
