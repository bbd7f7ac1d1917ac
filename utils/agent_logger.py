"""Fire-and-forget logging collaborator handed to routers and tools.

Components accept any object with ``log(scope, message)``; the loguru-backed
implementation below is what the host wires in by default.
"""

from __future__ import annotations

from typing import Optional, Protocol

from loguru import logger

SCOPE_MODES = ("inherit", "fixed", "default")


class AgentLogger(Protocol):
    def log(self, scope: str, message: str) -> None:
        ...


class LoguruAgentLogger:
    """Forward scoped log lines to loguru with the scope bound as ``extra``.

    Scope modes:
        inherit: use the scope passed by the caller.
        fixed: always use the configured scope.
        default: use the configured scope only when the caller passes none.
    """

    def __init__(self, mode: str = "inherit", scope: Optional[str] = None, level: str = "INFO"):
        mode = (mode or "inherit").strip().lower()
        self.mode = mode if mode in SCOPE_MODES else "inherit"
        self.scope = scope
        self.level = level

    def resolve_scope(self, scope: str) -> str:
        if self.mode == "fixed":
            return self.scope or "default"
        if self.mode == "default" and not scope:
            return self.scope or "default"
        return scope or "default"

    def log(self, scope: str, message: str) -> None:
        try:
            logger.bind(scope=self.resolve_scope(scope)).log(self.level, message)
        except Exception:  # noqa: BLE001 - logging must never break the caller
            pass
