from typing import Any, Dict, List, Optional


class AgentContext:
    """Caller-owned key/value store scoped to one session or conversation.

    The router keeps sticky selections and round-robin positions here, so
    each session carries its own routing memory.
    """

    def __init__(self, vars: Optional[Dict[str, Any]] = None):
        self._vars: Dict[str, Any] = dict(vars or {})

    def get_var(self, key: str) -> Any:
        return self._vars.get(key)

    def set_var(self, key: str, value: Any) -> None:
        self._vars[key] = value

    def forget_var(self, key: str) -> None:
        self._vars.pop(key, None)

    def list_vars(self) -> List[str]:
        return list(self._vars.keys())
