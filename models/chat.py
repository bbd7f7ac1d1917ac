from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Role = Literal["system", "user", "assistant", "tool"]


class Message(BaseModel):
    """Chat message in the OpenAI-compatible shape every target accepts."""

    role: Role
    content: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ChatResponse(BaseModel):
    content: Optional[str] = None
    tool_calls: List[Dict[str, Any]] = Field(default_factory=list)
    finish_reason: Optional[str] = None
    model: Optional[str] = None


class TargetPolicy(BaseModel):
    """Per-target capability declaration; defaults to fully capable."""

    supports_tools: bool = True
    supports_stream: bool = True
    weight: int = 1

    @field_validator("weight", mode="before")
    @classmethod
    def _clamp_weight(cls, v: Any) -> int:
        try:
            w = int(v)
        except (TypeError, ValueError):
            return 1
        return w if w >= 1 else 1

    def allows(self, capability: Optional[str]) -> bool:
        if capability == "tools":
            return self.supports_tools
        if capability == "stream":
            return self.supports_stream
        return True


class RouteTarget(BaseModel):
    """A chat model handle owned by the router for its lifetime."""

    id: str
    handle: Any
    policy: TargetPolicy = Field(default_factory=TargetPolicy)

    model_config = ConfigDict(arbitrary_types_allowed=True)


class TargetHealth(BaseModel):
    failure_count: int = 0
    cooldown_until: float = 0.0

    model_config = ConfigDict(validate_assignment=True)


__all__ = [
    "Message",
    "ChatResponse",
    "TargetPolicy",
    "RouteTarget",
    "TargetHealth",
    "Role",
]
