from typing import Any, Dict, List, Sequence, Union

from models.chat import Message

MessageLike = Union[Message, Dict[str, Any]]


def _field(message: MessageLike, name: str) -> Any:
    if isinstance(message, Message):
        return getattr(message, name, None)
    if isinstance(message, dict):
        return message.get(name)
    return None


def to_message_dicts(messages: Sequence[MessageLike]) -> List[Dict[str, Any]]:
    """Convert messages to the OpenAI-style dicts chat targets expect."""
    out: List[Dict[str, Any]] = []
    for m in messages:
        if isinstance(m, Message):
            out.append(m.to_dict())
        elif isinstance(m, dict):
            out.append(dict(m))
    return out


def strip_orphaned_tool_messages(messages: Sequence[MessageLike]) -> List[MessageLike]:
    """Drop tool-result messages that no earlier assistant tool call announced.

    Each announced tool call id may be answered once; a second tool message
    for the same id is dropped too. Entries without a role are discarded.
    """
    out: List[MessageLike] = []
    valid_ids = set()

    for m in messages:
        role = _field(m, "role")
        if not role:
            continue

        if role == "assistant":
            for call in _field(m, "tool_calls") or []:
                call_id = call.get("id") if isinstance(call, dict) else getattr(call, "id", None)
                if call_id:
                    valid_ids.add(str(call_id))
            out.append(m)
            continue

        if role == "tool":
            call_id = str(_field(m, "tool_call_id") or "")
            if not call_id or call_id not in valid_ids:
                continue
            valid_ids.discard(call_id)

        out.append(m)

    return out
