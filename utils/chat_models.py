"""Chat model capability and its litellm-backed adapter.

Any object exposing the async ``send``/``stream`` pair plus
``get_options``/``set_options`` can be routed, including another ChatRouter.
"""

from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

import litellm
from loguru import logger

from models.chat import ChatResponse
from utils.message_utils import MessageLike, to_message_dicts

TokenCallback = Callable[[str], Any]
MetaCallback = Callable[[Dict[str, Any]], Any]


class ChatModel(Protocol):
    async def send(
        self, messages: Sequence[MessageLike], tools: Optional[List[Dict[str, Any]]] = None
    ) -> ChatResponse:
        ...

    async def stream(
        self,
        messages: Sequence[MessageLike],
        tools: Optional[List[Dict[str, Any]]],
        on_token: TokenCallback,
        on_meta: Optional[MetaCallback] = None,
    ) -> None:
        ...

    def get_options(self) -> Dict[str, Any]:
        ...

    def set_options(self, options: Dict[str, Any]) -> None:
        ...


def _as_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "dict"):
        return obj.dict()
    return dict(vars(obj))


class LiteLLMChatModel:
    """One chat target reached through ``litellm.acompletion``.

    litellm owns the vendor wire format. Retries are disabled here
    (``num_retries=0``) because failover is the router's job.
    """

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: int = 30,
        **options: Any,
    ):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.timeout = timeout
        self._options: Dict[str, Any] = dict(options)

    def get_options(self) -> Dict[str, Any]:
        return {"model": self.model, "timeout": self.timeout, **self._options}

    def set_options(self, options: Dict[str, Any]) -> None:
        options = dict(options or {})
        if "model" in options:
            self.model = str(options.pop("model"))
        if "timeout" in options:
            self.timeout = int(options.pop("timeout"))
        self._options.update(options)

    def _request_kwargs(self, messages, tools) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": to_message_dicts(messages),
            "timeout": self.timeout,
            "num_retries": 0,
            **self._options,
        }
        if tools:
            kwargs["tools"] = tools
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        return kwargs

    async def send(self, messages, tools=None) -> ChatResponse:
        response = await litellm.acompletion(**self._request_kwargs(messages, tools))

        try:
            choice = response.choices[0]
            message = choice.message
        except (AttributeError, IndexError, TypeError) as e:
            logger.exception(f"Unexpected response structure from {self.model}: {e}")
            raise

        tool_calls = [_as_dict(tc) for tc in (getattr(message, "tool_calls", None) or [])]
        return ChatResponse(
            content=getattr(message, "content", None),
            tool_calls=tool_calls,
            finish_reason=getattr(choice, "finish_reason", None),
            model=getattr(response, "model", None) or self.model,
        )

    async def stream(self, messages, tools, on_token, on_meta=None) -> None:
        kwargs = self._request_kwargs(messages, tools)
        kwargs["stream"] = True
        response = await litellm.acompletion(**kwargs)

        async for chunk in response:
            choices = getattr(chunk, "choices", None) or []
            if not choices:
                continue
            choice = choices[0]
            delta = getattr(choice, "delta", None)

            token = getattr(delta, "content", None) if delta is not None else None
            if token:
                on_token(token)

            tool_calls = getattr(delta, "tool_calls", None) if delta is not None else None
            if tool_calls and on_meta is not None:
                on_meta({"event": "tool_call_delta", "tool_calls": [_as_dict(tc) for tc in tool_calls]})

            finish_reason = getattr(choice, "finish_reason", None)
            if finish_reason and on_meta is not None:
                on_meta({"event": "finish", "finish_reason": finish_reason})
