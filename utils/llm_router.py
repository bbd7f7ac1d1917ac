"""Routing chat model with failover, weighted round-robin, sticky selection and cooldowns.

ChatRouter implements the ChatModel capability itself, so routers nest. Each
call computes the capable candidates, tries the session's sticky target first,
then walks the strategy order, skipping targets whose circuit is open.

Usage example:
    router = ChatRouter.from_settings(get_settings())
    ctx = AgentContext()
    reply = await router.chat([Message(role="user", content="Hi")], context=ctx)
"""

import asyncio
import threading
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from loguru import logger

from models.chat import ChatResponse, RouteTarget, TargetHealth, TargetPolicy
from services.exceptions import (
    CapabilityUnavailableError,
    NoAvailableTargetsError,
    NoCapableTargetsError,
    TargetFailureError,
)
from utils.agent_logger import AgentLogger
from utils.chat_models import LiteLLMChatModel
from utils.context import AgentContext
from utils.error_handling import classify_error
from utils.message_utils import MessageLike, strip_orphaned_tool_messages

STRATEGIES = ("failover", "roundrobin")
STICKY_MODES = ("global", "per_op")


class ChatRouter:
    """Routes chat calls across several targets.

    Health state (failure counts, cooldowns) belongs to the router and is
    shared by every caller. Sticky selections and round-robin positions live
    in the caller's ``AgentContext``; without a context there is no sticky
    reuse and round-robin falls back to configured order.
    """

    def __init__(
        self,
        targets: Sequence[RouteTarget],
        id: str = "router",
        strategy: str = "failover",
        sticky: bool = True,
        sticky_mode: str = "global",
        max_failures: int = 3,
        cooldown_seconds: float = 120,
        context: Optional[AgentContext] = None,
        agent_logger: Optional[AgentLogger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.targets: List[RouteTarget] = list(targets)
        self.id = id
        strategy = (strategy or "").strip().lower()
        self.strategy = strategy if strategy in STRATEGIES else "failover"
        self.sticky = bool(sticky)
        sticky_mode = (sticky_mode or "").strip().lower()
        self.sticky_mode = sticky_mode if sticky_mode in STICKY_MODES else "global"
        self.max_failures = max(1, int(max_failures))
        self.cooldown_seconds = max(0.0, float(cooldown_seconds))
        self.context = context
        self.agent_logger = agent_logger
        self._clock = clock

        self._health: List[TargetHealth] = [TargetHealth() for _ in self.targets]
        self._lock = threading.Lock()

        self._log(
            f"Initialized: targets={len(self.targets)} strategy={self.strategy} "
            f"sticky={self.sticky} sticky_mode={self.sticky_mode} "
            f"max_failures={self.max_failures} cooldown={self.cooldown_seconds}s"
        )

    @classmethod
    def from_settings(
        cls,
        settings,
        context: Optional[AgentContext] = None,
        agent_logger: Optional[AgentLogger] = None,
    ) -> "ChatRouter":
        targets = [
            RouteTarget(
                id=t.id,
                handle=LiteLLMChatModel(
                    model=t.model, api_key=t.api_key, api_base=t.api_base, timeout=settings.TIMEOUT
                ),
                policy=TargetPolicy(supports_tools=t.tools, supports_stream=t.stream, weight=t.weight),
            )
            for t in settings.ROUTER_TARGETS
        ]
        return cls(
            targets,
            id=settings.ROUTER_ID,
            strategy=settings.ROUTER_STRATEGY,
            sticky=settings.ROUTER_STICKY,
            sticky_mode=settings.ROUTER_STICKY_MODE,
            max_failures=settings.ROUTER_MAX_FAILURES,
            cooldown_seconds=settings.ROUTER_COOLDOWN_SECONDS,
            context=context,
            agent_logger=agent_logger,
        )

    # ------------------------------------------------------------------
    # ChatModel capability
    # ------------------------------------------------------------------

    async def send(
        self,
        messages: Sequence[MessageLike],
        tools: Optional[List[Dict[str, Any]]] = None,
        context: Optional[AgentContext] = None,
    ) -> ChatResponse:
        needs_tools = bool(tools)
        send_messages = list(messages) if needs_tools else strip_orphaned_tool_messages(messages)

        return await self.route(
            "raw",
            "tools" if needs_tools else None,
            lambda handle: handle.send(send_messages, tools or []),
            context=context,
        )

    async def chat(self, messages: Sequence[MessageLike], context: Optional[AgentContext] = None) -> str:
        response = await self.send(messages, [], context=context)
        if response is None or response.content is None:
            raise TargetFailureError("Malformed chat response (router): no content", kind="malformed")
        return response.content

    async def stream(
        self,
        messages: Sequence[MessageLike],
        tools: Optional[List[Dict[str, Any]]],
        on_token: Callable[[str], Any],
        on_meta: Optional[Callable[[Dict[str, Any]], Any]] = None,
        context: Optional[AgentContext] = None,
    ) -> None:
        # Tool results are only forwarded while paired with their tool call
        send_messages = strip_orphaned_tool_messages(messages)

        await self.route(
            "stream",
            "stream",
            lambda handle: handle.stream(send_messages, tools or [], on_token, on_meta),
            context=context,
        )

    def get_options(self, context: Optional[AgentContext] = None) -> Dict[str, Any]:
        idx = self.get_sticky_index("raw", context)
        if idx is not None and 0 <= idx < len(self.targets):
            return dict(self.targets[idx].handle.get_options() or {})
        if self.targets:
            return dict(self.targets[0].handle.get_options() or {})
        return {}

    def set_options(self, options: Dict[str, Any]) -> None:
        for i, target in enumerate(self.targets):
            try:
                target.handle.set_options(options)
            except Exception as e:  # noqa: BLE001 - one target must not block the others
                self._log(f"set_options failed for target #{i} ({target.id}): {e}", "WARNING")

    # ------------------------------------------------------------------
    # Routing core
    # ------------------------------------------------------------------

    async def route(
        self,
        op: str,
        required_capability: Optional[str],
        action: Callable[[Any], Awaitable[Any]],
        context: Optional[AgentContext] = None,
    ) -> Any:
        if not self.targets:
            raise CapabilityUnavailableError(f"Router '{self.id}' has no targets connected.", "routing")

        ctx = context if context is not None else self.context
        candidates = self.candidate_indexes(required_capability)
        if not candidates:
            raise NoCapableTargetsError(required_capability)

        sticky_key = self.sticky_key(op)
        last_error: Optional[BaseException] = None
        last_idx: Optional[int] = None

        if self.sticky and ctx is not None:
            selected = ctx.get_var(sticky_key)
            if _is_index(selected) and selected in candidates and self.is_available(selected):
                self._log(f"[{op}] Sticky reuse target #{selected} ({self.targets[selected].id})")
                try:
                    result = await action(self.targets[selected].handle)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    last_error, last_idx = e, selected
                    self._mark_failure(selected, op, e)
                else:
                    self._reset_health(selected)
                    return result

        if self.strategy == "roundrobin":
            order = self.round_robin_order(candidates, op, ctx)
        else:
            order = list(candidates)

        for idx in order:
            if not self.is_available(idx):
                continue

            target = self.targets[idx]
            self._log(f"[{op}] Attempt target #{idx} ({target.id} / {type(target.handle).__name__})")
            try:
                result = await action(target.handle)
            except asyncio.CancelledError:
                # Caller cancellation says nothing about the target's health
                raise
            except Exception as e:
                last_error, last_idx = e, idx
                self._mark_failure(idx, op, e)
                continue

            self._reset_health(idx)
            if self.sticky and ctx is not None:
                ctx.set_var(sticky_key, idx)
            return result

        if last_error is not None:
            target_id = self.targets[last_idx].id if last_idx is not None else None
            kind = getattr(last_error, "kind", None) or classify_error(last_error)
            raise TargetFailureError(
                f"All targets failed for '{op}'; last error from {target_id}: {last_error}",
                target_id=target_id,
                kind=kind,
                cause=last_error,
            ) from last_error

        raise NoAvailableTargetsError()

    def candidate_indexes(self, required_capability: Optional[str]) -> List[int]:
        return [i for i, t in enumerate(self.targets) if t.policy.allows(required_capability)]

    def round_robin_order(
        self, candidates: List[int], op: str, context: Optional[AgentContext]
    ) -> List[int]:
        """Weighted rotation: each candidate appears ``weight`` times, the list is
        rotated by the stored position, then de-duplicated keeping rotated order.
        """
        if context is None:
            return list(candidates)

        weighted: List[int] = []
        for idx in candidates:
            weighted.extend([idx] * self.targets[idx].policy.weight)
        if not weighted:
            return []

        rr_key = self.round_robin_key(op)
        with self._lock:
            pos = context.get_var(rr_key)
            if not _is_index(pos):
                pos = 0
            context.set_var(rr_key, pos + 1)

        start = pos % len(weighted)
        rotated = weighted[start:] + weighted[:start]

        order: List[int] = []
        for idx in rotated:
            if idx not in order:
                order.append(idx)
        order.extend(idx for idx in candidates if idx not in order)
        return order

    def sticky_key(self, op: str) -> str:
        if self.sticky_mode == "per_op":
            return f"routingchatmodel.sticky.{self.id}.{op}"
        return f"routingchatmodel.sticky.{self.id}"

    def round_robin_key(self, op: str) -> str:
        return f"routingchatmodel.rr.{self.id}.{op}"

    def get_sticky_index(self, op: str, context: Optional[AgentContext] = None) -> Optional[int]:
        ctx = context if context is not None else self.context
        if not self.sticky or ctx is None:
            return None
        selected = ctx.get_var(self.sticky_key(op))
        return selected if _is_index(selected) else None

    # ------------------------------------------------------------------
    # Health state
    # ------------------------------------------------------------------

    def health(self, idx: int) -> TargetHealth:
        with self._lock:
            return self._health[idx].model_copy()

    def is_available(self, idx: int) -> bool:
        with self._lock:
            until = self._health[idx].cooldown_until
        return until <= 0 or self._clock() >= until

    def _reset_health(self, idx: int) -> None:
        with self._lock:
            self._health[idx] = TargetHealth()

    def _mark_failure(self, idx: int, op: str, error: BaseException) -> None:
        reason = classify_error(error)
        with self._lock:
            health = self._health[idx]
            health.failure_count += 1
            failures = health.failure_count
            opened = failures >= self.max_failures
            if opened:
                health.cooldown_until = self._clock() + self.cooldown_seconds

        target_id = self.targets[idx].id
        self._log(
            f"[{op}] FAIL target #{idx} ({target_id}): {reason} failures={failures} msg={error}",
            "WARNING",
        )
        if opened:
            self._log(
                f"[{op}] Circuit open for target #{idx} ({target_id}) for {self.cooldown_seconds}s",
                "WARNING",
            )

    def _log(self, message: str, level: str = "DEBUG") -> None:
        full = f"[ChatRouter|{self.id}] {message}"
        logger.log(level, full)
        if self.agent_logger is not None:
            self.agent_logger.log("ChatRouter", full)


def _is_index(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


__all__ = ["ChatRouter", "STRATEGIES", "STICKY_MODES"]
