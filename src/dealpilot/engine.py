"""The agent engine: drives one conversation through the pillars.

``AgentOrchestrator`` appends the user's message, streams the model's reply
through the failover policy, executes requested tools, and finalizes the
assistant message. It is the error boundary: callers never see transport or
tool exceptions, only ``last_error`` and the events pushed to subscribers.
"""

import asyncio
import logging
from contextlib import aclosing
from enum import Enum
from typing import Callable, List, Optional

from .crm import CRMSnapshot
from .degraded import synthesize
from .errors import QuotaExceeded, TransportError
from .failover import CredentialFailoverPolicy
from .llm import DEFAULT_STEP_BUDGET, LLM
from .models import (
    ASSISTANT_ROLE,
    USER_ROLE,
    AgentEvent,
    ChatMessage,
    ToolInvocation,
)
from .store import ConversationStore
from .tools import NoTool, Tool

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = """You are DealPilot, the operational co-pilot of a sales CRM.

You are technical, proactive and direct. You help the user run the pipeline,
not just talk about it.

YOUR CAPABILITIES:
- Search and analyze deals, contacts and activities
- Create activities and deals
- Move deals between pipeline stages and update their values
- Spot stagnant deals and suggest next actions

OPERATING RULES:
1. Always use the available tools to fetch real data before answering
2. Be concise and direct
3. When you create or change something, confirm what was done
4. When you analyze, give actionable insights
5. Format amounts in reais (R$) and dates as dd/mm/yyyy

If you notice opportunities or risks, mention them."""

Listener = Callable[[AgentEvent], None]


class AgentState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DEGRADED = "degraded"
    CANCELLED = "cancelled"


class StreamHandle:
    """A cancellable in-flight generation."""

    def __init__(self):
        self.cancel_event = asyncio.Event()
        self.task: Optional[asyncio.Task] = None
        self.started = False

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def active(self) -> bool:
        return self.task is not None and not self.task.done()

    def cancel(self) -> None:
        self.cancel_event.set()
        if self.active:
            self.task.cancel()

    async def wait(self) -> None:
        if self.task is not None:
            await asyncio.wait({self.task})


class AgentOrchestrator:
    """Coordinates a single conversation between the user, the LLM and the tools.

    Parameters
    ----------
    conversation_id : str
        Identity of the conversation in ``store``. Supplied by the caller.
    llm : LLM
        The primary model client.
    tools : Tool, optional
        Tools the model may call. Defaults to ``NoTool()``.
    store : ConversationStore, optional
        Message log. Defaults to an in-memory one.
    secondary_llm : LLM, optional
        Model client used once when the primary hits its quota.
    snapshot : callable, optional
        Returns the current ``CRMSnapshot`` for offline replies.
    degraded : callable, optional
        ``(utterance, snapshot) -> text`` used when every backend is over quota.
    system_prompt : str, optional
    step_budget : int, optional
        Maximum generate/tool round trips per turn.
    failover_delay : float, optional
        Seconds to wait before the secondary attempt.
    on_tool_call : callable, optional
        Called with every executed ``ToolInvocation``.
    """

    def __init__(
        self,
        conversation_id: str,
        llm: LLM,
        tools: Optional[Tool] = None,
        store: Optional[ConversationStore] = None,
        secondary_llm: Optional[LLM] = None,
        snapshot: Optional[Callable[[], CRMSnapshot]] = None,
        degraded: Callable[[str, CRMSnapshot], str] = synthesize,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        step_budget: int = DEFAULT_STEP_BUDGET,
        failover_delay: float = 0.0,
        on_tool_call: Optional[Callable[[ToolInvocation], None]] = None,
    ):
        if step_budget < 1:
            raise ValueError("step_budget must be at least 1")
        self.conversation_id = conversation_id
        self.tools = tools if tools is not None else NoTool()
        self.store = store if store is not None else ConversationStore()
        self.policy = CredentialFailoverPolicy(
            llm, secondary_llm, retry_delay=failover_delay
        )
        self.snapshot = snapshot
        self.degraded = degraded
        self.system_prompt = system_prompt
        self.step_budget = step_budget
        self.on_tool_call = on_tool_call

        self.state = AgentState.IDLE
        self.last_error: Optional[str] = None
        self._handle: Optional[StreamHandle] = None
        self._turn_lock = asyncio.Lock()
        self._listeners: List[Listener] = []

    # --- Read access ---
    @property
    def messages(self) -> List[ChatMessage]:
        return self.store.load(self.conversation_id)

    @property
    def is_loading(self) -> bool:
        return self.state is not AgentState.IDLE

    # --- Subscriptions ---
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Registers ``listener`` for events and returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, type: str, **fields) -> None:
        event = AgentEvent(type=type, conversation_id=self.conversation_id, **fields)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed on %s event", type)

    # --- Commands ---
    async def send_message(self, text: str) -> None:
        """Sends a user message and waits until the turn is over.

        Blank text is ignored. A send that is already in flight for this
        conversation is cancelled, and this one starts once it has wound down.
        """
        if not text or not text.strip():
            return

        handle = StreamHandle()
        superseded = self._handle
        self._handle = handle
        if superseded is not None:
            superseded.cancel()

        try:
            async with self._turn_lock:
                self.last_error = None
                self.state = AgentState.SENDING
                self.store.append(
                    self.conversation_id, ChatMessage(role=USER_ROLE, content=text)
                )
                if handle.cancel_requested:
                    # Superseded while waiting for the previous turn.
                    self._cancelled()
                    self._release(handle)
                    return

                handle.task = asyncio.create_task(self._run_turn(text, handle))
                try:
                    await handle.wait()
                except asyncio.CancelledError:
                    handle.cancel()
                    raise
                if not handle.started:
                    # Cancelled before the turn got to run.
                    self._cancelled()
                    self._release(handle)
        except asyncio.CancelledError:
            if handle.task is None:
                handle.cancel()
                self._release(handle)
            raise

    def stop_generation(self) -> None:
        """Cancels the in-flight generation, if any. Safe to call at any time."""
        if self._handle is not None:
            self._handle.cancel()

    def clear_messages(self) -> bool:
        """Empties the conversation. Returns ``False`` while a send is in flight."""
        if self.state is not AgentState.IDLE:
            logger.warning("Ignoring clear of %s while a send is in flight", self.conversation_id)
            return False
        self.store.clear(self.conversation_id)
        self.last_error = None
        return True

    clear = clear_messages

    # --- Turn lifecycle ---
    async def _run_turn(self, text: str, handle: StreamHandle) -> None:
        handle.started = True
        convo_id = self.conversation_id
        invocations: List[ToolInvocation] = []
        parts: List[str] = []

        def record_tool_call(invocation: ToolInvocation) -> None:
            invocations.append(invocation)
            if self.on_tool_call is not None:
                self.on_tool_call(invocation)
            self._emit("tool_call", tool_call=invocation)

        def restart(error: QuotaExceeded) -> None:
            parts.clear()
            self.store.discard_streaming(convo_id)

        stream = self.policy.stream(
            self.store.load(convo_id),
            self.tools,
            system_prompt=self.system_prompt,
            step_budget=self.step_budget,
            cancel_event=handle.cancel_event,
            on_tool_call=record_tool_call,
            on_failover=restart,
        )
        try:
            async with aclosing(stream) as deltas:
                async for delta in deltas:
                    self.state = AgentState.STREAMING
                    parts.append(delta)
                    content = "".join(parts)
                    self.store.replace_streaming(convo_id, content)
                    self._emit("delta", delta=delta, content=content)

            if handle.cancel_requested:
                self._cancelled()
                return

            self.state = AgentState.FINALIZING
            message = self.store.finalize(convo_id, tool_calls=invocations)
            self._emit("finalized", message=message)
        except asyncio.CancelledError:
            if not handle.cancel_requested:
                raise
            self._cancelled()
        except QuotaExceeded as e:
            self._degrade(text, e)
        except TransportError as e:
            self._fail(e)
        except Exception as e:
            logger.exception("Unexpected failure in conversation %s", convo_id)
            self._fail(e)
        finally:
            self._release(handle)

    def _release(self, handle: StreamHandle) -> None:
        # A superseded turn leaves the state to the send that replaced it.
        if self._handle is handle:
            self._handle = None
            self.state = AgentState.IDLE

    def _cancelled(self) -> None:
        self.state = AgentState.CANCELLED
        self.store.discard_streaming(self.conversation_id)
        self._emit("cancelled")

    def _degrade(self, text: str, error: QuotaExceeded) -> None:
        logger.warning("All credentials are over quota, answering offline: %s", error)
        self.state = AgentState.DEGRADED
        self.store.discard_streaming(self.conversation_id)
        try:
            snapshot = self.snapshot() if self.snapshot is not None else CRMSnapshot()
            content = self.degraded(text, snapshot)
        except Exception as e:
            logger.exception("Offline reply failed")
            self._fail(e)
            return
        message = ChatMessage(role=ASSISTANT_ROLE, content=content)
        self.store.append(self.conversation_id, message)
        self._emit("degraded", message=message)

    def _fail(self, error: Exception) -> None:
        logger.error("Generation failed for %s: %s", self.conversation_id, error)
        self.store.discard_streaming(self.conversation_id)
        self.last_error = str(error) or error.__class__.__name__
        self._emit("error", error=self.last_error)
