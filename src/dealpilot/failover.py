"""Primary/secondary credential failover for a single logical request."""

import asyncio
import logging
from contextlib import aclosing
from enum import Enum
from typing import AsyncIterator, Callable, Optional

from .errors import QuotaExceeded
from .llm import LLM

logger = logging.getLogger(__name__)


class FailoverState(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class CredentialFailoverPolicy:
    """Retries a quota-rejected request once against a secondary LLM.

    Every call to ``stream`` starts in ``PRIMARY``. Only ``QuotaExceeded`` from
    the primary moves the policy to ``SECONDARY``, and only when a secondary is
    configured; the same history and tools are then replayed there. Any other
    error, and any error from the secondary, propagates unchanged.
    """

    def __init__(
        self,
        primary: LLM,
        secondary: Optional[LLM] = None,
        retry_delay: float = 0.0,
    ):
        self.primary = primary
        self.secondary = secondary
        self.retry_delay = retry_delay
        self.state = FailoverState.PRIMARY

    @property
    def active(self) -> LLM:
        if self.state is FailoverState.SECONDARY and self.secondary is not None:
            return self.secondary
        return self.primary

    async def stream(
        self,
        *args,
        on_failover: Optional[Callable[[QuotaExceeded], None]] = None,
        **kwargs,
    ) -> AsyncIterator[str]:
        """Streams text deltas from the active LLM.

        Takes the same arguments as ``LLM.stream``. ``on_failover`` is called
        with the primary's error right before the secondary attempt, so the
        caller can drop text the primary already streamed.
        """
        self.state = FailoverState.PRIMARY
        try:
            async with aclosing(self.primary.stream(*args, **kwargs)) as deltas:
                async for delta in deltas:
                    yield delta
            return
        except QuotaExceeded as e:
            if self.secondary is None:
                logger.warning("Primary credential hit its quota, no secondary configured")
                raise
            logger.warning(
                "Primary credential hit its quota, retrying with the secondary: %s", e
            )
            error = e

        self.state = FailoverState.SECONDARY
        if on_failover is not None:
            on_failover(error)
        if self.retry_delay:
            await asyncio.sleep(self.retry_delay)
        async with aclosing(self.secondary.stream(*args, **kwargs)) as deltas:
            async for delta in deltas:
                yield delta
