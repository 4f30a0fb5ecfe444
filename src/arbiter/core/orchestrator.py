"""
Fan-out orchestrator.

Dispatches one conversation to every backend on a roster at once and
collects one slot per roster entry, whatever happens to the individual
calls.
"""

from __future__ import annotations

import asyncio
from typing import Sequence

import structlog

from arbiter.core.gateway import CompletionGateway
from arbiter.core.models import BackendDescriptor, FanOutEntry, Message
from arbiter.providers.base import ProviderError

logger = structlog.get_logger()


class FanOutOrchestrator:
    """
    Concurrent dispatch across a roster with per-backend failure isolation.

    No retries are attempted; a caller that wants one re-runs the batch.
    """

    def __init__(self, gateway: CompletionGateway):
        self.gateway = gateway

    async def run_all(
        self,
        roster: Sequence[BackendDescriptor],
        messages: list[Message],
        max_tokens: int | None = None,
        timeout: float | None = None,
    ) -> list[FanOutEntry]:
        """
        Dispatch ``messages`` to every roster entry and wait for all of them.

        Args:
            roster: Backends to query, in presentation order
            messages: Conversation in turn order
            max_tokens: Output cap per call
            timeout: Deadline in seconds per call

        Returns:
            One entry per roster item, in roster order

        Raises:
            UnknownModelError: A roster id is not registered (checked before
                any call is made)
        """
        for backend in roster:
            self.gateway.resolve(backend.id)

        logger.info("Fan-out started", backends=[b.id for b in roster])

        results = await asyncio.gather(
            *(
                self.gateway.dispatch(backend.id, messages, max_tokens, timeout)
                for backend in roster
            ),
            return_exceptions=True,
        )

        entries = []
        for backend, result in zip(roster, results):
            if isinstance(result, ProviderError):
                entries.append(FanOutEntry(
                    backend_id=backend.id,
                    model_name=backend.display_name,
                    error=str(result),
                    error_kind=result.kind,
                ))
            elif isinstance(result, Exception):
                logger.error(
                    "Unexpected fan-out failure",
                    backend=backend.id,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                entries.append(FanOutEntry(
                    backend_id=backend.id,
                    model_name=backend.display_name,
                    error=str(result),
                    error_kind="internal",
                ))
            elif isinstance(result, BaseException):
                raise result
            else:
                entries.append(FanOutEntry(
                    backend_id=backend.id,
                    model_name=backend.display_name,
                    result=result,
                ))

        logger.info(
            "Fan-out settled",
            succeeded=sum(1 for e in entries if e.success),
            failed=sum(1 for e in entries if not e.success),
        )
        return entries
