# src/convocore/memory/sync.py
"""
Memory synchronization for completed turns.

After every turn the :class:`MemorySyncCoordinator` renders the memory
blocks kept by the reasoning service, writes them in parallel through a
:class:`BaseBlockWriter` and verifies the result:

- writes run behind an ``asyncio.Semaphore`` (pool size) and are joined
  with a single deadline; writes still running at the deadline are
  cancelled and reported as timed out;
- each write is retried with exponential backoff
  (``base_delay * 2 ** (attempt - 1)``) and ends in a
  :class:`BlockWriteOutcome`;
- five consistency checks are always reported;
- when anything fails, blocks written in this run are restored to the
  last content known to be good.

Synchronization never raises to its caller; problems surface as a
PARTIAL or FAILED :class:`MemorySyncResult`.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import time
from typing import Dict, List, Optional, Tuple

from ..config.models import BlockLimitsConfig, SyncConfig
from ..exceptions import RotationError, SyncTimeoutError, ValidationError
from ..models import (BlockWriteOutcome, ConversationHistory, MemoryBlock,
                      MemorySyncResult, SyncStatus, Turn)
from ..upstream.base import BaseAgentDirectory, BaseReasoningClient
from . import blocks

logger = logging.getLogger(__name__)


# =============================================================================
# Block writers
# =============================================================================


class BaseBlockWriter(abc.ABC):
    """Destination of rendered memory blocks."""

    @abc.abstractmethod
    async def write(self, session_id: str, block: MemoryBlock, content: str) -> None:
        """
        Replace the content of ``block`` for ``session_id``.

        Raises:
            Exception: Any failure; the coordinator retries and records it.
        """
        pass


class ReasoningServiceBlockWriter(BaseBlockWriter):
    """
    Writes blocks by messaging the user's context extractor agent.

    Sessions must be registered with their user so the writer can resolve
    the agents through the directory.
    """

    def __init__(self, client: BaseReasoningClient, directory: BaseAgentDirectory):
        self._client = client
        self._directory = directory
        self._session_users: Dict[str, str] = {}

    def register_session(self, session_id: str, user_id: str) -> None:
        self._session_users[session_id] = user_id

    def unregister_session(self, session_id: str) -> None:
        self._session_users.pop(session_id, None)

    async def write(self, session_id: str, block: MemoryBlock, content: str) -> None:
        user_id = self._session_users.get(session_id)
        if user_id is None:
            raise ValidationError(f"Session '{session_id}' is not registered with the block writer.")
        agents = await self._directory.get_agents(user_id)
        await self._client.send(
            agents.context_extractor_id,
            agents.identity_id,
            blocks.render_update_message(block, content),
            role="system",
        )


# =============================================================================
# Coordinator
# =============================================================================


class MemorySyncCoordinator:
    """Fans block writes out, joins them under a deadline and verifies the outcome."""

    def __init__(
        self,
        writer: BaseBlockWriter,
        config: Optional[SyncConfig] = None,
        block_limits: Optional[BlockLimitsConfig] = None,
    ):
        self._writer = writer
        self._config = config or SyncConfig()
        self._limits = block_limits or BlockLimitsConfig()
        self._semaphore = asyncio.Semaphore(self._config.pool_size)
        self._last_good: Dict[Tuple[str, MemoryBlock], str] = {}

    def last_known_good(self, session_id: str, block: MemoryBlock) -> Optional[str]:
        return self._last_good.get((session_id, block))

    def forget_session(self, session_id: str) -> None:
        for key in [k for k in self._last_good if k[0] == session_id]:
            del self._last_good[key]

    def render(self, turn: Turn, history: ConversationHistory, correlation: float) -> Dict[MemoryBlock, str]:
        """Raw (unrotated) content of every block targeted for ``turn``."""
        targets = blocks.target_blocks(turn, self._config)
        renderers = {
            MemoryBlock.CONVERSATION_HISTORY: lambda: blocks.render_conversation_history(history),
            MemoryBlock.ACTIVE_SESSION: lambda: blocks.render_active_session(turn),
            MemoryBlock.CONTEXT_SUMMARY: lambda: blocks.render_context_summary(turn),
            MemoryBlock.MEMORY_METADATA: lambda: blocks.render_memory_metadata(
                turn, correlation, bool(blocks.pattern_updates(turn.quality_metadata))
            ),
        }
        return {block: renderers[block]() for block in targets}

    async def synchronize(self, turn: Turn, history: ConversationHistory) -> MemorySyncResult:
        """
        Write and verify the memory blocks for a completed turn.

        Args:
            turn: The completed turn.
            history: Snapshot of the session history including ``turn``.

        Returns:
            The synchronization result. Never raises.
        """
        started = time.monotonic()
        session_id = turn.session_id
        try:
            return await self._synchronize(turn, history, started)
        except Exception as e:
            logger.error("Memory synchronization failed for session %s turn %d: %s",
                         session_id, turn.turn_number, e, exc_info=True)
            return MemorySyncResult(
                session_id=session_id,
                turn_number=turn.turn_number,
                status=SyncStatus.FAILED,
                consistency_checks=self.consistency_checks(turn, history, size_ok=False),
                errors=[f"Memory synchronization failed: {e}"],
                elapsed_seconds=time.monotonic() - started,
            )

    async def _synchronize(self, turn: Turn, history: ConversationHistory, started: float) -> MemorySyncResult:
        session_id = turn.session_id
        qm = turn.quality_metadata
        context_confidence = turn.enrichment.confidence if turn.enrichment else None
        correlation = blocks.context_correlation(qm, context_confidence)

        raw = self.render(turn, history, correlation)
        targeted = list(raw)
        outcomes: Dict[MemoryBlock, BlockWriteOutcome] = {}
        errors: List[str] = []
        contents: Dict[MemoryBlock, str] = {}
        for block, text in raw.items():
            try:
                contents[block] = blocks.enforce_limit(block, text, self._limits.limit_for(block))
            except RotationError as e:
                logger.error("Session %s: %s", session_id, e)
                outcomes[block] = BlockWriteOutcome(block=block, success=False, last_error=str(e),
                                                    content_length=len(text))
                errors.append(f"Failed to update {block.value}: {e}")

        previous = {block: self.last_known_good(session_id, block) for block in contents}
        outcomes.update(await self._write_all(session_id, contents))
        for block, outcome in outcomes.items():
            if outcome.success:
                self._last_good[(session_id, block)] = contents[block]
            elif block in contents:
                errors.append(f"Failed to update {block.value}: {outcome.last_error}")

        updated = [block for block in targeted if outcomes[block].success]
        checks = self.consistency_checks(
            turn, history,
            size_ok=len(contents) == len(raw) and blocks.within_limits(contents, self._limits),
        )
        consistent = all(checks.values())
        if len(updated) == len(targeted) and consistent:
            status = SyncStatus.SYNCHRONIZED
        else:
            status = SyncStatus.PARTIAL
            failed_checks = [name for name, ok in checks.items() if not ok]
            if failed_checks:
                logger.warning("Session %s turn %d failed consistency checks: %s",
                               session_id, turn.turn_number, ", ".join(failed_checks))
                errors.append(f"Consistency checks failed: {', '.join(failed_checks)}")

        rollback_performed = False
        if status == SyncStatus.PARTIAL and self._config.enable_rollback and updated:
            rollback_performed = await self._rollback(session_id, updated, previous, contents)
            if rollback_performed:
                errors.append("Rollback performed due to partial update failure")

        result = MemorySyncResult(
            session_id=session_id,
            turn_number=turn.turn_number,
            status=status,
            targeted_block_ids=targeted,
            updated_block_ids=updated,
            consistency_checks=checks,
            outcomes=[outcomes[block] for block in targeted],
            errors=errors,
            rollback_performed=rollback_performed,
            context_correlation=correlation,
            context_improvements=blocks.context_improvements(qm, context_confidence),
            optimization_suggestions=blocks.optimization_suggestions(qm),
            elapsed_seconds=time.monotonic() - started,
        )
        logger.debug("Session %s turn %d memory sync %s (%d/%d blocks, %.2fs)",
                     session_id, turn.turn_number, status.value, len(updated), len(targeted),
                     result.elapsed_seconds)
        return result

    async def _write_all(self, session_id: str, contents: Dict[MemoryBlock, str]) -> Dict[MemoryBlock, BlockWriteOutcome]:
        if not contents:
            return {}
        tasks = {
            asyncio.ensure_future(self._write_block(session_id, block, text)): block
            for block, text in contents.items()
        }
        done, pending = await asyncio.wait(tasks, timeout=self._config.timeout_seconds)

        outcomes: Dict[MemoryBlock, BlockWriteOutcome] = {}
        for task in done:
            block = tasks[task]
            if task.exception() is not None:
                outcomes[block] = BlockWriteOutcome(block=block, success=False, last_error=str(task.exception()),
                                                    content_length=len(contents[block]))
            else:
                outcomes[block] = task.result()

        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            timeout_error = SyncTimeoutError(self._config.timeout_seconds)
            for task in pending:
                block = tasks[task]
                logger.error("Session %s: write of %s cancelled at the sync deadline", session_id, block.value)
                outcomes[block] = BlockWriteOutcome(
                    block=block,
                    success=False,
                    last_error=str(timeout_error),
                    elapsed_seconds=self._config.timeout_seconds,
                    content_length=len(contents[block]),
                )
        return outcomes

    async def _write_block(self, session_id: str, block: MemoryBlock, content: str) -> BlockWriteOutcome:
        started = time.monotonic()
        last_error: Optional[str] = None
        max_attempts = self._config.max_attempts
        async with self._semaphore:
            for attempt in range(1, max_attempts + 1):
                try:
                    await self._writer.write(session_id, block, content)
                    logger.debug("Updated memory block %s (attempt %d)", block.value, attempt)
                    return BlockWriteOutcome(
                        block=block,
                        success=True,
                        attempts=attempt,
                        elapsed_seconds=time.monotonic() - started,
                        content_length=len(content),
                    )
                except Exception as e:
                    last_error = str(e) or type(e).__name__
                    logger.warning("Failed to update memory block %s (attempt %d/%d): %s",
                                   block.value, attempt, max_attempts, last_error)
                    if attempt < max_attempts:
                        await asyncio.sleep(self._config.base_delay_seconds * 2 ** (attempt - 1))
        logger.error("Memory block %s of session %s failed after %d attempts", block.value, session_id, max_attempts)
        return BlockWriteOutcome(
            block=block,
            success=False,
            attempts=max_attempts,
            last_error=last_error,
            elapsed_seconds=time.monotonic() - started,
            content_length=len(content),
        )

    async def _rollback(
        self,
        session_id: str,
        updated: List[MemoryBlock],
        previous: Dict[MemoryBlock, Optional[str]],
        contents: Dict[MemoryBlock, str],
    ) -> bool:
        """Rewrite the last known good content of ``updated``; one attempt per block."""
        logger.warning("Performing rollback for %d updated blocks of session %s", len(updated), session_id)
        restored = False
        for block in updated:
            snapshot = previous.get(block)
            if snapshot is None:
                logger.warning("No previous content for %s of session %s; nothing to restore", block.value, session_id)
                continue
            try:
                await asyncio.wait_for(self._writer.write(session_id, block, snapshot),
                                       timeout=self._config.timeout_seconds)
                self._last_good[(session_id, block)] = snapshot
                restored = True
            except Exception as e:
                logger.error("Rollback of %s for session %s failed: %s", block.value, session_id, e)
                self._last_good[(session_id, block)] = contents[block]
        return restored

    def consistency_checks(self, turn: Turn, history: ConversationHistory, size_ok: bool) -> Dict[str, bool]:
        return {
            "turn_number_consistency": turn.turn_number > 0,
            "session_id_consistency": (history is not None and bool(turn.session_id)
                                       and turn.session_id == history.session_id),
            "response_metadata_consistency": turn.quality_metadata is not None,
            "memory_size_limits": size_ok,
            "bidirectional_integrity": (turn.enrichment is not None
                                        and turn.quality_metadata is not None
                                        and turn.agent_response is not None),
        }
