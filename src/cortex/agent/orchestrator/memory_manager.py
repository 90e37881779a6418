"""
Memory Manager for Agent Orchestrator.

Encapsulates long-term memory operations around a chat turn:
- Keyword recall before the model call
- Fire-and-forget fact extraction after the answer

Neither operation can fail a turn: errors are logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..domain.entities import LongTermMemoryRecord, UserContext
from ..domain.ports import ILongTermMemoryStore
from ..memory.long_term import MemoryExtractor

logger = logging.getLogger(__name__)


def _task_exception_handler(task: asyncio.Task) -> None:
    """Log exceptions from background tasks."""
    try:
        exc = task.exception()
        if exc:
            logger.error(
                f"Background task {task.get_name()} failed: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
    except asyncio.CancelledError:
        pass  # Task was cancelled, not an error


class MemoryManager:
    """Manages long-term memory operations for the agent.

    Usage:
        memory_manager = MemoryManager(
            memory_store=PostgresMemoryStore(pool),
            extractor=MemoryExtractor(llm_provider),
            search_limit=5,
        )

        memories = await memory_manager.search_memory("我的猫叫什么", context)

        # After the reply is persisted
        memory_manager.schedule_extraction(message, reply, context, session_id)
    """

    def __init__(
        self,
        memory_store: Optional[ILongTermMemoryStore] = None,
        extractor: Optional[MemoryExtractor] = None,
        search_limit: int = 5,
        enable_search: bool = True,
        enable_extraction: bool = True,
    ):
        """Initialize the memory manager.

        Args:
            memory_store: Long-term memory store
            extractor: LLM-backed fact extractor
            search_limit: Maximum memories recalled per message
            enable_search: Whether recall is enabled
            enable_extraction: Whether extraction is enabled
        """
        self.memory_store = memory_store
        self.extractor = extractor
        self.search_limit = search_limit
        self.enable_search = enable_search
        self.enable_extraction = enable_extraction
        self._tasks: set[asyncio.Task] = set()

    async def search_memory(
        self, query: str, context: Optional[UserContext] = None
    ) -> list[LongTermMemoryRecord]:
        """Recall memories relevant to the message ([] on any failure)."""
        if not self.enable_search or not self.memory_store:
            return []

        try:
            memories = await self.memory_store.search(query, context, limit=self.search_limit)
        except Exception as e:
            logger.warning(f"Memory search failed: {e}")
            return []

        if memories:
            logger.debug(f"Recalled {len(memories)} memories")
        return memories

    async def extract_and_store(
        self,
        user_message: str,
        reply: str,
        context: Optional[UserContext] = None,
        session_id: Optional[str] = None,
    ) -> int:
        """Extract facts from one exchange and save them.

        Returns:
            Number of records saved (0 when extraction failed)
        """
        if not self.enable_extraction or not self.extractor or not self.memory_store:
            return 0

        try:
            records = await self.extractor.extract(user_message, reply, context, session_id)
            for record in records:
                await self.memory_store.save(record)
        except Exception as e:
            logger.warning(f"Memory extraction failed: {e}")
            return 0

        if records:
            logger.info(f"Saved {len(records)} long-term memories")
        return len(records)

    def schedule_extraction(
        self,
        user_message: str,
        reply: str,
        context: Optional[UserContext] = None,
        session_id: Optional[str] = None,
    ) -> Optional[asyncio.Task]:
        """Run extract_and_store in the background.

        The task reference is held until it completes.
        """
        if not self.enable_extraction or not self.extractor or not self.memory_store:
            return None

        task = asyncio.create_task(
            self.extract_and_store(user_message, reply, context, session_id),
            name=f"memory-extraction-{session_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(_task_exception_handler)
        return task

    @property
    def pending(self) -> int:
        """Number of extraction tasks still running."""
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for pending extraction tasks (used at shutdown)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
