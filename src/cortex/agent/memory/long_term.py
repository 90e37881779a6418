"""
Long-Term Memory.

Durable facts about the user, extracted from finished exchanges and
recalled by keyword on later turns:

- MemoryExtractor asks the LLM for `keywords|importance|content` lines
- PostgresMemoryStore / InMemoryMemoryStore persist and search records
- format_memories_for_prompt renders recalled facts for the system prompt
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional

from ..domain.entities import Importance, LongTermMemoryRecord, UserContext
from ..domain.ports import ILongTermMemoryStore
from ..errors import MemoryStoreError
from ..retrieval.bm25 import STOPWORDS

if TYPE_CHECKING:
    from ..domain.ports import ILLMProvider

logger = logging.getLogger(__name__)

_QUERY_SEPARATORS = re.compile(r"[，。！？、；：“”‘’\"'（）【】,.!?;:()\[\]\s]")
_KEYWORD_SEPARATORS = re.compile(r"[,，]")

IMPORTANCE_RANK = {Importance.HIGH: 0, Importance.NORMAL: 1}

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS long_memories (
    id UUID PRIMARY KEY,
    tenant_id TEXT,
    session_id TEXT,
    content TEXT NOT NULL,
    keywords TEXT NOT NULL DEFAULT '',
    importance TEXT NOT NULL DEFAULT 'normal',
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_long_memories_tenant ON long_memories (tenant_id, created_at DESC);
"""


def search_tokens(query: str) -> list[str]:
    """Split a query into search tokens (at least 2 characters, no stopwords)."""
    tokens = []
    for word in _QUERY_SEPARATORS.sub(" ", query).split():
        if len(word) >= 2 and word not in STOPWORDS and word not in tokens:
            tokens.append(word)
    return tokens


def escape_like(token: str) -> str:
    """Escape LIKE wildcards so a token matches only itself."""
    return token.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def format_memories_for_prompt(records: list[LongTermMemoryRecord]) -> str:
    """Render recalled memories as a system prompt block ('' when empty)."""
    if not records:
        return ""

    facts = "\n".join(f"- {record.content}" for record in records)
    return (
        "\n\n[长期记忆 - 你记得关于这个用户的以下信息]\n"
        + facts
        + "\n[请在回答时自然地参考这些信息，但不要刻意提及'我记得'，除非用户主动问起]"
    )


# ============================================
# Extraction
# ============================================


class MemoryExtractor:
    """Extracts durable user facts from one exchange using the LLM.

    Usage:
        extractor = MemoryExtractor(llm_provider)
        records = await extractor.extract(user_message, reply, context, session_id)
        for record in records:
            await memory_store.save(record)
    """

    EXTRACTION_PROMPT = """你是一个信息提取助手。从以下对话中提取值得长期记住的关键信息。
只提取以下类型的信息：
- 用户的个人偏好（喜欢/不喜欢什么）
- 用户提到的个人事实（名字、职业、宠物、家庭等）
- 重要的决定或计划
- 用户的技术栈或工作相关信息

如果没有值得记住的信息，回复 "NONE"。
如果有，按以下格式回复（每条一行）：
关键词|重要程度|记忆内容

关键词用逗号分隔，重要程度为 high 或 normal。

示例：
川菜,美食,偏好|normal|用户喜欢吃川菜，特别是麻辣火锅
猫,宠物,咪咪|high|用户养了一只叫咪咪的橘猫"""

    MIN_USER_CHARS = 10
    MIN_REPLY_CHARS = 20
    REPLY_EXCERPT_CHARS = 500
    MIN_CONTENT_CHARS = 5

    def __init__(self, llm_provider: Optional["ILLMProvider"] = None):
        self.llm: Optional["ILLMProvider"] = llm_provider

    def should_extract(self, user_message: str, reply: str) -> bool:
        """Skip exchanges too short to carry a durable fact."""
        return not (
            len(user_message) < self.MIN_USER_CHARS and len(reply) < self.MIN_REPLY_CHARS
        )

    async def extract(
        self,
        user_message: str,
        reply: str,
        context: Optional[UserContext] = None,
        session_id: Optional[str] = None,
    ) -> list[LongTermMemoryRecord]:
        """Extract memory records from an exchange.

        Raises:
            Exception: Whatever the LLM call raises; callers running this
                in the background log and drop it
        """
        if not self.llm:
            logger.warning("No LLM provider configured for memory extraction")
            return []

        if not self.should_extract(user_message, reply):
            return []

        response = await self.llm.complete(
            prompt=f"用户说: {user_message}\nAI回复: {reply[: self.REPLY_EXCERPT_CHARS]}",
            system_prompt=self.EXTRACTION_PROMPT,
            temperature=0.1,
        )

        records = self.parse_response(
            response,
            tenant_id=context.tenant_id if context else None,
            session_id=session_id,
        )
        logger.debug(f"Extracted {len(records)} memories")
        return records

    def parse_response(
        self,
        response: str,
        tenant_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> list[LongTermMemoryRecord]:
        """Parse `keywords|importance|content` lines."""
        content = (response or "").strip()
        if not content or content == "NONE":
            return []

        records = []
        for line in content.splitlines():
            if "|" not in line:
                continue
            parts = line.split("|")
            if len(parts) < 3:
                continue

            memory = parts[2].strip()
            if len(memory) <= self.MIN_CONTENT_CHARS:
                continue

            keywords = tuple(
                keyword.strip()
                for keyword in _KEYWORD_SEPARATORS.split(parts[0])
                if keyword.strip()
            )
            records.append(
                LongTermMemoryRecord(
                    content=memory,
                    keywords=keywords,
                    importance=Importance.parse(parts[1]),
                    tenant_id=tenant_id,
                    session_id=session_id,
                )
            )

        return records


# ============================================
# Stores
# ============================================


class PostgresMemoryStore(ILongTermMemoryStore):
    """Long-term memory in PostgreSQL (table long_memories).

    Matching is substring based (ILIKE on content and keywords), OR
    across tokens.
    """

    def __init__(self, db_pool):
        """Initialize the store.

        Args:
            db_pool: asyncpg connection pool
        """
        self.db = db_pool

    async def ensure_schema(self) -> None:
        """Create the table if it does not exist."""
        async with self.db.acquire() as conn:
            await conn.execute(SCHEMA_SQL)

    async def save(self, record: LongTermMemoryRecord) -> LongTermMemoryRecord:
        try:
            async with self.db.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO long_memories (
                        id, tenant_id, session_id, content, keywords, importance, created_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    record.id,
                    record.tenant_id,
                    record.session_id,
                    record.content,
                    record.keyword_text,
                    record.importance.value,
                    record.created_at,
                )
        except Exception as e:
            raise MemoryStoreError(f"Failed to save memory: {e}", cause=e)

        logger.info(f"Saved long-term memory: {record.content[:50]}")
        return record

    async def search(
        self,
        query: str,
        context: Optional[UserContext] = None,
        limit: int = 5,
    ) -> list[LongTermMemoryRecord]:
        tokens = search_tokens(query)
        if not tokens:
            return []

        params: list = []
        conditions = []
        for token in tokens:
            params.append(f"%{escape_like(token)}%")
            placeholder = f"${len(params)}"
            conditions.append(
                f"(content ILIKE {placeholder} ESCAPE '\\'"
                f" OR keywords ILIKE {placeholder} ESCAPE '\\')"
            )

        where = "(" + " OR ".join(conditions) + ")"
        if context is not None:
            params.append(context.tenant_id)
            where += f" AND tenant_id = ${len(params)}"

        params.append(limit)
        sql = f"""
            SELECT id, tenant_id, session_id, content, keywords, importance, created_at
            FROM long_memories
            WHERE {where}
            ORDER BY
                CASE importance WHEN 'high' THEN 0 WHEN 'normal' THEN 1 ELSE 2 END,
                created_at DESC
            LIMIT ${len(params)}
        """

        try:
            async with self.db.acquire() as conn:
                rows = await conn.fetch(sql, *params)
        except Exception as e:
            raise MemoryStoreError(f"Failed to search memories: {e}", cause=e)

        return [
            LongTermMemoryRecord(
                id=row["id"],
                tenant_id=row["tenant_id"],
                session_id=row["session_id"],
                content=row["content"],
                keywords=tuple(k for k in _KEYWORD_SEPARATORS.split(row["keywords"]) if k),
                importance=Importance.parse(row["importance"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]


class InMemoryMemoryStore(ILongTermMemoryStore):
    """Process-local long-term memory with the same matching rules."""

    def __init__(self):
        self._records: list[LongTermMemoryRecord] = []

    async def save(self, record: LongTermMemoryRecord) -> LongTermMemoryRecord:
        self._records.append(record)
        return record

    async def search(
        self,
        query: str,
        context: Optional[UserContext] = None,
        limit: int = 5,
    ) -> list[LongTermMemoryRecord]:
        tokens = [token.lower() for token in search_tokens(query)]
        if not tokens:
            return []

        matches = []
        for record in self._records:
            if context is not None and record.tenant_id != context.tenant_id:
                continue
            haystacks = (record.content.lower(), record.keyword_text.lower())
            if any(token in text for token in tokens for text in haystacks):
                matches.append(record)

        # Newest first, then a stable sort by importance keeps recency within a rank
        matches.sort(key=lambda r: r.created_at, reverse=True)
        matches.sort(key=lambda r: IMPORTANCE_RANK.get(r.importance, 2))
        return matches[:limit]
