"""
Read-only blog database tools.

The model writes the SQL, so every statement is treated as untrusted
input. validate_read_only_sql() is the security boundary: it only lets
through a single SELECT (or WITH ... SELECT) without mutating keywords,
and forces a row cap. Statements then run inside a read-only transaction
with a timeout.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

import asyncpg
from pydantic import Field

from ..domain.ports import IQueryExecutor
from ..errors import ReadOnlyViolationError
from .base import BaseTool, NoParams, ToolParams

logger = logging.getLogger(__name__)

FORBIDDEN_KEYWORDS = (
    "insert", "update", "delete", "drop", "alter", "truncate", "create",
    "grant", "revoke", "copy", "merge", "call", "do",
)

_FORBIDDEN_PATTERN = re.compile(
    r"\b(" + "|".join(FORBIDDEN_KEYWORDS) + r")\b", re.IGNORECASE
)
_LEADING_CLAUSE = re.compile(r"^(select|with)\b", re.IGNORECASE)
_LIMIT_PATTERN = re.compile(r"\blimit\b", re.IGNORECASE)

SCHEMA_SQL = """
    SELECT
        t.table_name,
        c.column_name,
        c.data_type,
        c.is_nullable
    FROM information_schema.tables t
    JOIN information_schema.columns c
        ON t.table_name = c.table_name AND t.table_schema = c.table_schema
    WHERE t.table_schema = 'public'
        AND t.table_type = 'BASE TABLE'
    ORDER BY t.table_name, c.ordinal_position
"""


@dataclass
class BlogDatabaseConfig:
    """Configuration for the blog database tools.

    Attributes:
        max_rows: Row cap appended as LIMIT and enforced on fetched rows
        query_timeout: Statement timeout in seconds
    """

    max_rows: int = 50
    query_timeout: float = 10.0


def validate_read_only_sql(sql: str, max_rows: int = 50) -> str:
    """Check that a statement is a single read-only query and cap its rows.

    Args:
        sql: Statement written by the model
        max_rows: Row cap appended when the statement has no LIMIT

    Returns:
        The normalized statement, with LIMIT appended if it had none

    Raises:
        ReadOnlyViolationError: If the statement is not provably read-only
    """
    statement = sql.strip()
    if statement.endswith(";"):
        statement = statement[:-1].rstrip()

    if not statement:
        raise ReadOnlyViolationError("错误：SQL 语句为空。", tool_name="query_blog_db")

    if not _LEADING_CLAUSE.match(statement):
        raise ReadOnlyViolationError(
            "错误：只允许执行 SELECT 查询，不允许修改数据。",
            tool_name="query_blog_db",
        )

    if ";" in statement:
        raise ReadOnlyViolationError(
            "错误：只允许执行单条 SQL 语句。",
            tool_name="query_blog_db",
        )

    match = _FORBIDDEN_PATTERN.search(statement)
    if match:
        raise ReadOnlyViolationError(
            f'错误：SQL 中包含不允许的关键词 "{match.group(1).lower()}"。',
            tool_name="query_blog_db",
        )

    if not _LIMIT_PATTERN.search(statement):
        statement = f"{statement} LIMIT {max_rows}"

    return statement


def format_rows(rows: list[dict[str, Any]]) -> str:
    """Render rows as a pipe-separated table with a result count."""
    if not rows:
        return "查询结果为空。"

    headers = list(rows[0].keys())
    lines = [
        " | ".join(headers),
        " | ".join("---" for _ in headers),
    ]
    for row in rows:
        lines.append(" | ".join("NULL" if row[h] is None else str(row[h]) for h in headers))
    lines.append(f"\n共 {len(rows)} 条结果")
    return "\n".join(lines)


class AsyncpgQueryExecutor(IQueryExecutor):
    """Run statements on an asyncpg pool inside read-only transactions."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def fetch(self, sql: str, timeout: float) -> list[dict[str, Any]]:
        async with self.pool.acquire() as conn:
            async with conn.transaction(readonly=True):
                records = await conn.fetch(sql, timeout=timeout)
        return [dict(record) for record in records]


class BlogSchemaTool(BaseTool):
    """List the blog database tables and columns."""

    name = "get_blog_db_schema"
    description = (
        "获取博客数据库的表结构。当用户询问博客相关的问题时，先调用此工具了解数据库有哪些表和字段，"
        "然后再用 query_blog_db 工具编写 SQL 查询。"
    )
    params_model = NoParams
    timeout_seconds = 15.0

    def __init__(self, executor: IQueryExecutor, config: Optional[BlogDatabaseConfig] = None):
        self.executor = executor
        self.config = config or BlogDatabaseConfig()

    async def execute(self, params: NoParams) -> str:
        try:
            rows = await self.executor.fetch(SCHEMA_SQL, timeout=self.config.query_timeout)
        except (asyncpg.PostgresError, OSError) as e:
            logger.warning(f"Schema lookup failed: {e}")
            return f"获取表结构出错: {e}"

        tables: dict[str, list[str]] = {}
        for row in rows:
            not_null = ", NOT NULL" if row["is_nullable"] == "NO" else ""
            tables.setdefault(row["table_name"], []).append(
                f"  {row['column_name']} ({row['data_type']}{not_null})"
            )

        if not tables:
            return "数据库中没有找到任何表。"

        return "\n\n".join(
            f"表 {name}:\n" + "\n".join(columns) for name, columns in tables.items()
        )


class BlogQueryParams(ToolParams):
    sql: str = Field(
        description=(
            "要执行的 SELECT SQL 语句，例如 "
            "SELECT COUNT(*) FROM articles WHERE created_at >= CURRENT_DATE"
        )
    )


class BlogQueryTool(BaseTool):
    """Run a guarded read-only query against the blog database."""

    name = "query_blog_db"
    description = (
        "查询博客数据库（只读）。根据 get_blog_db_schema 获取的表结构编写 SELECT SQL 语句来查询数据。"
        "可以回答的问题举例：'我今天写了几篇博客'、'最近发布的文章'、'有多少篇已发布的文章'等。"
        "只允许 SELECT 查询，不能修改数据。"
    )
    params_model = BlogQueryParams
    timeout_seconds = 15.0

    def __init__(self, executor: IQueryExecutor, config: Optional[BlogDatabaseConfig] = None):
        self.executor = executor
        self.config = config or BlogDatabaseConfig()

    async def execute(self, params: BlogQueryParams) -> str:
        # Raises ReadOnlyViolationError, which run() renders as text
        statement = validate_read_only_sql(params.sql, self.config.max_rows)

        try:
            rows = await self.executor.fetch(statement, timeout=self.config.query_timeout)
        except (asyncpg.PostgresError, OSError) as e:
            logger.warning(f"Blog query failed: {e}")
            return f"SQL 执行出错: {e}"

        return format_rows(rows[: self.config.max_rows])
