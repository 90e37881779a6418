"""Knowledge base search tool."""

from __future__ import annotations

from pydantic import Field

from ..retrieval.knowledge_base import KnowledgeBase
from .base import BaseTool, ToolParams


class KnowledgeSearchParams(ToolParams):
    query: str = Field(description="搜索关键词，例如 '年假几天'、'StarChat 价格'、'报销流程'")


class KnowledgeSearchTool(BaseTool):
    """Search the company knowledge base (top 3 chunks)."""

    name = "search_knowledge_base"
    description = (
        "搜索公司知识库。当用户询问公司制度、产品信息、报销政策、考勤规则、请假制度等公司相关问题时使用。"
        "传入搜索关键词，返回相关的文档内容。"
    )
    params_model = KnowledgeSearchParams
    timeout_seconds = 60.0

    TOP_K = 3

    def __init__(self, knowledge_base: KnowledgeBase):
        self.knowledge_base = knowledge_base

    async def execute(self, params: KnowledgeSearchParams) -> str:
        return await self.knowledge_base.search_text(params.query, top_k=self.TOP_K)
