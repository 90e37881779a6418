"""
Tests for the built-in tools.

Covers the utility tools (time, calculator, weather), the knowledge base
tool, web search parsing and the image tools over mocked transports, file
parsing inside the upload directory, the read-only SQL guard, and MCP result
conversion.
"""

from pathlib import Path
from unittest.mock import AsyncMock

import httpx
import pytest

from src.cortex.agent.domain.entities import ToolCall
from src.cortex.agent.errors import ReadOnlyViolationError
from src.cortex.agent.retrieval import NO_MATCH_MESSAGE, KnowledgeBase
from src.cortex.agent.tools import (
    AnalyzeImageTool,
    BlogQueryTool,
    BlogSchemaTool,
    CalculatorTool,
    CurrentTimeTool,
    GenerateImageTool,
    ImageServiceConfig,
    KnowledgeSearchTool,
    MCPServerConfig,
    MCPToolSource,
    ParseFileTool,
    WeatherTool,
    WebSearchTool,
    calculate,
    validate_read_only_sql,
)
from src.cortex.agent.tools.builtin import format_chinese_date
from src.cortex.agent.tools.database import format_rows
from src.cortex.agent.tools.mcp_client import convert_content, sanitize_tool_name, unique_tool_name
from src.cortex.agent.tools.web_search import parse_bing_results


async def _run(tool, **arguments):
    return await tool.run(ToolCall(id="call_test", name=tool.name, arguments=arguments))


# =============================================================================
# Utility tools
# =============================================================================


class TestCurrentTime:
    """Tests for get_current_time."""

    @pytest.mark.asyncio
    async def test_formats_in_configured_timezone(self, fixed_clock):
        result = await _run(CurrentTimeTool("Asia/Shanghai", clock=fixed_clock))
        assert result.content == "2026/02/12 星期四 14:09:57"

    def test_chinese_date(self, fixed_clock):
        assert format_chinese_date(fixed_clock()) == "2026年2月12日星期四"


class TestCalculator:
    """Tests for the calculator."""

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("127 * 389", "127 * 389 = 49403"),
            ("(100 + 50) * 0.8", "(100 + 50) * 0.8 = 120"),
            ("10 / 4", "10 / 4 = 2.5"),
            ("-3 + 5", "-3 + 5 = 2"),
            ("2 ** 10", "2 ** 10 = 1024"),
        ],
    )
    def test_arithmetic(self, expression, expected):
        assert calculate(expression) == expected

    def test_letters_are_stripped(self):
        """Names and calls never reach the evaluator."""
        assert calculate("__import__('os')").startswith("计算出错")

    def test_division_by_zero(self):
        assert calculate("1 / 0").startswith("计算出错")

    def test_huge_exponent_rejected(self):
        assert calculate("9 ** 999999").startswith("计算出错")

    def test_empty_expression(self):
        assert calculate("abc") == "无效的数学表达式"

    @pytest.mark.asyncio
    async def test_tool(self):
        result = await _run(CalculatorTool(), expression="1 + 2")
        assert result.success
        assert result.content == "1 + 2 = 3"


class TestWeather:
    """Tests for the mock weather lookup."""

    @pytest.mark.asyncio
    async def test_known_city(self):
        result = await _run(WeatherTool(), city="北京")
        assert result.content.startswith("晴")

    @pytest.mark.asyncio
    async def test_unknown_city(self):
        result = await _run(WeatherTool(), city="拉萨")
        assert "暂未收录「拉萨」" in result.content
        assert "北京" in result.content


# =============================================================================
# Knowledge base tool
# =============================================================================


class TestKnowledgeSearch:
    """Tests for search_knowledge_base."""

    @pytest.mark.asyncio
    async def test_returns_rendered_hits(self, tmp_path):
        (tmp_path / "policy.txt").write_text("年假 规定：入职满一年享有五天年假。", encoding="utf-8")
        tool = KnowledgeSearchTool(KnowledgeBase(tmp_path))

        result = await _run(tool, query="年假几天")

        assert result.success
        assert "【来源: policy.txt" in result.content

    @pytest.mark.asyncio
    async def test_no_match(self, tmp_path):
        (tmp_path / "policy.txt").write_text("年假 规定", encoding="utf-8")
        result = await _run(KnowledgeSearchTool(KnowledgeBase(tmp_path)), query="天气预报")
        assert result.content == NO_MATCH_MESSAGE


# =============================================================================
# Web search
# =============================================================================


BING_HTML = """
<html><body><ol id="b_results">
  <li class="b_algo">
    <h2><a href="https://example.com/news">春节放假安排公布</a></h2>
    <div class="b_caption"><p>国务院办公厅发布2026年春节放假安排，共放假九天。</p></div>
  </li>
  <li class="b_algo">
    <h2><a href="https://www.bing.com/ck/a?x=1">跳转链接</a></h2>
  </li>
  <li class="b_algo">
    <h2><a href="https://example.org/guide">春节出行指南</a></h2>
    <p>返乡高峰出行建议。</p>
  </li>
</ol></body></html>
"""

PAGE_HTML = (
    "<html><head><script>var x = 1;</script></head><body>"
    "<nav>导航</nav><p>" + "放假安排详细内容。" * 10 + "</p></body></html>"
)


class TestWebSearch:
    """Tests for web_search."""

    def test_parse_skips_bing_links(self):
        results = parse_bing_results(BING_HTML, max_results=5)

        assert [r.url for r in results] == ["https://example.com/news", "https://example.org/guide"]
        assert results[0].title == "春节放假安排公布"
        assert "九天" in results[0].snippet

    def test_parse_respects_max_results(self):
        assert len(parse_bing_results(BING_HTML, max_results=1)) == 1

    @pytest.mark.asyncio
    async def test_search_returns_structured_sources(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "cn.bing.com":
                assert request.url.params["q"] == "春节放假"
                return httpx.Response(200, text=BING_HTML)
            return httpx.Response(200, text=PAGE_HTML)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        tool = WebSearchTool(client=client)

        result = await _run(tool, query="春节放假")
        await tool.close()

        assert result.success
        assert [s.url for s in result.sources] == ["https://example.com/news", "https://example.org/guide"]
        assert "[1] 春节放假安排公布" in result.content
        assert "来源: example.com" in result.content
        assert "详细内容" in result.content
        assert "var x" not in result.content

    @pytest.mark.asyncio
    async def test_http_error_becomes_text(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(503))
        )
        tool = WebSearchTool(client=client)

        result = await _run(tool, query="春节放假")
        await tool.close()

        assert result.content == "搜索请求失败: HTTP 503"
        assert result.sources == []

    @pytest.mark.asyncio
    async def test_no_results(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html></html>"))
        )
        tool = WebSearchTool(client=client)

        result = await _run(tool, query="不存在的内容")
        await tool.close()

        assert "暂时没有找到结果" in result.content


# =============================================================================
# Image tools
# =============================================================================


def _image_client(handler):
    return httpx.AsyncClient(base_url="https://images.test/v1", transport=httpx.MockTransport(handler))


class TestImageTools:
    """Tests for generate_image and analyze_image."""

    @pytest.mark.asyncio
    async def test_generate_returns_markdown_image(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"images": [{"url": "https://cdn.test/cat.png"}]})

        tool = GenerateImageTool(ImageServiceConfig(api_key="sf-key"), client=_image_client(handler))
        result = await _run(tool, prompt="a cute cat")

        assert result.content == "![a cute cat](https://cdn.test/cat.png)"
        assert requests[0].url.path == "/v1/images/generations"
        assert requests[0].headers["Authorization"] == "Bearer sf-key"

    @pytest.mark.asyncio
    async def test_generate_without_key(self):
        result = await _run(GenerateImageTool(ImageServiceConfig()), prompt="a cat")
        assert "SILICONFLOW_API_KEY" in result.content

    @pytest.mark.asyncio
    async def test_generate_http_error(self):
        tool = GenerateImageTool(
            ImageServiceConfig(api_key="sf-key"),
            client=_image_client(lambda request: httpx.Response(429, text="busy")),
        )
        result = await _run(tool, prompt="a cat")
        assert result.content == "图片生成失败: HTTP 429"

    @pytest.mark.asyncio
    async def test_analyze_uses_default_question(self):
        bodies = []

        def handler(request):
            bodies.append(request.read())
            return httpx.Response(200, json={"choices": [{"message": {"content": "一只橘猫"}}]})

        tool = AnalyzeImageTool(ImageServiceConfig(api_key="sf-key"), client=_image_client(handler))
        result = await _run(tool, image_url="https://cdn.test/cat.png")

        assert result.content == "一只橘猫"
        assert "请详细描述这张图片的内容".encode() in bodies[0]

    @pytest.mark.asyncio
    async def test_analyze_empty_answer(self):
        tool = AnalyzeImageTool(
            ImageServiceConfig(api_key="sf-key"),
            client=_image_client(lambda request: httpx.Response(200, json={"choices": []})),
        )
        result = await _run(tool, image_url="https://cdn.test/cat.png")
        assert result.content == "无法分析该图片。"


# =============================================================================
# File parsing
# =============================================================================


class TestParseFile:
    """Tests for parse_file."""

    @pytest.mark.asyncio
    async def test_csv_as_markdown_table(self, tmp_path):
        (tmp_path / "data.csv").write_text("name,score\nalice,90\nbob,85\n", encoding="utf-8")
        result = await _run(ParseFileTool(tmp_path), file_path="/uploads/data.csv")

        assert result.content.splitlines()[:3] == [
            "| name | score |",
            "| --- | --- |",
            "| alice | 90 |",
        ]

    @pytest.mark.asyncio
    async def test_text_file(self, tmp_path):
        (tmp_path / "notes.md").write_text("# 标题\n内容", encoding="utf-8")
        result = await _run(ParseFileTool(tmp_path), file_path="/uploads/notes.md")
        assert result.content == "# 标题\n内容"

    @pytest.mark.asyncio
    async def test_path_outside_upload_dir(self, tmp_path):
        upload_dir = tmp_path / "uploads"
        upload_dir.mkdir()
        (tmp_path / "secret.txt").write_text("secret", encoding="utf-8")

        result = await _run(ParseFileTool(upload_dir), file_path="/uploads/../secret.txt")

        assert result.content.startswith("错误：文件不存在")

    @pytest.mark.asyncio
    async def test_unsupported_format(self, tmp_path):
        (tmp_path / "archive.zip").write_bytes(b"PK")
        result = await _run(ParseFileTool(tmp_path), file_path="/uploads/archive.zip")
        assert result.content.startswith("不支持的文件格式: .zip")


# =============================================================================
# Read-only database
# =============================================================================


class TestReadOnlySql:
    """Tests for the SQL guard."""

    def test_select_gets_limit(self):
        assert validate_read_only_sql("SELECT * FROM articles;", max_rows=50) == (
            "SELECT * FROM articles LIMIT 50"
        )

    def test_existing_limit_kept(self):
        sql = "SELECT id FROM articles LIMIT 5"
        assert validate_read_only_sql(sql) == sql

    def test_with_clause_allowed(self):
        sql = "WITH recent AS (SELECT id FROM articles) SELECT COUNT(*) FROM recent"
        assert validate_read_only_sql(sql).startswith("WITH recent")

    @pytest.mark.parametrize(
        "sql",
        [
            "DELETE FROM articles",
            "SELECT 1; DROP TABLE articles",
            "WITH x AS (DELETE FROM articles RETURNING *) SELECT * FROM x",
            "select * from articles where id in (update articles set title = '' returning id)",
            "",
        ],
    )
    def test_rejected(self, sql):
        with pytest.raises(ReadOnlyViolationError):
            validate_read_only_sql(sql)

    def test_format_rows(self):
        text = format_rows([{"id": 1, "title": "你好"}, {"id": 2, "title": None}])
        assert text.splitlines()[:4] == ["id | title", "--- | ---", "1 | 你好", "2 | NULL"]
        assert text.endswith("共 2 条结果")

    def test_format_no_rows(self):
        assert format_rows([]) == "查询结果为空。"

    @pytest.mark.asyncio
    async def test_query_tool_runs_guarded_statement(self):
        executor = AsyncMock()
        executor.fetch = AsyncMock(return_value=[{"count": 3}])

        result = await _run(BlogQueryTool(executor), sql="SELECT COUNT(*) AS count FROM articles")

        assert result.success
        executor.fetch.assert_awaited_once()
        assert executor.fetch.call_args.args[0].endswith("LIMIT 50")
        assert "3" in result.content

    @pytest.mark.asyncio
    async def test_query_tool_rejects_writes(self):
        executor = AsyncMock()
        result = await _run(BlogQueryTool(executor), sql="DROP TABLE articles")

        assert not result.success
        assert "只允许执行 SELECT" in result.content
        executor.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_schema_tool(self):
        executor = AsyncMock()
        executor.fetch = AsyncMock(return_value=[
            {"table_name": "articles", "column_name": "id", "data_type": "integer", "is_nullable": "NO"},
            {"table_name": "articles", "column_name": "title", "data_type": "text", "is_nullable": "YES"},
        ])

        result = await _run(BlogSchemaTool(executor))

        assert result.content == "表 articles:\n  id (integer, NOT NULL)\n  title (text)"


# =============================================================================
# MCP tools
# =============================================================================


class TestMCPHelpers:
    """Tests for MCP name handling and content conversion."""

    def test_sanitize_tool_name(self):
        assert sanitize_tool_name("browser.open page") == "browser_open_page"

    def test_unique_tool_name(self):
        assert unique_tool_name("a", set()) == "a"
        assert unique_tool_name("a", {"a", "a_2"}) == "a_3"

    def test_convert_text_blocks(self, tmp_path):
        content = [{"type": "text", "text": "第一段"}, {"type": "text", "text": "第二段"}]
        assert convert_content(content, tmp_path) == "第一段\n第二段"

    def test_convert_image_saves_file(self, tmp_path):
        content = [{"type": "image", "data": "aGVsbG8=", "mimeType": "image/png"}]

        text = convert_content(content, tmp_path)

        assert text.startswith("![截图](/uploads/mcp-")
        saved = list(Path(tmp_path).glob("mcp-*.png"))
        assert len(saved) == 1
        assert saved[0].read_bytes() == b"hello"

    def test_convert_resource_and_empty(self, tmp_path):
        assert convert_content([{"type": "resource", "uri": "file:///a"}], tmp_path) == "[资源: file:///a]"
        assert convert_content([], tmp_path) == "[工具无文本输出]"


class TestMCPToolSource:
    """Tests for discovery and invocation through MCPToolSource."""

    @pytest.mark.asyncio
    async def test_tools_are_prefixed_and_forwarded(self, tmp_path):
        source = MCPToolSource([MCPServerConfig(name="browser", url="http://mcp:8000")], tmp_path)
        client = source.clients[0]
        client.list_tools = AsyncMock(return_value=[
            {"name": "open.page", "description": "Open a page", "inputSchema": {"type": "object"}},
        ])
        client.call_tool = AsyncMock(return_value=[{"type": "text", "text": "opened"}])

        tools = await source.list_tools()

        assert [t.definition.name for t in tools] == ["browser_open_page"]
        result = await tools[0].run(ToolCall(id="c1", name="browser_open_page", arguments={"url": "x"}))
        client.call_tool.assert_awaited_once_with("open.page", {"url": "x"})
        assert result.content == "opened"

    def test_from_settings_skips_invalid(self, tmp_path):
        source = MCPToolSource.from_settings(
            [{"name": "ok", "url": "http://mcp:8000/"}, {"url": "missing-name"}], tmp_path
        )
        assert [c.config.name for c in source.clients] == ["ok"]
        assert source.clients[0].config.url == "http://mcp:8000"
