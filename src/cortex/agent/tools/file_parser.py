"""
Uploaded-file parser tool.

Turns PDF, Excel, CSV and plain-text uploads into text the model can read.
Tables become Markdown tables capped at 50 rows; long text is truncated
to 5000 characters.
"""

from __future__ import annotations

import asyncio
import csv
import io
import logging
from pathlib import Path

import openpyxl
import pymupdf
from pydantic import Field

from .base import BaseTool, ToolParams

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = 10 * 1024 * 1024
MAX_TEXT_CHARS = 5000
MAX_TABLE_ROWS = 50
UPLOAD_URL_PREFIX = "/uploads/"


def _markdown_table(rows: list[list[str]], max_rows: int = MAX_TABLE_ROWS) -> list[str]:
    header = rows[0]
    lines = [
        "| " + " | ".join(header) + " |",
        "| " + " | ".join("---" for _ in header) + " |",
    ]
    for row in rows[1: max_rows + 1]:
        lines.append("| " + " | ".join(row) + " |")
    if len(rows) > max_rows + 1:
        lines.append(f"\n... (共 {len(rows) - 1} 行，已截断显示前 {max_rows} 行)")
    return lines


def parse_pdf(path: Path) -> str:
    with pymupdf.open(path) as document:
        pages = document.page_count
        text = "".join(page.get_text() for page in document).strip()

    if not text:
        return "PDF 文件没有提取到文本内容（可能是扫描件/图片 PDF）。"
    if len(text) > MAX_TEXT_CHARS:
        return (
            f"[PDF 共 {pages} 页，{len(text)} 字，以下为前 {MAX_TEXT_CHARS} 字]\n\n"
            f"{text[:MAX_TEXT_CHARS]}\n\n... (内容已截断)"
        )
    return f"[PDF 共 {pages} 页，{len(text)} 字]\n\n{text}"


def parse_excel(path: Path) -> str:
    workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
    lines: list[str] = []
    try:
        for sheet in workbook.worksheets:
            rows = [
                ["" if cell is None else str(cell) for cell in row]
                for row in sheet.iter_rows(values_only=True)
            ]
            if not rows:
                continue
            lines.append(f"### 工作表: {sheet.title}")
            lines.extend(_markdown_table(rows))
    finally:
        workbook.close()

    return "\n".join(lines) or "Excel 文件为空。"


def parse_csv(path: Path) -> str:
    content = path.read_text(encoding="utf-8").strip()
    rows = [[cell.strip() for cell in row] for row in csv.reader(io.StringIO(content))]
    rows = [row for row in rows if row]
    if not rows:
        return "CSV 文件为空。"
    return "\n".join(_markdown_table(rows))


def parse_text(path: Path) -> str:
    content = path.read_text(encoding="utf-8")
    if len(content) > MAX_TEXT_CHARS:
        return (
            f"[文件共 {len(content)} 字，以下为前 {MAX_TEXT_CHARS} 字]\n\n"
            f"{content[:MAX_TEXT_CHARS]}\n\n... (内容已截断)"
        )
    return content


PARSERS = {
    ".pdf": parse_pdf,
    ".xlsx": parse_excel,
    ".csv": parse_csv,
    ".txt": parse_text,
    ".md": parse_text,
    ".json": parse_text,
}


class ParseFileParams(ToolParams):
    file_path: str = Field(description="文件路径，例如 /uploads/xxx.pdf")


class ParseFileTool(BaseTool):
    """Extract text from an uploaded file."""

    name = "parse_file"
    description = (
        "解析上传的文件。支持 PDF、Excel(.xlsx)、CSV、TXT、Markdown 等格式。"
        "当用户上传了文件并想了解文件内容、提取数据或分析文档时使用。"
    )
    params_model = ParseFileParams
    timeout_seconds = 60.0

    def __init__(self, upload_dir: str | Path = "public/uploads"):
        self.upload_dir = Path(upload_dir).resolve()

    def resolve(self, file_path: str) -> Path:
        """Map a /uploads/<name> URL onto the upload directory.

        Only files inside the upload directory are reachable.
        """
        name = file_path[len(UPLOAD_URL_PREFIX):] if file_path.startswith(UPLOAD_URL_PREFIX) else file_path
        candidate = (self.upload_dir / name).resolve()
        if candidate != self.upload_dir and self.upload_dir not in candidate.parents:
            raise ValueError(f"path outside upload directory: {file_path}")
        return candidate

    async def execute(self, params: ParseFileParams) -> str:
        try:
            path = self.resolve(params.file_path)
        except ValueError:
            return f"错误：文件不存在 ({params.file_path})"

        if not path.is_file():
            return f"错误：文件不存在 ({params.file_path})"

        if path.stat().st_size > MAX_FILE_BYTES:
            return "错误：文件太大（超过 10MB），请使用更小的文件。"

        suffix = path.suffix.lower()
        parser = PARSERS.get(suffix)
        if parser is None:
            return f"不支持的文件格式: {suffix}。支持的格式: PDF, Excel, CSV, TXT, Markdown"

        try:
            return await asyncio.to_thread(parser, path)
        except Exception as e:
            logger.warning(f"Failed to parse {path}: {e}")
            return f"文件解析出错: {e}"
