"""
Image tools backed by the SiliconFlow HTTP API.

- generate_image: text-to-image, returned as a Markdown image link
- analyze_image: multimodal chat completion describing an image
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from pydantic import Field

from .base import BaseTool, ToolParams

logger = logging.getLogger(__name__)


@dataclass
class ImageServiceConfig:
    """Configuration for the image generation and vision APIs.

    Attributes:
        api_key: SiliconFlow API key (tools report a configuration error without it)
        base_url: API base URL
        image_model: Text-to-image model
        image_size: Generated image size
        inference_steps: Diffusion steps
        vision_model: Multimodal chat model
        vision_max_tokens: Token cap for image analysis
        timeout: HTTP timeout in seconds
    """

    api_key: Optional[str] = None
    base_url: str = "https://api.siliconflow.cn/v1"
    image_model: str = "black-forest-labs/FLUX.1-schnell"
    image_size: str = "1024x1024"
    inference_steps: int = 20
    vision_model: str = "Qwen/Qwen2.5-VL-72B-Instruct"
    vision_max_tokens: int = 1024
    timeout: float = 90.0


class _SiliconFlowTool(BaseTool):
    def __init__(self, config: ImageServiceConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
            )
        return self._client

    async def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        return await self._get_client().post(
            path,
            json=payload,
            headers={"Authorization": f"Bearer {self.config.api_key}"},
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class GenerateImageParams(ToolParams):
    prompt: str = Field(
        description="图片的详细描述，建议用英文。例如 'a cute cat sitting on a sofa, digital art style'"
    )


class GenerateImageTool(_SiliconFlowTool):
    """Generate an image from a text prompt."""

    name = "generate_image"
    description = (
        "根据文字描述生成图片。当用户要求画图、生成图片、创建图像时使用。"
        "传入图片的描述（建议用英文描述效果更好），返回生成的图片。"
    )
    params_model = GenerateImageParams
    timeout_seconds = 120.0

    async def execute(self, params: GenerateImageParams) -> str:
        if not self.config.api_key:
            return "错误：未配置 SILICONFLOW_API_KEY 环境变量。请到 https://siliconflow.cn 注册并获取 API Key。"

        try:
            response = await self._post(
                "/images/generations",
                {
                    "model": self.config.image_model,
                    "prompt": params.prompt,
                    "image_size": self.config.image_size,
                    "num_inference_steps": self.config.inference_steps,
                },
            )
        except httpx.HTTPError as e:
            return f"图片生成出错: {e}"

        if response.status_code != 200:
            logger.error(f"Image generation API error {response.status_code}: {response.text[:500]}")
            return f"图片生成失败: HTTP {response.status_code}"

        images = response.json().get("images") or []
        if not images or not images[0].get("url"):
            return "图片生成失败：API 没有返回图片。"

        url = images[0]["url"]
        logger.info(f"Image generated: {url}")
        return f"![{params.prompt}]({url})"


class AnalyzeImageParams(ToolParams):
    image_url: str = Field(description="图片的 URL 地址")
    question: str = Field(
        default="请详细描述这张图片的内容",
        description="关于图片的问题，默认为'请详细描述这张图片的内容'",
    )


class AnalyzeImageTool(_SiliconFlowTool):
    """Describe or answer questions about an image."""

    name = "analyze_image"
    description = (
        "分析图片内容。当用户发送了图片 URL 并想了解图片内容时使用。"
        "传入图片 URL 和用户的问题，返回对图片的分析描述。"
    )
    params_model = AnalyzeImageParams
    timeout_seconds = 120.0

    async def execute(self, params: AnalyzeImageParams) -> str:
        if not self.config.api_key:
            return "错误：未配置 SILICONFLOW_API_KEY 环境变量。"

        payload = {
            "model": self.config.vision_model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "image_url", "image_url": {"url": params.image_url}},
                        {"type": "text", "text": params.question},
                    ],
                }
            ],
            "max_tokens": self.config.vision_max_tokens,
        }

        try:
            response = await self._post("/chat/completions", payload)
        except httpx.HTTPError as e:
            return f"图片分析出错: {e}"

        if response.status_code != 200:
            logger.error(f"Vision API error {response.status_code}: {response.text[:500]}")
            return f"图片分析失败: HTTP {response.status_code}"

        choices = response.json().get("choices") or []
        content = choices[0].get("message", {}).get("content") if choices else None
        return content or "无法分析该图片。"
