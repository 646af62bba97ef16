"""OpenRouter 推理后端适配器（DeepSeek R1）。

接口与 OpenAI chat/completions 一致：
- URL: {openrouter_base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>
- 额外头部: HTTP-Referer / X-Title，用于 OpenRouter 的应用归属统计。

该后端不支持工具调用。请求里带了工具定义时静默忽略（只记 warning 日志），
而不是报错，保持与旧版行为一致。
"""

from typing import Dict

from infonex_core.providers.openai_client import OpenAIClient
from infonex_core.providers.registry import OPENROUTER_REASONING, BackendConfig


class OpenRouterClient(OpenAIClient):
    def __init__(self, settings, backend: BackendConfig = OPENROUTER_REASONING):
        super().__init__(settings, backend)

    def _endpoint(self) -> str:
        return f"{self._settings.openrouter_base_url}/chat/completions"

    def _headers(self, api_key: str) -> Dict[str, str]:
        headers = super()._headers(api_key)
        headers["HTTP-Referer"] = self._settings.openrouter_referer
        headers["X-Title"] = self._settings.openrouter_title
        return headers
