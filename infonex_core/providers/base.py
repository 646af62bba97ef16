"""Provider 抽象接口。

编排器不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：

- 每个后端实现一个 ProviderAdapter（如 OpenAIClient、OpenRouterClient）。
- 负责：将 ProviderRequest 转成具体 API 请求，并把响应 JSON 解析为 ProviderResponse，
  失败时抛出 domain.exceptions 中分类好的 ProviderError。
"""

from typing import Protocol

from infonex_core.domain.models import ProviderRequest, ProviderResponse


class ProviderAdapter(Protocol):
    """LLM Provider 适配器协议。

    实现者需要提供：
    - name: 后端名称，用于日志/统计。
    - supports_tools: 是否支持工具调用。
    - send(req): 执行一次非流式对话调用，返回统一的 ProviderResponse。
    """

    name: str
    supports_tools: bool

    async def send(self, req: ProviderRequest) -> ProviderResponse:
        ...
