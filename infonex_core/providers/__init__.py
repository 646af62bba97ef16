"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护后端配置与客户端模型路由 (registry)。
- 提供具体实现 (openai_client、openrouter_client)。
"""

from typing import Optional

from infonex_core.config.settings import settings
from infonex_core.providers.base import ProviderAdapter
from infonex_core.providers.openai_client import OpenAIClient
from infonex_core.providers.openrouter_client import OpenRouterClient
from infonex_core.providers.registry import get_backend_config, resolve_backend


def create_provider(name: Optional[str] = None, app_settings=None) -> ProviderAdapter:
    """根据后端名称创建适配器实例，默认使用 openai-primary。"""

    cfg = get_backend_config(name or "openai-primary")
    active = app_settings or settings
    if cfg.kind == "openrouter":
        return OpenRouterClient(active, cfg)
    return OpenAIClient(active, cfg)


__all__ = ["ProviderAdapter", "create_provider", "resolve_backend"]
