"""后端与模型路由配置。

本模块把“客户端模型名”与“具体后端”解耦：

- 客户端模型名：前端下拉框里的名字，例如 "gpt-4o"、"deepseek-r1"。
- 后端（backend）：一个具体的 Provider 端点 + 凭据 + 默认模型，
  例如 "openai-primary"、"openrouter-reasoning"。

上层只关心客户端模型名，具体走哪个后端、是否覆盖模型 ID 由这里集中配置。"""

from dataclasses import dataclass
from typing import Dict, Literal, Mapping, Optional, Tuple

from infonex_core.domain.exceptions import ValidationError


@dataclass(frozen=True)
class BackendConfig:
    """单个后端的配置。

    - model_setting: 默认模型 ID 所在的 settings 字段名。
    - api_key_settings: 依次尝试的凭据字段名，第一个非空值生效。
    - supports_tools: 是否接受 tools 参数；不支持时适配器会静默忽略工具。
    """

    name: str
    kind: Literal["openai", "openrouter"]
    model_setting: str
    api_key_settings: Tuple[str, ...]
    supports_tools: bool
    env_hint: str


@dataclass(frozen=True)
class ModelRoute:
    backend: str
    model_override: Optional[str] = None


OPENAI_PRIMARY = BackendConfig(
    name="openai-primary",
    kind="openai",
    model_setting="primary_model",
    api_key_settings=("openai_api_key",),
    supports_tools=True,
    env_hint="OPENAI_API_KEY",
)

# 搜索结果精炼等轻量任务使用的辅助后端，独立凭据缺失时回退到主凭据
OPENAI_SECONDARY = BackendConfig(
    name="openai-secondary",
    kind="openai",
    model_setting="secondary_model",
    api_key_settings=("openai_mini_api_key", "openai_api_key"),
    supports_tools=True,
    env_hint="OPENAI_MINI_API_KEY",
)

OPENROUTER_REASONING = BackendConfig(
    name="openrouter-reasoning",
    kind="openrouter",
    model_setting="reasoning_model",
    api_key_settings=("openrouter_api_key",),
    supports_tools=False,
    env_hint="OPENROUTER_API_KEY",
)


BACKEND_REGISTRY: Mapping[str, BackendConfig] = {
    OPENAI_PRIMARY.name: OPENAI_PRIMARY,
    OPENAI_SECONDARY.name: OPENAI_SECONDARY,
    OPENROUTER_REASONING.name: OPENROUTER_REASONING,
}


MODEL_ROUTES: Dict[str, ModelRoute] = {
    "gpt-4o": ModelRoute("openai-primary"),
    "gpt-5": ModelRoute("openai-primary", "gpt-5"),
    "gpt-5-mini": ModelRoute("openai-primary", "gpt-5-mini"),
    "gpt-5-nano": ModelRoute("openai-primary", "gpt-5-nano"),
    "gpt-4o-mini": ModelRoute("openai-secondary"),
    "deepseek-r1": ModelRoute("openrouter-reasoning"),
    # Maverick 已下线，沿用主后端
    "llama-4-maverick": ModelRoute("openai-primary"),
}


def get_backend_config(name: str) -> BackendConfig:
    """根据名称获取 BackendConfig，名称不区分大小写。"""

    key = (name or "").lower()
    for k, cfg in BACKEND_REGISTRY.items():
        if k == key:
            return cfg
    raise ValidationError(code="UNKNOWN_BACKEND", message=f"Unknown backend: {name!r}")


def resolve_backend(model_id: str) -> ModelRoute:
    try:
        return MODEL_ROUTES[model_id]
    except KeyError:
        raise ValidationError(code="INVALID_MODEL", message="Invalid model selection", model=model_id)
