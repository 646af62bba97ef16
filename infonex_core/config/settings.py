"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级依次降低。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("INFONEX_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """Infonex 核心配置（使用 Pydantic）。"""

    # ---- Provider 凭据 ----
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI 主模型 API 密钥")
    openai_mini_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI 辅助模型 API 密钥，缺省时回退到 openai_api_key",
    )
    openrouter_api_key: Optional[str] = Field(default=None, description="OpenRouter API 密钥")
    serper_api_key: Optional[str] = Field(default=None, description="Serper 搜索 API 密钥")

    # ---- Endpoint ----
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI API 基础URL")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="OpenRouter API 基础URL",
    )
    serper_url: str = Field(default="https://google.serper.dev/search", description="Serper 搜索端点")
    openrouter_referer: str = Field(default="https://infonexai.replit.app", description="OpenRouter HTTP-Referer 头")
    openrouter_title: str = Field(default="Infonex AI", description="OpenRouter X-Title 头")

    # ---- 模型 ----
    primary_model: str = Field(default="gpt-4o", description="主对话模型")
    secondary_model: str = Field(default="gpt-4o-mini", description="搜索精炼 / 辅助模型")
    reasoning_model: str = Field(default="deepseek/deepseek-r1:free", description="OpenRouter 推理模型")
    tool_helper_model: str = Field(default="gpt-5-mini", description="翻译、写邮件等文本类工具使用的模型")
    image_model: str = Field(default="dall-e-3", description="图片生成模型")

    # ---- 运行参数 ----
    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")
    max_tool_rounds: int = Field(
        default=3,
        ge=1,
        le=10,
        description="单轮对话内 Provider 调用的最大轮数（含工具轮）",
    )
    storage_root: str = Field(default=".storage", description="会话与生成文件的存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")
    track_token_usage: bool = Field(default=False, description="是否估算并记录每次请求的 token 用量")
    search_augmentation: bool = Field(
        default=True,
        description="用户询问 latest/news 时是否预先搜索并注入系统提示",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_base_url", "openrouter_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
