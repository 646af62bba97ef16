"""OpenAI 兼容 Provider 适配器。

本模块负责：

1. 接收统一的 ProviderRequest。
2. 将其转换为 OpenAI chat/completions 请求格式（消息转换见 content.normalizer）。
3. 调用 HTTP 接口并把网络/API 异常分类为 ProviderError 子类。
4. 将响应 JSON 解析为统一的 ProviderResponse（含工具调用）。

OpenAI 主后端与辅助后端只是两份不同的 BackendConfig，共用本类；
OpenRouter 同样是 OpenAI 兼容协议，见 openrouter_client。
"""

import json
from typing import Any, Dict, List, Optional

import httpx

from infonex_core.content.normalizer import flatten_text, from_provider_format, message_to_payload
from infonex_core.domain.exceptions import (
    ApiError,
    AuthError,
    EmptyResponse,
    RateLimited,
    TransportError,
)
from infonex_core.domain.models import ChatUsage, ProviderRequest, ProviderResponse
from infonex_core.infrastructure.logging.logger import logger
from infonex_core.providers.registry import OPENAI_PRIMARY, BackendConfig
from infonex_core.tools.definitions import ToolCallRequest


class OpenAIClient:
    """OpenAI chat/completions 客户端实现。"""

    def __init__(self, settings, backend: BackendConfig = OPENAI_PRIMARY):
        # Settings 里包含 base_url、api_key、超时等配置
        self._settings = settings
        self._backend = backend
        self.name = backend.name
        self.supports_tools = backend.supports_tools

    @property
    def model(self) -> str:
        return getattr(self._settings, self._backend.model_setting)

    async def send(self, req: ProviderRequest) -> ProviderResponse:
        """执行一次非流式对话调用。

        凭据缺失时在任何网络请求之前抛 AuthError；
        429 抛 RateLimited，401/403 抛 AuthError，其余非 2xx 抛 ApiError，
        网络错误抛 TransportError，没有内容也没有工具调用时抛 EmptyResponse。
        """

        api_key = self._api_key()
        if not api_key:
            raise AuthError(f"{self._backend.env_hint} not set", provider=self.name)
        payload = self._build_payload(req)
        logger.info(
            "Sending provider request",
            extra={"extra": {
                "provider": self.name,
                "model": payload["model"],
                "message_count": len(payload["messages"]),
                "tool_count": len(payload.get("tools") or []),
            }},
        )
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(
                    self._endpoint(),
                    json=payload,
                    headers=self._headers(api_key),
                )
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise TransportError(f"Network error connecting to {self.name}: {e}", provider=self.name)
        self._raise_for_status(resp)
        try:
            data = resp.json()
        except ValueError:
            raise EmptyResponse(f"Invalid response format from {self.name}", provider=self.name)
        return self._parse_response(data)

    # ---- 请求构造 ----

    def _api_key(self) -> Optional[str]:
        for attr in self._backend.api_key_settings:
            value = getattr(self._settings, attr, None)
            if value:
                return value
        return None

    def _endpoint(self) -> str:
        return f"{self._settings.openai_base_url}/chat/completions"

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, req: ProviderRequest) -> Dict[str, Any]:
        """将 ProviderRequest 转成请求 JSON。"""

        payload: Dict[str, Any] = {
            "model": req.model or self.model,
            "messages": [message_to_payload(m) for m in req.messages],
        }
        if req.temperature is not None:
            payload["temperature"] = req.temperature
        if req.max_tokens:
            payload["max_tokens"] = req.max_tokens
        if req.tools:
            if self.supports_tools:
                payload["tools"] = [tool.to_openai_tool() for tool in req.tools]
                payload["tool_choice"] = req.tool_choice
            else:
                logger.warning(
                    "Backend does not support tools; ignoring tool definitions",
                    extra={"extra": {"provider": self.name, "tool_count": len(req.tools)}},
                )
        return payload

    # ---- 响应解析 ----

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        detail = self._error_detail(resp)
        logger.error(
            "Provider returned error status",
            extra={"extra": {"provider": self.name, "status": resp.status_code, "detail": detail[:500]}},
        )
        if resp.status_code in (401, 403):
            raise AuthError("Invalid API key or authentication error", provider=self.name)
        if resp.status_code == 429:
            # 限流错误交给上层决定是否退避
            raise RateLimited("Rate limit exceeded or quota reached", provider=self.name)
        raise ApiError(
            code="API_ERROR",
            message=f"{self.name} API error ({resp.status_code}): {detail or 'Unknown error'}",
            http_status=resp.status_code,
            provider=self.name,
        )

    @staticmethod
    def _error_detail(resp: httpx.Response) -> str:
        try:
            data = resp.json()
        except ValueError:
            return resp.text or ""
        if isinstance(data, dict):
            err = data.get("error")
            if isinstance(err, dict) and err.get("message"):
                return str(err["message"])
            if isinstance(err, str):
                return err
        return json.dumps(data, ensure_ascii=False)

    def _parse_response(self, data: Any) -> ProviderResponse:
        """将原始响应 JSON 解析为统一的 ProviderResponse。"""

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise EmptyResponse(f"{self.name} returned no choices", provider=self.name)
        first = choices[0] or {}
        msg = first.get("message") or {}
        content = flatten_text(from_provider_format(msg.get("content"))) or None
        tool_calls = self._parse_tool_calls(msg)
        if not content and not tool_calls:
            raise EmptyResponse(f"{self.name} returned an empty response", provider=self.name)
        usage_raw = data.get("usage") or {}
        usage = None
        if usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )
        return ProviderResponse(
            content=content,
            tool_calls=tool_calls,
            usage=usage,
            finish_reason=first.get("finish_reason"),
            model=data.get("model"),
            raw=data,
        )

    @staticmethod
    def _parse_tool_calls(msg: Dict[str, Any]) -> List[ToolCallRequest]:
        """把 tool_calls 字段解析为 ToolCallRequest 列表，arguments 保持原始文本。"""

        calls: List[ToolCallRequest] = []
        for idx, call in enumerate(msg.get("tool_calls") or []):
            func = call.get("function") or {}
            calls.append(
                ToolCallRequest(
                    id=call.get("id") or f"tool_call_{idx}",
                    name=func.get("name") or call.get("name") or "",
                    arguments=_raw_arguments(func.get("arguments")),
                )
            )
        # 部分兼容实现仍会返回旧版 function_call 字段
        function_call = msg.get("function_call")
        if function_call:
            calls.append(
                ToolCallRequest(
                    id=function_call.get("id") or "function_call",
                    name=function_call.get("name") or "",
                    arguments=_raw_arguments(function_call.get("arguments")),
                )
            )
        return calls


def _raw_arguments(raw: Any) -> str:
    if raw is None:
        return "{}"
    if isinstance(raw, str):
        return raw
    return json.dumps(raw, ensure_ascii=False)
