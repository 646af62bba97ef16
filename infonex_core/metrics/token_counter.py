"""Token 用量估算与记录。

估算基于 tiktoken 的 gpt-4o 编码；编码器加载失败时按 4 字符 ≈ 1 token 粗估。
图片按固定 765 token 计。计数器是注入的端口，不是模块级全局变量。
"""

import json
import math
import threading
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Protocol, Sequence

import tiktoken

from infonex_core.content.normalizer import as_parts
from infonex_core.domain.models import ImageRef, Message, PdfRef
from infonex_core.infrastructure.logging.logger import logger

IMAGE_TOKENS = 765
MESSAGE_OVERHEAD = 4

_encoding = None
_encoding_failed = False


def _get_encoding():
    global _encoding, _encoding_failed
    if _encoding is None and not _encoding_failed:
        try:
            _encoding = tiktoken.encoding_for_model("gpt-4o")
        except (KeyError, ValueError, OSError) as exc:
            # 离线环境下可能无法下载编码表
            _encoding_failed = True
            logger.warning("tiktoken encoding unavailable, using estimate", extra={"extra": {"error": str(exc)}})
    return _encoding


def count_tokens(text: str) -> int:
    if not text:
        return 0
    encoding = _get_encoding()
    if encoding is None:
        return math.ceil(len(text) / 4)
    return len(encoding.encode(text))


def count_message_tokens(messages: Sequence[Message]) -> int:
    total = 0
    for message in messages:
        total += MESSAGE_OVERHEAD
        for part in as_parts(message.content):
            if isinstance(part, ImageRef):
                total += IMAGE_TOKENS
            elif isinstance(part, PdfRef):
                total += count_tokens(f"{part.title}: {part.url}")
            else:
                total += count_tokens(part.text)
        for call in message.tool_calls or []:
            total += count_tokens(json.dumps({"id": call.id, "name": call.name, "arguments": call.arguments}))
    return total


def count_tool_tokens(tools: Optional[Sequence[Any]]) -> int:
    total = 0
    for tool in tools or []:
        spec = tool.to_openai_tool() if hasattr(tool, "to_openai_tool") else tool
        total += count_tokens(json.dumps(spec, ensure_ascii=False))
    return total


@dataclass
class TokenUsage:
    messages: int
    tools: int
    system_prompt: int
    total: int


def calculate_request_usage(
    messages: Sequence[Message],
    tools: Optional[Sequence[Any]] = None,
    system_prompt: Optional[str] = None,
) -> TokenUsage:
    message_tokens = count_message_tokens(messages)
    tool_tokens = count_tool_tokens(tools)
    system_tokens = count_tokens(system_prompt or "")
    return TokenUsage(
        messages=message_tokens,
        tools=tool_tokens,
        system_prompt=system_tokens,
        total=message_tokens + tool_tokens + system_tokens,
    )


class UsageRecorder(Protocol):
    def record(self, usage: TokenUsage, model: str, session_id: Optional[str] = None) -> None:
        ...


class NullUsageRecorder:
    def record(self, usage: TokenUsage, model: str, session_id: Optional[str] = None) -> None:
        return None


class UsageTracker:
    """进程内累计请求数与 token 数，并把每次请求写入日志。"""

    def __init__(self):
        self._lock = threading.Lock()
        self._requests = 0
        self._tokens = 0
        self._by_model: Dict[str, int] = {}

    def record(self, usage: TokenUsage, model: str, session_id: Optional[str] = None) -> None:
        with self._lock:
            self._requests += 1
            self._tokens += usage.total
            self._by_model[model] = self._by_model.get(model, 0) + usage.total
        logger.info(
            "Token usage",
            extra={"extra": {"model": model, "session_id": session_id, **asdict(usage)}},
        )

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            average = round(self._tokens / self._requests) if self._requests else 0
            return {
                "total_requests": self._requests,
                "total_tokens": self._tokens,
                "average_tokens_per_request": average,
                "by_model": dict(self._by_model),
            }

    def reset(self) -> None:
        with self._lock:
            self._requests = 0
            self._tokens = 0
            self._by_model.clear()
