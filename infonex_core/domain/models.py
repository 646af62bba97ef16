"""统一的对话与结果数据模型。

本模块定义了编排器、Provider 适配器与 API 层之间共享的标准数据结构：

- Content / ContentPart: 消息内容。要么是纯字符串，要么是由
  TextPart / ImageRef / PdfRef 组成的有序列表（封闭的标签联合）。
- Message: 一条对话消息（system/user/assistant/tool）。
- ProviderRequest / ProviderResponse: 与具体厂商无关的请求与响应。
- OrchestrationRequest / OrchestrationResult: 一次用户轮次的输入与输出。

所有 Provider 适配器都只依赖这些模型，并负责在各自的 API JSON
和这些模型之间做转换（转换函数集中在 content.normalizer）。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union, TYPE_CHECKING

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from infonex_core.tools.definitions import ToolCallRequest, ToolDescriptor, ToolResult


Role = Literal["system", "user", "assistant", "tool"]


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImageRef:
    """图片引用。url 可以是 data URI、https 地址或 /api/images/<id>。"""

    url: str


@dataclass(frozen=True)
class PdfRef:
    url: str
    title: str = "Generated PDF"


ContentPart = Union[TextPart, ImageRef, PdfRef]
Content = Union[str, List[ContentPart]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Message:
    """一条对话消息。

    - content: 纯文本或多模态片段列表，不允许是空列表。
    - model: 生成该消息的客户端模型名（仅 assistant 消息有意义）。
    - tool_calls: assistant 发起的工具调用列表。
    - tool_call_id: role 为 "tool" 时关联的工具调用 id。
    - meta: 附加元数据，不发给 Provider，用于日志与上层展示。
    """

    role: Role
    content: Content
    model: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List["ToolCallRequest"]] = None
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ProviderRequest:
    """发给 ProviderAdapter 的一次请求。

    model 为空时使用适配器自身配置的模型。
    tools 为空表示本次请求不声明任何工具。
    """

    messages: List[Message]
    model: Optional[str] = None
    tools: Optional[List["ToolDescriptor"]] = None
    tool_choice: Literal["auto", "none", "required"] = "auto"
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class ProviderResponse:
    """Provider 响应解析后的统一结构。"""

    content: Optional[str] = None
    tool_calls: List["ToolCallRequest"] = field(default_factory=list)
    usage: Optional[ChatUsage] = None
    finish_reason: Optional[str] = None
    model: Optional[str] = None
    raw: Optional[dict] = None


@dataclass
class OrchestrationRequest:
    """一次用户轮次的编排请求，按轮次构造，只消费一次。

    - model: 覆盖后端默认模型 ID（如 gpt-5 走主后端但换模型）。
    - client_model: 客户端选择的模型名，写入最终消息的 model 字段。
    """

    backend: str
    history: List[Message]
    tools_enabled: bool = True
    system_prompt: Optional[str] = None
    session_id: Optional[str] = None
    model: Optional[str] = None
    client_model: Optional[str] = None


@dataclass
class OrchestrationResult:
    final_message: Message
    rounds_used: int
    tool_results: List["ToolResult"] = field(default_factory=list)
