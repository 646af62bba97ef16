"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将可用工具列表暴露给 LLM（ToolDescriptor）。
- 在编排器中保存和执行模型触发的工具调用（ToolCallRequest / ToolResult）。
"""

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Dict

from infonex_core.domain.exceptions import MalformedToolArguments


@dataclass(frozen=True)
class ToolDescriptor:
    """一个可供 LLM 调用的工具定义。parameters 为 JSON Schema（object 类型）。"""

    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    @property
    def required(self) -> list[str]:
        return list(self.parameters.get("required") or [])

    def to_openai_tool(self) -> Dict[str, Any]:
        """转成 OpenAI 兼容的 function tool 描述。"""

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": copy.deepcopy(self.parameters),
            },
        }


@dataclass
class ToolCallRequest:
    """模型发起的一次工具调用请求。arguments 保留厂商返回的原始 JSON 文本。"""

    id: str
    name: str
    arguments: str = "{}"


@dataclass
class ToolResult:
    """工具执行结果的封装（文本形式），作为 tool 消息回传给模型。"""

    tool_call_id: str
    content: str
    is_error: bool = False


def parse_tool_arguments(raw: Any) -> Dict[str, Any]:
    """解析工具调用的 arguments 字段。

    厂商会把 arguments 作为 JSON 字符串返回，可能是截断或非法的 JSON。
    空字符串视为无参数；解析失败或结果不是对象时抛 MalformedToolArguments。
    """

    if isinstance(raw, dict):
        return raw
    if raw is None:
        return {}
    text = str(raw).strip()
    if not text:
        return {}
    try:
        value = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedToolArguments(f"Invalid JSON arguments ({exc.msg} at position {exc.pos})", raw=text)
    if not isinstance(value, dict):
        raise MalformedToolArguments("Tool arguments must be a JSON object", raw=text)
    return value
