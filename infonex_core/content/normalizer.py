"""内容归一化。

项目内部统一使用 Content（字符串或 TextPart/ImageRef/PdfRef 列表），
本模块负责它与各种外部格式之间的转换，全部是纯函数，不做 I/O：

- Provider 格式：OpenAI 兼容的 content（字符串或 text/image_url 数组）。
- 存储/前端格式：字符串或 text/image_url/pdf_link 数组，持久化时再整体 JSON 编码。
- 工具结果：带 display_image / display_pdf 标记的 JSON 信封可以直接变成最终内容。
"""

import json
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from infonex_core.domain.models import Content, ContentPart, ImageRef, Message, PdfRef, TextPart

if TYPE_CHECKING:
    from infonex_core.tools.definitions import ToolCallRequest


def make_content(parts: List[ContentPart]) -> Content:
    """由片段构造 Content：没有非文本片段时折叠为字符串，空列表变为空字符串。"""

    if not parts:
        return ""
    if all(isinstance(p, TextPart) for p in parts):
        return "\n\n".join(p.text for p in parts if p.text)
    return list(parts)


def as_parts(content: Content) -> List[ContentPart]:
    if isinstance(content, str):
        return [TextPart(content)] if content else []
    return list(content)


def has_media(content: Content) -> bool:
    return not isinstance(content, str) and any(not isinstance(p, TextPart) for p in content)


def flatten_text(content: Content) -> str:
    """只保留文字的渲染，用于不能携带图片片段的角色。"""

    if isinstance(content, str):
        return content
    lines: List[str] = []
    for part in content:
        if isinstance(part, TextPart):
            if part.text:
                lines.append(part.text)
        elif isinstance(part, ImageRef):
            lines.append("[image]" if part.url.startswith("data:") else f"[image]({part.url})")
        elif isinstance(part, PdfRef):
            lines.append(f"[{part.title}]({part.url})")
    return "\n".join(lines)


# ---- Provider 方向 ----


def part_to_provider(part: ContentPart) -> Dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ImageRef):
        return {"type": "image_url", "image_url": {"url": part.url}}
    if isinstance(part, PdfRef):
        # Provider 没有 PDF 片段类型，降级为带链接的文本
        return {"type": "text", "text": f"[{part.title}]({part.url})"}
    raise TypeError(f"Unsupported content part: {part!r}")


def to_provider_format(content: Content) -> Any:
    if isinstance(content, str):
        return content
    return [part_to_provider(p) for p in content]


def part_from_wire(item: Any) -> Optional[ContentPart]:
    """解析一个外部片段，同时兼容 Provider 与前端/存储两种写法。无法识别时返回 None。"""

    if isinstance(item, str):
        return TextPart(item)
    if not isinstance(item, dict):
        return None
    kind = item.get("type")
    if kind == "text":
        return TextPart(str(item.get("text") or item.get("content") or ""))
    if kind == "image_url":
        image_url = item.get("image_url")
        url = image_url.get("url") if isinstance(image_url, dict) else image_url
        return ImageRef(str(url)) if url else None
    if kind == "image" and item.get("image_data"):
        data = str(item["image_data"])
        if not data.startswith("data:"):
            data = f"data:image/jpeg;base64,{data}"
        return ImageRef(data)
    if kind == "pdf_link" and item.get("pdf_url"):
        return PdfRef(url=str(item["pdf_url"]), title=str(item.get("title") or "Generated PDF"))
    return None


def from_provider_format(raw: Any) -> Content:
    """Provider content -> Content。保持结构：字符串仍是字符串，数组仍是片段列表。"""

    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, list):
        parts = [p for p in (part_from_wire(item) for item in raw) if p is not None]
        return parts or ""
    return str(raw)


def message_to_payload(message: Message) -> Dict[str, Any]:
    """Message -> OpenAI 兼容的 message JSON。

    只有 user 消息保留图片片段；其余角色统一压平成文本。
    """

    payload: Dict[str, Any] = {"role": message.role}
    if message.role == "user":
        payload["content"] = to_provider_format(message.content)
    else:
        payload["content"] = flatten_text(message.content)
    if message.tool_calls:
        payload["tool_calls"] = [tool_call_to_payload(call) for call in message.tool_calls]
        if not payload["content"]:
            payload["content"] = None
    if message.tool_call_id:
        payload["tool_call_id"] = message.tool_call_id
    return payload


def tool_call_to_payload(call: "ToolCallRequest") -> Dict[str, Any]:
    return {
        "id": call.id,
        "type": "function",
        "function": {"name": call.name, "arguments": call.arguments},
    }


# ---- 工具结果方向 ----


def parse_tool_envelope(content: str) -> Optional[Dict[str, Any]]:
    """尝试把工具输出解析成带 type 判别字段的 JSON 信封。"""

    text = (content or "").strip()
    if not text.startswith("{"):
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        return None
    return data


def from_tool_result(content: str) -> Optional[Content]:
    """工具结果 -> 可直接展示的最终内容。

    返回 None 表示这是一个需要模型再叙述一遍的普通结果。
    """

    envelope = parse_tool_envelope(content)
    if envelope is None:
        return None
    message = str(envelope.get("message") or "")
    if envelope.get("display_image") is True and envelope.get("image_url"):
        return [TextPart(message), ImageRef(str(envelope["image_url"]))]
    if envelope.get("display_pdf") is True and envelope.get("pdf_url"):
        title = str(envelope.get("title") or "Generated PDF")
        return [TextPart(message), PdfRef(url=str(envelope["pdf_url"]), title=title)]
    return None


def prepend_text(prefix: List[str], content: Content) -> Content:
    """把工具轮中模型先说的话拼在最终内容前面。"""

    texts = [t for t in prefix if t and t.strip()]
    if not texts:
        return content
    if isinstance(content, str):
        return "\n\n".join(texts + ([content] if content else []))
    parts = list(content)
    if parts and isinstance(parts[0], TextPart):
        head = "\n\n".join(texts + ([parts[0].text] if parts[0].text else []))
        return [TextPart(head)] + parts[1:]
    return [TextPart("\n\n".join(texts))] + parts


# ---- 存储 / 前端方向 ----


def part_to_storage(part: ContentPart) -> Dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ImageRef):
        return {"type": "image_url", "image_url": {"url": part.url}}
    if isinstance(part, PdfRef):
        return {"type": "pdf_link", "pdf_url": part.url, "title": part.title}
    raise TypeError(f"Unsupported content part: {part!r}")


def to_storage_format(content: Content) -> Any:
    if isinstance(content, str):
        return content
    return [part_to_storage(p) for p in content]


def from_storage_format(raw: Any) -> Content:
    return from_provider_format(raw)


def encode_for_storage(content: Content) -> str:
    """持久化时的单一编码：字符串原样保存，多模态内容保存为 JSON 数组文本。"""

    if isinstance(content, str):
        return content
    return json.dumps(to_storage_format(content), ensure_ascii=False)


def decode_from_storage(text: str) -> Content:
    if not text or not text.lstrip().startswith("["):
        return text or ""
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return text
    if not isinstance(data, list):
        return text
    return from_storage_format(data)
