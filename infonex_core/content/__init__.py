"""内容归一化：内部 Content 与 Provider / 存储 / 工具结果格式之间的转换。"""

from infonex_core.content.normalizer import (
    flatten_text,
    from_provider_format,
    from_tool_result,
    make_content,
    to_provider_format,
)

__all__ = [
    "flatten_text",
    "from_provider_format",
    "from_tool_result",
    "make_content",
    "to_provider_format",
]
