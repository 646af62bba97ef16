"""工具目录。

ToolRegistry 在进程启动时构造一次，之后只读；Provider 适配器通过
list() 获取要声明给模型的工具，ToolExecutor 通过 get() 做名称与必填参数校验。
"""

from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping

from infonex_core.domain.exceptions import ToolNotFound, ValidationError
from .definitions import ToolDescriptor


class ToolRegistry:
    def __init__(self, descriptors: Iterable[ToolDescriptor]):
        items: Dict[str, ToolDescriptor] = {}
        for desc in descriptors:
            if desc.name in items:
                raise ValidationError(code="DUPLICATE_TOOL", message=f"Duplicate tool name: {desc.name}")
            items[desc.name] = desc
        self._items: Mapping[str, ToolDescriptor] = MappingProxyType(items)

    def list(self) -> List[ToolDescriptor]:
        return list(self._items.values())

    def get(self, name: str) -> ToolDescriptor:
        try:
            return self._items[name]
        except KeyError:
            raise ToolNotFound(f"Unknown tool: {name}", tool_name=name)

    def names(self) -> List[str]:
        return list(self._items.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._items

    def __len__(self) -> int:
        return len(self._items)


def _schema(properties: Dict[str, dict], required: List[str]) -> dict:
    return {"type": "object", "properties": properties, "required": required}


DATA_DESCRIPTION = "Data as a JSON array of objects or CSV text with a header row"


def default_tool_defs() -> List[ToolDescriptor]:
    return [
        ToolDescriptor(
            name="web_search",
            description=(
                "Search the web for real-time information when the user asks about "
                "current events, news, or recent information"
            ),
            parameters=_schema(
                {"query": {"type": "string", "description": "The search query to find relevant information"}},
                ["query"],
            ),
        ),
        ToolDescriptor(
            name="generate_image",
            description="Generate an image from a text description",
            parameters=_schema(
                {
                    "prompt": {"type": "string", "description": "Detailed description of the image"},
                    "style": {"type": "string", "enum": ["vivid", "natural"], "default": "natural"},
                    "size": {
                        "type": "string",
                        "enum": ["1024x1024", "1792x1024", "1024x1792"],
                        "default": "1024x1024",
                    },
                },
                ["prompt"],
            ),
        ),
        ToolDescriptor(
            name="generate_pdf",
            description="Create a downloadable PDF document with a title, body text and optional sections",
            parameters=_schema(
                {
                    "title": {"type": "string"},
                    "content": {"type": "string", "description": "Main body text"},
                    "sections": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {"heading": {"type": "string"}, "content": {"type": "string"}},
                            "required": ["heading", "content"],
                        },
                    },
                },
                ["title", "content"],
            ),
        ),
        ToolDescriptor(
            name="execute_code",
            description="Evaluate a short arithmetic Python expression and return the result",
            parameters=_schema(
                {
                    "code": {"type": "string"},
                    "language": {"type": "string", "enum": ["python"], "default": "python"},
                },
                ["code"],
            ),
        ),
        ToolDescriptor(
            name="analyze_data",
            description="Compute summary statistics for a small tabular dataset",
            parameters=_schema(
                {
                    "data": {"type": "string", "description": DATA_DESCRIPTION},
                    "analysis_type": {
                        "type": "string",
                        "enum": ["summary", "correlation", "trend", "distribution"],
                    },
                    "visualization": {"type": "boolean"},
                },
                ["data", "analysis_type"],
            ),
        ),
        ToolDescriptor(
            name="translate_text",
            description="Translate text into a target language",
            parameters=_schema(
                {
                    "text": {"type": "string"},
                    "target_language": {"type": "string"},
                    "source_language": {"type": "string"},
                },
                ["text", "target_language"],
            ),
        ),
        ToolDescriptor(
            name="get_weather",
            description="Get current weather and an optional forecast for a location",
            parameters=_schema(
                {
                    "location": {"type": "string"},
                    "forecast_days": {"type": "integer", "minimum": 1, "maximum": 7},
                },
                ["location"],
            ),
        ),
        ToolDescriptor(
            name="calculate_math",
            description="Evaluate a mathematical expression",
            parameters=_schema(
                {
                    "expression": {"type": "string"},
                    "operation": {
                        "type": "string",
                        "enum": ["calculate", "solve", "differentiate", "integrate", "plot"],
                        "default": "calculate",
                    },
                },
                ["expression"],
            ),
        ),
        ToolDescriptor(
            name="compose_email",
            description="Draft an email for the user",
            parameters=_schema(
                {
                    "subject": {"type": "string"},
                    "purpose": {"type": "string"},
                    "tone": {"type": "string", "default": "professional"},
                    "recipient": {"type": "string"},
                },
                ["subject", "purpose"],
            ),
        ),
        ToolDescriptor(
            name="analyze_sentiment",
            description="Analyze the sentiment or emotions of a text",
            parameters=_schema(
                {
                    "text": {"type": "string"},
                    "analysis_depth": {
                        "type": "string",
                        "enum": ["basic", "detailed", "emotions"],
                        "default": "basic",
                    },
                },
                ["text"],
            ),
        ),
        ToolDescriptor(
            name="create_calendar_event",
            description="Create a calendar event in iCal format",
            parameters=_schema(
                {
                    "title": {"type": "string"},
                    "date": {"type": "string", "description": "Date, e.g. 2025-03-14"},
                    "time": {"type": "string"},
                    "duration": {"type": "string"},
                    "description": {"type": "string"},
                },
                ["title", "date"],
            ),
        ),
        ToolDescriptor(
            name="generate_qr_code",
            description="Generate a QR code image that encodes the given data",
            parameters=_schema(
                {
                    "data": {"type": "string"},
                    "size": {"type": "integer", "minimum": 64, "maximum": 1024, "default": 256},
                    "format": {"type": "string", "enum": ["png", "svg", "both"], "default": "png"},
                },
                ["data"],
            ),
        ),
        ToolDescriptor(
            name="analyze_code",
            description="Review source code for complexity, security, performance and style",
            parameters=_schema(
                {
                    "code": {"type": "string"},
                    "language": {"type": "string"},
                    "analysis_type": {"type": "string", "default": "comprehensive"},
                },
                ["code", "language"],
            ),
        ),
        ToolDescriptor(
            name="create_chart",
            description="Prepare a chart configuration from tabular data",
            parameters=_schema(
                {
                    "data": {"type": "string", "description": DATA_DESCRIPTION},
                    "chart_type": {"type": "string", "enum": ["bar", "line", "pie", "scatter"]},
                    "title": {"type": "string"},
                    "x_label": {"type": "string"},
                    "y_label": {"type": "string"},
                },
                ["data", "chart_type"],
            ),
        ),
        ToolDescriptor(
            name="extract_text_from_url",
            description="Extract and summarize the readable text of a web page",
            parameters=_schema(
                {
                    "url": {"type": "string"},
                    "summary_length": {"type": "string", "enum": ["short", "medium", "long"], "default": "medium"},
                },
                ["url"],
            ),
        ),
        ToolDescriptor(
            name="format_text",
            description="Reformat text as markdown, html, a list, a table or similar",
            parameters=_schema(
                {
                    "text": {"type": "string"},
                    "format_type": {"type": "string"},
                    "style": {"type": "string"},
                },
                ["text", "format_type"],
            ),
        ),
        ToolDescriptor(
            name="generate_password",
            description="Generate a random secure password",
            parameters=_schema(
                {
                    "length": {"type": "integer", "minimum": 4, "maximum": 128, "default": 16},
                    "include_symbols": {"type": "boolean"},
                    "include_numbers": {"type": "boolean"},
                    "include_uppercase": {"type": "boolean"},
                    "exclude_similar": {"type": "boolean"},
                },
                [],
            ),
        ),
    ]


def default_registry() -> ToolRegistry:
    return ToolRegistry(default_tool_defs())
