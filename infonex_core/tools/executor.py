"""工具执行器。

核心约定：工具失败是数据而不是异常。未知工具、参数非法、必填参数缺失、
处理函数内部抛出的任何异常，都会被转换成一条错误文本的 ToolResult，
作为 tool 消息交还给模型，让模型自行道歉或换参数重试。
"""

from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from infonex_core.domain.exceptions import BusinessError, ToolFailure, ValidationError
from infonex_core.infrastructure.logging.logger import logger
from .definitions import ToolCallRequest, ToolResult, parse_tool_arguments
from .registry import ToolRegistry, default_registry


ToolHandler = Callable[[Dict[str, Any]], Awaitable[str]]


class ToolExecutor:
    def __init__(self, registry: ToolRegistry, handlers: Dict[str, ToolHandler]):
        missing = sorted(n for n in registry.names() if n not in handlers)
        orphaned = sorted(n for n in handlers if n not in registry)
        if missing or orphaned:
            raise ValidationError(
                code="TOOL_HANDLER_MISMATCH",
                message=f"Tool handlers out of sync with registry (missing={missing}, orphaned={orphaned})",
            )
        self._registry = registry
        self._handlers = dict(handlers)

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def execute_call(self, call: ToolCallRequest) -> ToolResult:
        """执行模型发起的一次工具调用，先防御式解析原始 arguments。"""

        try:
            args = parse_tool_arguments(call.arguments)
        except ToolFailure as exc:
            logger.warning(
                "Malformed tool arguments",
                extra={"extra": {"tool_name": call.name, "tool_call_id": call.id, "error": exc.message}},
            )
            return self._error(call.id, call.name, exc.message)
        return await self.execute(call.name, args, call_id=call.id)

    async def execute(self, name: str, args: Dict[str, Any], call_id: str = "") -> ToolResult:
        handler = self._handlers.get(name)
        if name not in self._registry or handler is None:
            return ToolResult(tool_call_id=call_id, content=f"Unknown tool: {name}", is_error=True)

        missing = [p for p in self._registry.get(name).required if args.get(p) in (None, "")]
        if missing:
            return self._error(call_id, name, f"Missing required argument(s): {', '.join(missing)}")

        try:
            content = await handler(args)
        except (BusinessError, httpx.HTTPError) as exc:
            message = exc.message if isinstance(exc, BusinessError) else str(exc) or type(exc).__name__
            logger.warning(
                "Tool execution failed",
                extra={"extra": {"tool_name": name, "tool_call_id": call_id, "error": message}},
            )
            return self._error(call_id, name, message)
        except Exception as exc:
            logger.exception(
                "Tool handler crashed",
                extra={"extra": {"tool_name": name, "tool_call_id": call_id}},
            )
            return self._error(call_id, name, str(exc) or type(exc).__name__)

        if not content:
            content = f"{name} completed with no output."
        return ToolResult(tool_call_id=call_id, content=content)

    @staticmethod
    def _error(call_id: str, name: str, message: str) -> ToolResult:
        return ToolResult(
            tool_call_id=call_id,
            content=f"Error executing {name}: {message}",
            is_error=True,
        )


def build_default_executor(
    app_settings=None,
    artifact_store=None,
    completer=None,
    registry: Optional[ToolRegistry] = None,
) -> ToolExecutor:
    """按默认配置装配全部工具。"""

    from .handlers import build_default_handlers

    handlers = build_default_handlers(
        app_settings=app_settings,
        artifact_store=artifact_store,
        completer=completer,
    )
    return ToolExecutor(registry or default_registry(), handlers)
