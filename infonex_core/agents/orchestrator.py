"""对话编排核心。

一次 run() 处理一个用户轮次：

1. 在内部副本上拼好历史（调用方传入的 history 不会被修改）。
2. 调用 ProviderAdapter；没有工具调用就直接得到最终回复。
3. 有工具调用时按顺序逐个执行，把 assistant 的工具调用消息和每个 tool 消息追加到副本。
4. 工具结果里第一个带 display_image / display_pdf 的信封直接成为最终回复，不再回问模型。
5. 否则带着工具结果再问一轮，直到没有工具调用或达到轮数上限。
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
from uuid import uuid4

from infonex_core.config.settings import settings
from infonex_core.content.normalizer import from_tool_result, prepend_text
from infonex_core.domain.conversation import SessionStore
from infonex_core.domain.exceptions import (
    BusinessError,
    RoundLimitExceeded,
    TurnCancelled,
    ValidationError,
)
from infonex_core.domain.models import (
    Content,
    Message,
    OrchestrationRequest,
    OrchestrationResult,
    ProviderRequest,
)
from infonex_core.infrastructure.logging.logger import logger
from infonex_core.metrics.token_counter import UsageRecorder, calculate_request_usage
from infonex_core.providers.base import ProviderAdapter
from infonex_core.tools.definitions import ToolResult
from infonex_core.tools.executor import ToolExecutor
from infonex_core.tools.registry import ToolRegistry

ProviderSource = Union[ProviderAdapter, Mapping[str, ProviderAdapter], Callable[[str], ProviderAdapter]]

ROUND_LIMIT_MESSAGE = (
    "I wasn't able to finish this request within the allowed number of steps. "
    "Please try again, perhaps with a simpler or more specific question."
)


class ConversationOrchestrator:
    def __init__(
        self,
        providers: Optional[ProviderSource],
        executor: ToolExecutor,
        registry: Optional[ToolRegistry] = None,
        max_tool_rounds: Optional[int] = None,
        usage_recorder: Optional[UsageRecorder] = None,
        session_store: Optional[SessionStore] = None,
    ):
        rounds = max_tool_rounds if max_tool_rounds is not None else settings.max_tool_rounds
        if rounds < 1:
            raise ValidationError(code="INVALID_ROUND_LIMIT", message="max_tool_rounds must be >= 1")
        self._providers = providers
        self._executor = executor
        self._registry = registry or executor.registry
        self._max_rounds = rounds
        self._usage_recorder = usage_recorder
        self._session_store = session_store

    @property
    def max_tool_rounds(self) -> int:
        return self._max_rounds

    async def run(
        self,
        request: OrchestrationRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> OrchestrationResult:
        """执行一个用户轮次。

        ProviderError 原样向上抛出（本轮失败，不重试）；
        工具失败只会变成 tool 消息，不会逃出本方法；
        超过轮数上限抛 RoundLimitExceeded，取消时抛 TurnCancelled。
        """

        start_time = time.time()
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "backend": request.backend,
            "session_id": request.session_id,
        }
        provider = self._provider_for(request.backend)
        tools = self._registry.list() if request.tools_enabled and provider.supports_tools else None

        working: List[Message] = []
        if request.system_prompt:
            working.append(Message(role="system", content=request.system_prompt))
        working.extend(request.history)

        preface: List[str] = []
        tool_results: List[ToolResult] = []

        for round_num in range(1, self._max_rounds + 1):
            self._check_cancelled(cancel_event, log_ctx, stage="provider", round=round_num)
            self._log(
                logging.INFO,
                "Provider round",
                log_ctx,
                round=round_num,
                max_rounds=self._max_rounds,
                message_count=len(working),
            )
            self._record_usage(working, tools, request)
            resp = await provider.send(
                ProviderRequest(
                    messages=list(working),
                    model=request.model,
                    tools=tools,
                    tool_choice="auto",
                )
            )

            if not resp.tool_calls:
                final = self._final_message(request, prepend_text(preface, resp.content or ""), round_num, log_ctx)
                return await self._finish(request, final, round_num, tool_results, log_ctx, start_time)

            # 工具轮里模型先说的话保留下来，拼到最终回复前面
            if resp.content:
                preface.append(resp.content)
            self._log(logging.INFO, "Executing tool calls", log_ctx, round=round_num, call_count=len(resp.tool_calls))
            working.append(Message(role="assistant", content=resp.content or "", tool_calls=list(resp.tool_calls)))

            round_results: List[ToolResult] = []
            for call in resp.tool_calls:
                self._check_cancelled(cancel_event, log_ctx, stage="tool", tool_name=call.name)
                self._log(
                    logging.INFO,
                    "Tool call received",
                    log_ctx,
                    tool_name=call.name,
                    tool_call_id=call.id,
                    tool_args=call.arguments,
                )
                result = await self._executor.execute_call(call)
                self._log(
                    logging.WARNING if result.is_error else logging.INFO,
                    "Tool execution finished",
                    log_ctx,
                    tool_name=call.name,
                    tool_call_id=call.id,
                    is_error=result.is_error,
                    result_preview=result.content[:200],
                )
                round_results.append(result)
                working.append(Message(role="tool", content=result.content, tool_call_id=call.id))
            tool_results.extend(round_results)

            artifact = self._first_artifact(round_results)
            if artifact is not None:
                self._log(logging.INFO, "Short-circuit on artifact result", log_ctx, round=round_num)
                final = self._final_message(request, prepend_text(preface, artifact), round_num, log_ctx)
                return await self._finish(request, final, round_num, tool_results, log_ctx, start_time)

        self._log(logging.WARNING, "Reached max tool rounds", log_ctx, max_rounds=self._max_rounds)
        raise RoundLimitExceeded(
            ROUND_LIMIT_MESSAGE,
            rounds_used=self._max_rounds,
            trace_id=log_ctx["trace_id"],
        )

    # ---- helpers ----

    def _provider_for(self, backend: str) -> ProviderAdapter:
        source = self._providers
        if source is None:
            from infonex_core.providers import create_provider

            return create_provider(backend)
        if hasattr(source, "send"):
            return source  # type: ignore[return-value]
        if isinstance(source, Mapping):
            try:
                return source[backend]
            except KeyError:
                raise ValidationError(code="UNKNOWN_BACKEND", message=f"Unknown backend: {backend!r}")
        return source(backend)

    @staticmethod
    def _first_artifact(results: List[ToolResult]) -> Optional[Content]:
        # 同一轮出现多个产出文件时按调用顺序取第一个
        for result in results:
            if result.is_error:
                continue
            content = from_tool_result(result.content)
            if content is not None:
                return content
        return None

    def _check_cancelled(self, cancel_event: Optional[asyncio.Event], log_ctx: Dict[str, Any], **fields: Any) -> None:
        if cancel_event is not None and cancel_event.is_set():
            self._log(logging.INFO, "Turn cancelled", log_ctx, **fields)
            raise TurnCancelled(trace_id=log_ctx["trace_id"])

    def _record_usage(self, working: List[Message], tools, request: OrchestrationRequest) -> None:
        if self._usage_recorder is None:
            return
        usage = calculate_request_usage(working, tools)
        self._usage_recorder.record(usage, request.model or request.backend, request.session_id)

    @staticmethod
    def _final_message(
        request: OrchestrationRequest,
        content: Content,
        rounds: int,
        log_ctx: Dict[str, Any],
    ) -> Message:
        return Message(
            role="assistant",
            content=content,
            model=request.client_model or request.model,
            meta={"backend": request.backend, "rounds": rounds, "trace_id": log_ctx["trace_id"]},
        )

    async def _finish(
        self,
        request: OrchestrationRequest,
        final: Message,
        rounds: int,
        tool_results: List[ToolResult],
        log_ctx: Dict[str, Any],
        start_time: float,
    ) -> OrchestrationResult:
        if self._session_store is not None and request.session_id:
            try:
                await asyncio.to_thread(self._session_store.append_message, request.session_id, final)
            except (BusinessError, OSError) as e:
                # 持久化失败不影响本轮结果
                self._log(logging.WARNING, "Failed to persist assistant message", log_ctx, error=str(e))
        self._log(
            logging.INFO,
            "Completed turn",
            log_ctx,
            rounds_used=rounds,
            tool_calls=len(tool_results),
            elapsed_seconds=round(time.time() - start_time, 2),
        )
        return OrchestrationResult(final_message=final, rounds_used=rounds, tool_results=tool_results)

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
