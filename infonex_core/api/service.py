"""对外 API 服务模块。

HTTP 层（不在本包内）只需把请求体交给 ChatService，再把返回的字典序列化出去：

- POST /api/chat             -> ChatService.chat
- POST /api/chat-with-image  -> ChatService.chat_with_image
- GET  /api/health           -> ChatService.health
- 会话与文件相关的路由使用本模块的函数接口。
"""

import asyncio
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from infonex_core.config.settings import settings
from infonex_core.content.normalizer import (
    flatten_text,
    from_provider_format,
    has_media,
    to_storage_format,
)
from infonex_core.domain.conversation import SessionStore
from infonex_core.domain.exceptions import (
    BusinessError,
    RoundLimitExceeded,
    TurnCancelled,
    ValidationError,
)
from infonex_core.domain.models import Message, OrchestrationRequest
from infonex_core.agents.orchestrator import ConversationOrchestrator
from infonex_core.infrastructure.logging.logger import logger
from infonex_core.infrastructure.storage.artifact_store import ArtifactStore, FileArtifactStore
from infonex_core.infrastructure.storage.json_store import JsonSessionStore
from infonex_core.metrics.token_counter import UsageTracker
from infonex_core.providers.registry import resolve_backend
from infonex_core.tools.executor import build_default_executor
from infonex_core.tools.handlers.search import SerperClient, build_search_preamble


DEFAULT_SYSTEM_PROMPT = (
    "You are Infonex, a helpful assistant. Use the available tools when they help "
    "answer the user, and answer directly when they do not."
)

APOLOGY_TEMPLATE = "I'm sorry, something went wrong while answering ({reason}). Please try again."


class ChatMessageBody(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: Union[str, List[Dict[str, Any]]]


class ChatCompletionBody(BaseModel):
    model: str
    messages: List[ChatMessageBody] = Field(min_length=1)
    sessionId: Optional[str] = None
    webSearchEnabled: bool = True


class ChatService:
    def __init__(
        self,
        orchestrator: ConversationOrchestrator,
        session_store: Optional[SessionStore] = None,
        search_client: Optional[SerperClient] = None,
        app_settings=None,
        tools_enabled: bool = True,
        system_prompt: Optional[str] = DEFAULT_SYSTEM_PROMPT,
    ):
        self._orchestrator = orchestrator
        self._store = session_store
        self._settings = app_settings or settings
        self._search = search_client
        self._tools_enabled = tools_enabled
        self._system_prompt = system_prompt

    async def chat(self, body: Dict[str, Any], cancel_event: Optional[asyncio.Event] = None) -> Dict[str, Any]:
        """处理一次聊天请求。

        Raises:
            ValidationError: 请求体非法或模型名未知（http_status=400）。
            TurnCancelled: 调用方取消了本轮对话。
        其余业务错误都会变成一条致歉的 assistant 消息返回。
        """

        req = parse_body(body)
        return await self._run(req, cancel_event)

    async def chat_with_image(
        self, body: Dict[str, Any], cancel_event: Optional[asyncio.Event] = None
    ) -> Dict[str, Any]:
        req = parse_body(body)
        history = [from_provider_format(m.content) for m in req.messages]
        if not any(has_media(content) for content in history):
            raise ValidationError(code="NO_IMAGE_CONTENT", message="Request contains no image content")
        return await self._run(req, cancel_event)

    def health(self) -> Tuple[int, Dict[str, Any]]:
        required = {
            "OPENAI_API_KEY": self._settings.openai_api_key,
            "OPENAI_MINI_API_KEY": self._settings.openai_mini_api_key,
            "OPENROUTER_API_KEY": self._settings.openrouter_api_key,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            return 500, {"status": "error", "message": f"Missing environment variables: {', '.join(missing)}"}
        return 200, {"status": "ok"}

    async def _run(
        self,
        req: ChatCompletionBody,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        route = resolve_backend(req.model)
        history = [Message(role=m.role, content=from_provider_format(m.content)) for m in req.messages]
        last = history[-1]

        if req.sessionId and last.role == "user":
            last.model = req.model
            await self._persist(req.sessionId, last)

        system_prompt = await self._build_system_prompt(req, last)
        try:
            result = await self._orchestrator.run(
                OrchestrationRequest(
                    backend=route.backend,
                    history=history,
                    tools_enabled=self._tools_enabled,
                    system_prompt=system_prompt,
                    session_id=req.sessionId,
                    model=route.model_override,
                    client_model=req.model,
                ),
                cancel_event=cancel_event,
            )
            content = result.final_message.content
        except TurnCancelled:
            raise
        except BusinessError as e:
            logger.error(
                "Chat turn failed",
                extra={"extra": {"model": req.model, "code": e.code, "error": e.message, "session_id": req.sessionId}},
            )
            content = e.message if isinstance(e, RoundLimitExceeded) else APOLOGY_TEMPLATE.format(reason=e.message)
            if req.sessionId:
                await self._persist(req.sessionId, Message(role="assistant", content=content, model=req.model))

        return {"message": {"role": "assistant", "content": to_storage_format(content)}, "model": req.model}

    async def _build_system_prompt(self, req: ChatCompletionBody, last: Message) -> Optional[str]:
        parts = [self._system_prompt] if self._system_prompt else []
        if (
            self._search is not None
            and self._settings.search_augmentation
            and req.webSearchEnabled
            and last.role == "user"
        ):
            preamble = await build_search_preamble(self._search, flatten_text(last.content))
            if preamble:
                parts.append(preamble)
        return "\n\n".join(parts) or None

    async def _persist(self, session_id: str, message: Message) -> None:
        if self._store is None:
            return
        try:
            await asyncio.to_thread(self._store.append_message, session_id, message)
        except (BusinessError, OSError) as e:
            # 存储失败不影响本次回复
            logger.warning(
                "Failed to store message",
                extra={"extra": {"session_id": session_id, "role": message.role, "error": str(e)}},
            )


def parse_body(body: Any) -> ChatCompletionBody:
    if isinstance(body, ChatCompletionBody):
        return body
    try:
        return ChatCompletionBody.model_validate(body)
    except PydanticValidationError as exc:
        raise ValidationError(
            code="INVALID_REQUEST",
            message="Invalid request format",
            errors=exc.errors(include_url=False),
        )


# ---- 默认装配与函数接口 ----

_store: Optional[SessionStore] = None
_artifacts: Optional[ArtifactStore] = None
_service: Optional[ChatService] = None


def get_default_store() -> SessionStore:
    global _store
    if _store is None:
        _store = JsonSessionStore(root=settings.storage_root)
    return _store


def get_default_artifacts() -> ArtifactStore:
    global _artifacts
    if _artifacts is None:
        _artifacts = FileArtifactStore(root=settings.storage_root)
    return _artifacts


def get_default_service() -> ChatService:
    """获取默认的 ChatService 实例（单例）。"""
    global _service
    if _service is None:
        store = get_default_store()
        executor = build_default_executor(settings, get_default_artifacts())
        orchestrator = ConversationOrchestrator(
            providers=None,
            executor=executor,
            usage_recorder=UsageTracker() if settings.track_token_usage else None,
            session_store=store,
        )
        _service = ChatService(orchestrator, session_store=store, search_client=SerperClient(settings))
    return _service


def create_session(title: str = "New Conversation") -> Dict[str, Any]:
    s = get_default_store().create_session(title)
    return {"id": s.id, "title": s.title, "created_at": s.created_at.isoformat(), "updated_at": s.updated_at.isoformat()}


def list_sessions(limit: Optional[int] = None) -> List[Dict[str, Any]]:
    return [
        {
            "id": s.id,
            "title": s.title,
            "created_at": s.created_at.isoformat(),
            "updated_at": s.updated_at.isoformat(),
            "meta": s.meta,
        }
        for s in get_default_store().list_sessions(limit)
    ]


def get_session_messages(session_id: str) -> List[Dict[str, Any]]:
    store = get_default_store()
    store.get_session(session_id)
    return [
        {
            "role": m.role,
            "content": to_storage_format(m.content),
            "model": m.model,
            "timestamp": m.timestamp.isoformat(),
        }
        for m in store.load_history(session_id)
    ]


def delete_session(session_id: str) -> None:
    get_default_store().delete_session(session_id)


def load_artifact(kind: str, artifact_id: str) -> Tuple[str, bytes]:
    """返回 (mime_type, 字节)，供 /api/images/<id> 与 /api/pdfs/<id> 使用。"""
    artifact, data = get_default_artifacts().load(kind, artifact_id)  # type: ignore[arg-type]
    return artifact.mime_type, data
