from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Protocol

from .models import Message


@dataclass
class ChatSession:
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    meta: Dict[str, Any]


class SessionStore(Protocol):
    """会话持久化端口。编排器与 API 层只依赖此协议，不关心底层 schema。"""

    def create_session(self, title: str = "New Conversation", meta: Dict[str, Any] | None = None) -> ChatSession:
        ...

    def get_session(self, session_id: str) -> ChatSession:
        ...

    def list_sessions(self, limit: int | None = None) -> List[ChatSession]:
        ...

    def append_message(self, session_id: str, message: Message) -> None:
        ...

    def load_history(self, session_id: str) -> List[Message]:
        ...

    def update_title(self, session_id: str, title: str) -> None:
        ...

    def delete_session(self, session_id: str) -> None:
        ...
