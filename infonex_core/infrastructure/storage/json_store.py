import json
import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from infonex_core.config.settings import settings
from infonex_core.content.normalizer import decode_from_storage, encode_for_storage
from infonex_core.domain.conversation import ChatSession, SessionStore
from infonex_core.domain.exceptions import StoreError
from infonex_core.domain.models import Message
from infonex_core.tools.definitions import ToolCallRequest

# create_session 生成的 id 形如 s-<32 位十六进制>
_SESSION_ID = re.compile(r"s-[0-9a-f]{32}")


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_ts(raw: str) -> datetime:
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))


class JsonSessionStore(SessionStore):
    """基于本地 JSON 文件的 SessionStore 实现。

    目录结构：<root>/sessions/<session_id>/meta.json + messages.jsonl。
    多模态内容按 content.normalizer 的存储编码写入 content 字段。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._sess_root = self._root / "sessions"
        self._sess_root.mkdir(parents=True, exist_ok=True)

    def create_session(self, title: str = "New Conversation", meta: Optional[Dict[str, Any]] = None) -> ChatSession:
        sid = f"s-{uuid4().hex}"
        sdir = self._sess_root / sid
        sdir.mkdir(parents=True, exist_ok=True)
        now = datetime.now(timezone.utc)
        session = ChatSession(id=sid, title=title, created_at=now, updated_at=now, meta=dict(meta or {}))
        self._write_meta(sdir, session)
        return session

    def get_session(self, session_id: str) -> ChatSession:
        meta_path = self._session_dir(session_id) / "meta.json"
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StoreError(code="SESSION_NOT_FOUND", message=str(e), http_status=404, session_id=session_id)
        return self._to_session(data)

    def list_sessions(self, limit: Optional[int] = None) -> List[ChatSession]:
        items: List[ChatSession] = []
        for sdir in self._sess_root.glob("*/"):
            meta_path = sdir / "meta.json"
            if not meta_path.exists():
                continue
            try:
                items.append(self._to_session(json.loads(meta_path.read_text(encoding="utf-8"))))
            except (OSError, ValueError, KeyError):
                continue
        items.sort(key=lambda s: s.updated_at, reverse=True)
        return items[:limit] if limit else items

    def append_message(self, session_id: str, message: Message) -> None:
        sdir = self._session_dir(session_id)
        if not (sdir / "meta.json").exists():
            raise StoreError(code="SESSION_NOT_FOUND", message=session_id, http_status=404)
        try:
            line = json.dumps(self._to_record(message), ensure_ascii=False)
            with (sdir / "messages.jsonl").open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e))
        session = self.get_session(session_id)
        session.updated_at = datetime.now(timezone.utc)
        if message.model:
            session.meta["model"] = message.model
        self._write_meta(sdir, session)

    def load_history(self, session_id: str) -> List[Message]:
        items: List[Message] = []
        if not _SESSION_ID.fullmatch(session_id or ""):
            return items
        msgs_path = self._sess_root / session_id / "messages.jsonl"
        if not msgs_path.exists():
            return items
        for line in msgs_path.read_text(encoding="utf-8").splitlines():
            try:
                items.append(self._to_message(json.loads(line)))
            except (ValueError, KeyError):
                continue
        return items

    def update_title(self, session_id: str, title: str) -> None:
        """更新会话标题。"""
        session = self.get_session(session_id)
        session.title = title
        session.updated_at = datetime.now(timezone.utc)
        self._write_meta(self._session_dir(session_id), session)

    def delete_session(self, session_id: str) -> None:
        sdir = self._session_dir(session_id)
        if not sdir.exists():
            raise StoreError(code="SESSION_NOT_FOUND", message=session_id, http_status=404)
        try:
            shutil.rmtree(sdir)
        except OSError as e:
            raise StoreError(code="STORE_DELETE_ERROR", message=str(e))

    def _session_dir(self, session_id: str) -> Path:
        # id 来自请求体，拼路径前必须校验，避免 ".." 之类逃出 sessions 目录
        if not isinstance(session_id, str) or not _SESSION_ID.fullmatch(session_id):
            raise StoreError(code="SESSION_NOT_FOUND", message=str(session_id), http_status=404)
        return self._sess_root / session_id

    def _write_meta(self, sdir: Path, session: ChatSession) -> None:
        meta_path = sdir / "meta.json"
        tmp_path = sdir / f"meta.{uuid4().hex}.json.tmp"
        obj = {
            "id": session.id,
            "title": session.title,
            "created_at": _iso(session.created_at),
            "updated_at": _iso(session.updated_at),
            "meta": session.meta,
        }
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, meta_path)
        except OSError as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _to_session(data: Dict[str, Any]) -> ChatSession:
        return ChatSession(
            id=data["id"],
            title=data.get("title") or "New Conversation",
            created_at=_parse_ts(data["created_at"]),
            updated_at=_parse_ts(data["updated_at"]),
            meta=data.get("meta") or {},
        )

    @staticmethod
    def _to_record(message: Message) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "role": message.role,
            "content": encode_for_storage(message.content),
            "model": message.model,
            "timestamp": _iso(message.timestamp),
            "meta": message.meta,
        }
        if message.tool_call_id:
            record["tool_call_id"] = message.tool_call_id
        if message.tool_calls:
            record["tool_calls"] = [
                {"id": c.id, "name": c.name, "arguments": c.arguments} for c in message.tool_calls
            ]
        return record

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> Message:
        tool_calls = [
            ToolCallRequest(id=c["id"], name=c["name"], arguments=c.get("arguments") or "{}")
            for c in data.get("tool_calls") or []
        ]
        return Message(
            role=data["role"],
            content=decode_from_storage(data.get("content") or ""),
            model=data.get("model"),
            timestamp=_parse_ts(data["timestamp"]),
            tool_call_id=data.get("tool_call_id"),
            tool_calls=tool_calls or None,
            meta=data.get("meta") or {},
        )
