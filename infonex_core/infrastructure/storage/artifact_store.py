"""生成文件（图片、PDF、二维码）的存储。

工具只拿到一个稳定的下载地址（/api/images/<id>、/api/pdfs/<id>），
真正的字节由 HTTP 层通过 load() 取回。
"""

import json
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Optional, Protocol, Tuple
from uuid import uuid4

from infonex_core.config.settings import settings
from infonex_core.domain.exceptions import StoreError

ArtifactKind = Literal["image", "pdf"]

_URL_PREFIX = {"image": "/api/images", "pdf": "/api/pdfs"}


@dataclass
class StoredArtifact:
    id: str
    kind: ArtifactKind
    filename: str
    mime_type: str
    title: str
    created_at: str


class ArtifactStore(Protocol):
    def save(
        self,
        kind: ArtifactKind,
        data: bytes,
        filename: str,
        mime_type: str,
        title: str = "",
    ) -> StoredArtifact:
        ...

    def load(self, kind: ArtifactKind, artifact_id: str) -> Tuple[StoredArtifact, bytes]:
        ...

    def url_for(self, artifact: StoredArtifact) -> str:
        ...


class FileArtifactStore:
    """<root>/artifacts/<kind>/<id>.bin + <id>.json。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve() / "artifacts"
        for kind in _URL_PREFIX:
            (self._root / kind).mkdir(parents=True, exist_ok=True)

    def save(
        self,
        kind: ArtifactKind,
        data: bytes,
        filename: str,
        mime_type: str,
        title: str = "",
    ) -> StoredArtifact:
        artifact = StoredArtifact(
            id=uuid4().hex[:16],
            kind=kind,
            filename=filename,
            mime_type=mime_type,
            title=title,
            created_at=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        )
        kdir = self._kind_dir(kind)
        tmp_path = kdir / f"{artifact.id}.bin.tmp"
        try:
            tmp_path.write_bytes(data)
            os.replace(tmp_path, kdir / f"{artifact.id}.bin")
            (kdir / f"{artifact.id}.json").write_text(json.dumps(asdict(artifact), ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e))
        return artifact

    def load(self, kind: ArtifactKind, artifact_id: str) -> Tuple[StoredArtifact, bytes]:
        kdir = self._kind_dir(kind)
        if not artifact_id.isalnum():
            raise StoreError(code="ARTIFACT_NOT_FOUND", message=artifact_id, http_status=404)
        try:
            meta = json.loads((kdir / f"{artifact_id}.json").read_text(encoding="utf-8"))
            data = (kdir / f"{artifact_id}.bin").read_bytes()
        except (OSError, ValueError):
            raise StoreError(code="ARTIFACT_NOT_FOUND", message=artifact_id, http_status=404)
        return StoredArtifact(**meta), data

    def url_for(self, artifact: StoredArtifact) -> str:
        return f"{_URL_PREFIX[artifact.kind]}/{artifact.id}"

    def _kind_dir(self, kind: Optional[str]) -> Path:
        if kind not in _URL_PREFIX:
            raise StoreError(code="UNKNOWN_ARTIFACT_KIND", message=str(kind))
        return self._root / kind
