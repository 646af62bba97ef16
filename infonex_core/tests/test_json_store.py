import tempfile
from pathlib import Path

import pytest

from infonex_core.domain.exceptions import StoreError
from infonex_core.domain.models import ImageRef, Message, PdfRef, TextPart
from infonex_core.infrastructure.storage.artifact_store import FileArtifactStore
from infonex_core.infrastructure.storage.json_store import JsonSessionStore
from infonex_core.tools.definitions import ToolCallRequest


def test_session_store_create_and_messages():
    with tempfile.TemporaryDirectory() as d:
        store = JsonSessionStore(root=Path(d) / ".storage")
        session = store.create_session("Trip planning")
        store.append_message(session.id, Message(role="user", content="plan a trip"))
        store.append_message(
            session.id,
            Message(
                role="assistant",
                content=[TextPart("Here is your itinerary"), PdfRef("/api/pdfs/abc", "Itinerary")],
                model="gpt-4o",
            ),
        )
        history = store.load_history(session.id)
        assert [m.role for m in history] == ["user", "assistant"]
        assert history[0].content == "plan a trip"
        assert history[1].content == [TextPart("Here is your itinerary"), PdfRef("/api/pdfs/abc", "Itinerary")]
        assert history[1].model == "gpt-4o"
        assert store.get_session(session.id).meta["model"] == "gpt-4o"


def test_session_store_keeps_tool_call_fields():
    with tempfile.TemporaryDirectory() as d:
        store = JsonSessionStore(root=Path(d))
        session = store.create_session()
        call = ToolCallRequest(id="c1", name="web_search", arguments='{"query": "x"}')
        store.append_message(session.id, Message(role="assistant", content="", tool_calls=[call]))
        store.append_message(session.id, Message(role="tool", content="results", tool_call_id="c1"))
        history = store.load_history(session.id)
        assert history[0].tool_calls == [call]
        assert history[1].tool_call_id == "c1"


def test_session_store_list_rename_delete():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        store = JsonSessionStore(root=root)
        first = store.create_session("first")
        second = store.create_session("second")
        store.append_message(first.id, Message(role="user", content=[TextPart("hi"), ImageRef("data:image/png;base64,A")]))
        assert [s.id for s in store.list_sessions()] == [first.id, second.id]
        assert len(store.list_sessions(limit=1)) == 1

        store.update_title(second.id, "renamed")
        assert store.get_session(second.id).title == "renamed"

        store.delete_session(first.id)
        assert not (root / "sessions" / first.id).exists()
        assert first.id not in {s.id for s in store.list_sessions()}


def test_session_store_missing_session():
    with tempfile.TemporaryDirectory() as d:
        store = JsonSessionStore(root=Path(d))
        with pytest.raises(StoreError) as exc:
            store.append_message("s-missing", Message(role="user", content="x"))
        assert exc.value.http_status == 404
        with pytest.raises(StoreError):
            store.get_session("s-missing")
        with pytest.raises(StoreError):
            store.delete_session("s-missing")
        assert store.load_history("s-missing") == []


def test_artifact_store_round_trip(tmp_path):
    store = FileArtifactStore(root=tmp_path)
    artifact = store.save("pdf", b"%PDF-1.4 test", "report.pdf", "application/pdf", title="Report")
    assert store.url_for(artifact) == f"/api/pdfs/{artifact.id}"

    loaded, data = store.load("pdf", artifact.id)
    assert data == b"%PDF-1.4 test"
    assert loaded.title == "Report"
    assert loaded.mime_type == "application/pdf"

    image = store.save("image", b"\x89PNG", "cat.png", "image/png")
    assert store.url_for(image).startswith("/api/images/")


def test_artifact_store_rejects_bad_ids_and_kinds(tmp_path):
    store = FileArtifactStore(root=tmp_path)
    with pytest.raises(StoreError):
        store.load("image", "../../etc/passwd")
    with pytest.raises(StoreError):
        store.load("image", "deadbeef")
    with pytest.raises(StoreError):
        store.save("video", b"", "x.mp4", "video/mp4")


@pytest.mark.parametrize("bad_id", ["..", "../..", ".", "", "s-../../artifacts", "/tmp", "S-" + "a" * 32])
def test_session_ids_cannot_escape_storage_root(tmp_path, bad_id):
    artifacts = FileArtifactStore(root=tmp_path)
    artifact = artifacts.save("pdf", b"%PDF-1.4", "keep.pdf", "application/pdf")
    store = JsonSessionStore(root=tmp_path)
    kept = store.create_session("keep me")

    with pytest.raises(StoreError) as exc:
        store.delete_session(bad_id)
    assert exc.value.http_status == 404
    with pytest.raises(StoreError):
        store.get_session(bad_id)
    with pytest.raises(StoreError):
        store.append_message(bad_id, Message(role="user", content="x"))
    with pytest.raises(StoreError):
        store.update_title(bad_id, "x")
    assert store.load_history(bad_id) == []

    assert artifacts.load("pdf", artifact.id)[1] == b"%PDF-1.4"
    assert [s.id for s in store.list_sessions()] == [kept.id]
