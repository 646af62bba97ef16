import json

import pytest

from infonex_core.agents.orchestrator import ROUND_LIMIT_MESSAGE, ConversationOrchestrator
from infonex_core.api.service import ChatService
from infonex_core.domain.exceptions import AuthError, ValidationError
from infonex_core.domain.models import ProviderResponse
from infonex_core.infrastructure.storage.json_store import JsonSessionStore
from infonex_core.tools.definitions import ToolCallRequest, ToolDescriptor
from infonex_core.tools.executor import ToolExecutor
from infonex_core.tools.registry import ToolRegistry


class FakeProvider:
    name = "fake"
    supports_tools = True

    def __init__(self, *responses):
        self._responses = list(responses)
        self.requests = []

    async def send(self, req):
        self.requests.append(req)
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, Exception):
            raise item
        return item


def _executor():
    async def generate_image(args):
        return json.dumps(
            {
                "type": "image_generation_result",
                "display_image": True,
                "image_url": "/api/images/img1",
                "message": "Here is the image",
            }
        )

    async def web_search(args):
        return "nothing found"

    registry = ToolRegistry(
        [
            ToolDescriptor("generate_image", "image", {"type": "object", "properties": {}, "required": []}),
            ToolDescriptor("web_search", "search", {"type": "object", "properties": {}, "required": []}),
        ]
    )
    return ToolExecutor(registry, {"generate_image": generate_image, "web_search": web_search})


class FakeSearch:
    def __init__(self):
        self.queries = []

    async def search(self, query):
        self.queries.append(query)
        return {"organic": [{"title": "Headline", "snippet": "Something happened"}]}


def make_service(provider, make_settings, store=None, search=None, **settings_overrides):
    orch = ConversationOrchestrator(provider, _executor(), max_tool_rounds=2, session_store=store)
    return ChatService(orch, session_store=store, search_client=search, app_settings=make_settings(**settings_overrides))


@pytest.mark.asyncio
async def test_chat_routes_model_and_returns_message(make_settings):
    provider = FakeProvider(ProviderResponse(content="Hello!"))
    service = make_service(provider, make_settings)

    reply = await service.chat({"model": "gpt-5-mini", "messages": [{"role": "user", "content": "hi"}]})

    assert reply == {"message": {"role": "assistant", "content": "Hello!"}, "model": "gpt-5-mini"}
    assert provider.requests[0].model == "gpt-5-mini"
    assert provider.requests[0].messages[0].role == "system"


@pytest.mark.asyncio
async def test_chat_returns_image_parts(make_settings):
    provider = FakeProvider(ProviderResponse(tool_calls=[ToolCallRequest(id="c1", name="generate_image")]))
    service = make_service(provider, make_settings)

    reply = await service.chat({"model": "gpt-4o", "messages": [{"role": "user", "content": "draw a fox"}]})

    assert reply["message"]["content"] == [
        {"type": "text", "text": "Here is the image"},
        {"type": "image_url", "image_url": {"url": "/api/images/img1"}},
    ]


@pytest.mark.asyncio
async def test_invalid_body_and_model(make_settings):
    service = make_service(FakeProvider(ProviderResponse(content="x")), make_settings)

    with pytest.raises(ValidationError) as exc:
        await service.chat({"model": "gpt-4o", "messages": []})
    assert exc.value.http_status == 400
    assert exc.value.message == "Invalid request format"

    with pytest.raises(ValidationError) as exc:
        await service.chat({"model": "unknown-model", "messages": [{"role": "user", "content": "hi"}]})
    assert exc.value.message == "Invalid model selection"


@pytest.mark.asyncio
async def test_provider_failure_becomes_apology_and_keeps_user_message(make_settings, tmp_path):
    store = JsonSessionStore(root=tmp_path)
    session = store.create_session()
    provider = FakeProvider(AuthError("OPENAI_API_KEY not set"))
    service = make_service(provider, make_settings, store=store)

    reply = await service.chat(
        {"model": "gpt-4o", "sessionId": session.id, "messages": [{"role": "user", "content": "hello?"}]}
    )

    assert reply["message"]["role"] == "assistant"
    assert "sorry" in reply["message"]["content"].lower()
    history = store.load_history(session.id)
    assert [m.role for m in history] == ["user", "assistant"]
    assert history[0].content == "hello?"


@pytest.mark.asyncio
async def test_round_limit_returns_retry_message(make_settings):
    provider = FakeProvider(ProviderResponse(tool_calls=[ToolCallRequest(id="c1", name="web_search")]))
    service = make_service(provider, make_settings)

    reply = await service.chat({"model": "gpt-4o", "messages": [{"role": "user", "content": "loop"}]})

    assert reply["message"]["content"] == ROUND_LIMIT_MESSAGE
    assert len(provider.requests) == 2


@pytest.mark.asyncio
async def test_successful_turn_persists_user_and_assistant(make_settings, tmp_path):
    store = JsonSessionStore(root=tmp_path)
    session = store.create_session()
    service = make_service(FakeProvider(ProviderResponse(content="Hi!")), make_settings, store=store)

    await service.chat({"model": "gpt-4o", "sessionId": session.id, "messages": [{"role": "user", "content": "hey"}]})

    history = store.load_history(session.id)
    assert [(m.role, m.content) for m in history] == [("user", "hey"), ("assistant", "Hi!")]
    assert history[1].model == "gpt-4o"


@pytest.mark.asyncio
async def test_unknown_session_does_not_fail_turn(make_settings, tmp_path):
    store = JsonSessionStore(root=tmp_path)
    service = make_service(FakeProvider(ProviderResponse(content="Hi!")), make_settings, store=store)

    reply = await service.chat(
        {"model": "gpt-4o", "sessionId": "s-unknown", "messages": [{"role": "user", "content": "hey"}]}
    )
    assert reply["message"]["content"] == "Hi!"


@pytest.mark.asyncio
async def test_search_augmentation_on_news(make_settings):
    search = FakeSearch()
    provider = FakeProvider(ProviderResponse(content="Here's the news"))
    service = make_service(provider, make_settings, search=search)

    await service.chat({"model": "gpt-4o", "messages": [{"role": "user", "content": "latest AI news"}]})

    assert search.queries == ["latest AI news"]
    system = provider.requests[0].messages[0]
    assert system.role == "system"
    assert "Headline: Something happened" in system.content


@pytest.mark.asyncio
async def test_search_augmentation_skipped(make_settings):
    search = FakeSearch()
    service = make_service(FakeProvider(ProviderResponse(content="ok")), make_settings, search=search)

    await service.chat({"model": "gpt-4o", "messages": [{"role": "user", "content": "tell me a joke"}]})
    await service.chat(
        {"model": "gpt-4o", "webSearchEnabled": False, "messages": [{"role": "user", "content": "latest news"}]}
    )

    assert search.queries == []


@pytest.mark.asyncio
async def test_chat_with_image(make_settings):
    provider = FakeProvider(ProviderResponse(content="A red fox."))
    service = make_service(provider, make_settings)

    body = {
        "model": "gpt-4o",
        "messages": [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "What is this?"},
                    {"type": "image", "image_data": "QUJD"},
                ],
            }
        ],
    }
    reply = await service.chat_with_image(body)
    assert reply["message"]["content"] == "A red fox."
    sent = provider.requests[0].messages[-1].content
    assert sent[1].url == "data:image/jpeg;base64,QUJD"

    with pytest.raises(ValidationError):
        await service.chat_with_image({"model": "gpt-4o", "messages": [{"role": "user", "content": "no image"}]})


def test_health_reports_missing_keys(make_settings):
    service = make_service(FakeProvider(ProviderResponse(content="x")), make_settings)
    status, payload = service.health()
    assert status == 500
    assert payload["message"] == "Missing environment variables: OPENAI_MINI_API_KEY"

    ok = make_service(FakeProvider(ProviderResponse(content="x")), make_settings, openai_mini_api_key="mini")
    assert ok.health() == (200, {"status": "ok"})


def test_module_helpers_use_default_stores(monkeypatch, tmp_path):
    from infonex_core.api import service as service_module
    from infonex_core.infrastructure.storage.artifact_store import FileArtifactStore

    monkeypatch.setattr(service_module, "_store", JsonSessionStore(root=tmp_path))
    monkeypatch.setattr(service_module, "_artifacts", FileArtifactStore(root=tmp_path))

    created = service_module.create_session("Trip")
    assert [s["id"] for s in service_module.list_sessions()] == [created["id"]]
    assert service_module.get_session_messages(created["id"]) == []

    artifact = service_module.get_default_artifacts().save("pdf", b"%PDF-1.4", "a.pdf", "application/pdf")
    assert service_module.load_artifact("pdf", artifact.id) == ("application/pdf", b"%PDF-1.4")

    service_module.delete_session(created["id"])
    assert service_module.list_sessions() == []
