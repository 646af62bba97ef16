import pytest

from infonex_core.domain.models import ImageRef, Message, TextPart
from infonex_core.metrics import token_counter
from infonex_core.metrics.token_counter import (
    IMAGE_TOKENS,
    NullUsageRecorder,
    TokenUsage,
    UsageTracker,
    calculate_request_usage,
    count_message_tokens,
    count_tokens,
)
from infonex_core.tools.registry import default_tool_defs


@pytest.fixture(autouse=True)
def no_tiktoken_download(monkeypatch):
    # 测试环境不联网，统一走 4 字符 ≈ 1 token 的估算
    monkeypatch.setattr(token_counter, "_get_encoding", lambda: None)


def test_count_tokens_estimate():
    assert count_tokens("") == 0
    assert count_tokens("abcd") == 1
    assert count_tokens("abcde") == 2


def test_count_tokens_uses_encoding(monkeypatch):
    class FakeEncoding:
        def encode(self, text):
            return text.split()

    monkeypatch.setattr(token_counter, "_get_encoding", lambda: FakeEncoding())
    assert count_tokens("one two three") == 3


def test_image_parts_count_fixed_tokens():
    plain = count_message_tokens([Message(role="user", content=[TextPart("abcd")])])
    with_image = count_message_tokens([Message(role="user", content=[TextPart("abcd"), ImageRef("data:x")])])
    assert with_image - plain == IMAGE_TOKENS


def test_calculate_request_usage():
    usage = calculate_request_usage(
        [Message(role="user", content="hello world")],
        tools=default_tool_defs(),
        system_prompt="be nice",
    )
    assert usage.messages > 0 and usage.tools > 0 and usage.system_prompt == 2
    assert usage.total == usage.messages + usage.tools + usage.system_prompt


def test_usage_tracker_totals_are_per_instance():
    tracker = UsageTracker()
    other = UsageTracker()
    tracker.record(TokenUsage(messages=10, tools=5, system_prompt=5, total=20), "gpt-4o", "s-1")
    tracker.record(TokenUsage(messages=30, tools=5, system_prompt=5, total=40), "gpt-5")

    snap = tracker.snapshot()
    assert snap["total_requests"] == 2
    assert snap["total_tokens"] == 60
    assert snap["average_tokens_per_request"] == 30
    assert snap["by_model"] == {"gpt-4o": 20, "gpt-5": 40}
    assert other.snapshot()["total_requests"] == 0

    tracker.reset()
    assert tracker.snapshot()["total_tokens"] == 0


def test_null_recorder_accepts_usage():
    assert NullUsageRecorder().record(TokenUsage(0, 0, 0, 0), "gpt-4o") is None
