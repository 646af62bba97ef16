from types import SimpleNamespace

import pytest


def stub_settings(**overrides):
    values = dict(
        openai_api_key="sk-test",
        openai_mini_api_key=None,
        openrouter_api_key="or-test",
        serper_api_key="serper-test",
        openai_base_url="https://api.openai.test/v1",
        openrouter_base_url="https://openrouter.test/api/v1",
        serper_url="https://serper.test/search",
        openrouter_referer="https://infonex.test",
        openrouter_title="Infonex Test",
        primary_model="gpt-4o",
        secondary_model="gpt-4o-mini",
        reasoning_model="deepseek/deepseek-r1:free",
        tool_helper_model="gpt-5-mini",
        image_model="dall-e-3",
        http_timeout=1.0,
        max_tool_rounds=3,
        storage_root=".storage",
        search_augmentation=True,
        track_token_usage=False,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def make_settings():
    return stub_settings
