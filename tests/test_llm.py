"""Tests for the shared LLM client (app/services/llm.py)."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from app import config
from app.errors import Timeout
from app.services.llm import LLMClient, LLMUnavailable, parse_json_object, strip_json


class TestProviderDetection:
    def test_no_keys_means_unavailable(self):
        client = LLMClient()

        assert client.provider == "dummy"
        assert client.available() is False

    def test_anthropic_preferred_in_auto_mode(self, monkeypatch):
        monkeypatch.setattr(config, "ANTHROPIC_API_KEY", "sk-ant-test")
        monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")

        client = LLMClient()

        assert client.provider == "anthropic"
        assert client.available() is True

    def test_explicit_provider(self, monkeypatch):
        monkeypatch.setattr(config, "LLM_PROVIDER", "openai")
        monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")

        assert LLMClient().provider == "openai"

    def test_model_override_per_tier(self, monkeypatch):
        monkeypatch.setattr(config, "LLM_MODEL_FAST", "my-small-model")

        assert LLMClient().model_for_tier("fast") == "my-small-model"
        assert LLMClient().model_for_tier("bogus") == "gpt-4o"


class TestStripJson:
    def test_strips_json_fence(self):
        assert strip_json('```json\n{"key": "value"}\n```') == '{"key": "value"}'

    def test_strips_plain_fence(self):
        assert strip_json('```\n{"key": "value"}\n```') == '{"key": "value"}'

    def test_drops_surrounding_prose(self):
        assert strip_json('Here you go: {"key": "value"} hope it helps') == '{"key": "value"}'

    def test_parse_rejects_non_objects(self):
        with pytest.raises(ValueError):
            parse_json_object("[1, 2, 3]")

    def test_parse_rejects_prose(self):
        with pytest.raises(ValueError):
            parse_json_object("no json here")


async def test_complete_text_without_provider_raises():
    with pytest.raises(LLMUnavailable):
        await LLMClient().complete_text(system="s", user="u")


async def test_anthropic_path(monkeypatch):
    monkeypatch.setattr(config, "ANTHROPIC_API_KEY", "sk-ant-test")
    client = LLMClient()
    block = MagicMock()
    block.text = '{"patient_name": "Sunita"}'
    client._anthropic = MagicMock()
    client._anthropic.messages.create = AsyncMock(return_value=MagicMock(content=[block]))

    raw = await client.complete_text(system="extract", user="Sunita ka BP", temperature=0.2)

    assert raw == '{"patient_name": "Sunita"}'
    kwargs = client._anthropic.messages.create.call_args.kwargs
    assert kwargs["system"] == "extract"
    assert kwargs["temperature"] == 0.2
    assert kwargs["messages"] == [{"role": "user", "content": "Sunita ka BP"}]


async def test_openai_path(monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
    client = LLMClient()
    choice = MagicMock()
    choice.message.content = "{}"
    client._openai = MagicMock()
    client._openai.chat.completions.create = AsyncMock(return_value=MagicMock(choices=[choice]))

    assert await client.complete_text(system="s", user="u") == "{}"
    messages = client._openai.chat.completions.create.call_args.kwargs["messages"]
    assert messages[0] == {"role": "system", "content": "s"}


async def test_slow_provider_times_out(monkeypatch):
    monkeypatch.setattr(config, "ANTHROPIC_API_KEY", "sk-ant-test")
    monkeypatch.setattr(config, "LLM_TIMEOUT_SECONDS", 0.05)
    client = LLMClient()

    async def hang(**kwargs):
        await asyncio.sleep(5)

    client._anthropic = MagicMock()
    client._anthropic.messages.create = hang

    with pytest.raises(Timeout):
        await client.complete_text(system="s", user="u")
