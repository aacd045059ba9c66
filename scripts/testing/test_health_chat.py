# scripts/testing/test_health_chat.py
from types import SimpleNamespace

import pytest
from google.api_core import exceptions as google_exceptions

from heather_main.lib.errors import AnalysisError, ConfigurationError
from heather_main.lib.health_chat import FALLBACK_REPLY, HealthChatService


class FakeChatModel:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def generate_content_async(self, contents, generation_config=None):
        self.calls.append((contents, generation_config))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(text=outcome)


def make_chat(outcomes):
    model = FakeChatModel(outcomes)
    return HealthChatService(model=model, base_delay=0), model


async def test_reply_uses_chat_generation_settings():
    chat, model = make_chat(["Stay hydrated and rest."])

    reply = await chat.send_message("  I have a mild headache  ")

    assert reply.reply == "Stay hydrated and rest."
    prompt, config = model.calls[0]
    assert prompt == "I have a mild headache"
    assert config.temperature == 0.7
    assert config.top_k == 40
    assert config.top_p == 0.95
    assert config.max_output_tokens == 1024


async def test_empty_reply_uses_fallback_text():
    chat, _ = make_chat([""])
    assert (await chat.send_message("Hello")).reply == FALLBACK_REPLY


async def test_transient_errors_are_retried_then_surface():
    chat, model = make_chat([google_exceptions.ServiceUnavailable("busy"), "Fine now"])
    assert (await chat.send_message("Hello")).reply == "Fine now"
    assert len(model.calls) == 2

    chat, model = make_chat([google_exceptions.PermissionDenied("bad key")])
    with pytest.raises(AnalysisError, match="error contacting Gemini"):
        await chat.send_message("Hello")
    assert len(model.calls) == 1


async def test_blank_message_and_missing_key():
    chat, model = make_chat(["unused"])
    with pytest.raises(ValueError):
        await chat.send_message("   ")
    assert model.calls == []

    with pytest.raises(ConfigurationError):
        await HealthChatService(api_key=None).send_message("Hello")
