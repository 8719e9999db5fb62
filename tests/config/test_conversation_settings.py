import io

import pytest

from voice_chat.config import ConversationPolicy
from voice_chat.config import assistant_settings as assistant_settings_module
from voice_chat.config import conversation as conversation_module


def test_policy_defaults_follow_module_settings() -> None:
    policy = ConversationPolicy()

    assert policy.continuous_mode is conversation_module.CONTINUOUS_MODE
    assert policy.retry_on_failure is conversation_module.RETRY_ON_FAILURE
    assert policy.skip_silent_recordings is conversation_module.SKIP_SILENT_RECORDINGS
    assert policy.speak_text_replies is conversation_module.SPEAK_TEXT_REPLIES


def test_policy_is_immutable() -> None:
    policy = ConversationPolicy(continuous_mode=False)

    with pytest.raises(AttributeError):
        policy.continuous_mode = True  # type: ignore[misc]


def test_capture_bound_is_positive() -> None:
    assert conversation_module.MAX_CAPTURE_SECONDS > 0
    assert conversation_module.END_OF_SPEECH_SILENCE_SECONDS > 0


@pytest.mark.parametrize("value,expected", [("http", "http"), (" OpenAI ", "openai"), (None, "http")])
def test_normalize_backend_accepts_known_choices(value, expected) -> None:
    assert assistant_settings_module._normalize_backend(value) == expected


def test_normalize_backend_warns_on_unknown_value(capsys: pytest.CaptureFixture[str]) -> None:
    assert assistant_settings_module._normalize_backend("grpc") == "http"
    assert "Unknown ASSISTANT_BACKEND='grpc'" in capsys.readouterr().err


def test_resolve_api_key_prefers_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")

    assert assistant_settings_module.resolve_openai_api_key() == "sk-env"


def test_resolve_api_key_fails_without_tty(monkeypatch: pytest.MonkeyPatch) -> None:
    class _FakeStdin(io.StringIO):
        def isatty(self) -> bool:
            return False

    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setattr(assistant_settings_module.sys, "stdin", _FakeStdin())

    with pytest.raises(ValueError, match="OPENAI_API_KEY not configured"):
        assistant_settings_module.resolve_openai_api_key()


def test_prompt_persists_entered_key(monkeypatch: pytest.MonkeyPatch) -> None:
    class _TtyStdin(io.StringIO):
        def isatty(self) -> bool:
            return True

    stored: list[str] = []
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setattr(assistant_settings_module.sys, "stdin", _TtyStdin())
    monkeypatch.setattr(assistant_settings_module, "getpass", lambda prompt: "  sk-typed  ")
    monkeypatch.setattr(assistant_settings_module, "_persist_api_key", stored.append)

    assert assistant_settings_module.resolve_openai_api_key() == "sk-typed"
    assert stored == ["sk-typed"]
