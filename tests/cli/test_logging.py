from pathlib import Path
from typing import Any

import pytest

from voice_chat.cli import logging_utils
from voice_chat.conversation.state import ConversationState


@pytest.fixture(autouse=True)
def reset_verbose_log_capture():
    """Ensure each test starts with logging disabled and no open files."""

    logging_utils.configure_verbose_log_capture(None)
    logging_utils.set_verbose_logging(False)
    yield
    logging_utils.configure_verbose_log_capture(None)
    logging_utils.set_verbose_logging(False)


def _capture_verbose_calls(monkeypatch) -> list[tuple[str, str]]:
    calls: list[tuple[str, str]] = []
    monkeypatch.setattr(logging_utils.LOGGER, "_auto_configure_pending", False, raising=False)
    monkeypatch.setattr(logging_utils.LOGGER, "_auto_configured", True, raising=False)
    monkeypatch.setattr(
        logging_utils.LOGGER,
        "verbose",
        lambda source, message, **_: calls.append((source, message)),
        raising=False,
    )
    return calls


def test_verbose_entries_reach_disk_even_when_console_is_quiet(tmp_path):
    log_file = tmp_path / "logs" / "session.log"
    logging_utils.configure_verbose_log_capture(log_file)

    logging_utils.LOGGER.verbose(logging_utils.CAPTURE_LOG_LABEL, "session", "opened", end="!")
    logging_utils.configure_verbose_log_capture(None)

    data = log_file.read_text(encoding="utf-8")
    assert "[CAPTURE] session opened" in data
    assert data.endswith("!")
    assert "\x1b" not in data


def test_state_transitions_are_captured_to_disk(tmp_path):
    log_file = tmp_path / "session.log"
    logging_utils.configure_verbose_log_capture(log_file)

    logging_utils.log_state_transition(
        ConversationState.IDLE, ConversationState.CAPTURING, "voice mode enabled"
    )
    logging_utils.configure_verbose_log_capture(None)

    contents = log_file.read_text(encoding="utf-8")
    assert "IDLE -> CAPTURING" in contents
    assert "voice mode enabled" in contents


def test_per_session_capture_uses_timestamped_filename(tmp_path):
    log_dir = tmp_path / "logs"
    logging_utils.configure_verbose_log_capture(log_dir, per_session=True)
    path = logging_utils.current_verbose_log_path()
    logging_utils.configure_verbose_log_capture(None)

    assert path is not None
    assert path.parent == log_dir
    assert "T" in path.stem
    assert path.stem[:4].isdigit()


def test_log_line_includes_timestamp_and_label(capsys):
    logging_utils.LOGGER.log("TRACE", "plain output")

    out = capsys.readouterr().out.strip()
    assert out.startswith("[")
    assert "] [TRACE] plain output" in out


def test_verbose_lines_only_print_when_enabled(capsys):
    logging_utils.LOGGER.verbose("TRACE", "hidden")
    assert capsys.readouterr().out == ""

    logging_utils.set_verbose_logging(True)
    logging_utils.LOGGER.verbose("TRACE", "shown")
    assert "] [TRACE] shown" in capsys.readouterr().out


def test_errors_go_to_stderr_with_traceback(capsys):
    try:
        raise RuntimeError("stream died")
    except RuntimeError:
        logging_utils.LOGGER.log(
            logging_utils.ERROR_LOG_LABEL, "Capture failed", exc_info=True, error=True
        )

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "Traceback" in captured.err
    assert "RuntimeError: stream died" in captured.err


def test_exc_info_accepts_exception_instances(capsys):
    try:
        raise ValueError("bad payload")
    except ValueError as exc:
        logging_utils.LOGGER.log(logging_utils.ERROR_LOG_LABEL, "Decode", exc_info=exc, error=True)

    assert "ValueError: bad payload" in capsys.readouterr().err


def test_unknown_log_option_is_rejected():
    bad_kwargs: dict[str, Any] = {"unsupported": True}
    with pytest.raises(TypeError):
        logging_utils.LOGGER.log("TRACE", "noop", **bad_kwargs)


def test_source_is_required():
    with pytest.raises(ValueError):
        logging_utils.LOGGER.log("", "noop")


def test_known_labels_are_colored(capsys):
    logging_utils.LOGGER.log(logging_utils.TURN_LOG_LABEL, "colorful")

    out = capsys.readouterr().out
    assert f"{logging_utils.COLOR_ORANGE}[TURN]{logging_utils.RESET}" in out


def test_strip_ansi_sequences_removes_codes():
    assert logging_utils.strip_ansi_sequences("\033[31mhello\033[0m world") == "hello world"


def test_format_exc_details_rejects_unexpected_type():
    with pytest.raises(TypeError):
        logging_utils._format_exc_details(object())


def test_log_state_transition_skips_self_transitions(monkeypatch):
    calls = _capture_verbose_calls(monkeypatch)

    logging_utils.log_state_transition(
        ConversationState.CAPTURING, ConversationState.CAPTURING, "re-arm"
    )

    assert calls == []


def test_log_state_transition_reports_initial_state(monkeypatch):
    calls = _capture_verbose_calls(monkeypatch)

    logging_utils.log_state_transition(None, ConversationState.IDLE, "boot")

    assert calls == [(logging_utils.STATE_LOG_LABEL, "Entered IDLE (boot)")]


def test_log_state_transition_reports_both_states(monkeypatch):
    calls = _capture_verbose_calls(monkeypatch)

    logging_utils.log_state_transition(
        ConversationState.SPEAKING, ConversationState.STOPPING, "voice mode disabled"
    )

    assert calls and "SPEAKING -> STOPPING" in calls[-1][1]


def test_auto_configuration_opens_a_session_log(tmp_path, monkeypatch):
    monkeypatch.setattr(logging_utils.LOGGER, "_auto_configure_pending", True, raising=False)
    monkeypatch.setattr(logging_utils.LOGGER, "_auto_configured", False, raising=False)
    monkeypatch.setattr(logging_utils, "VERBOSE_LOG_DIRECTORY", tmp_path)

    path = logging_utils.current_verbose_log_path()

    assert path is not None
    assert path.parent == tmp_path


def test_auto_configuration_skips_without_directory(monkeypatch):
    monkeypatch.setattr(logging_utils.LOGGER, "_auto_configure_pending", True, raising=False)
    monkeypatch.setattr(logging_utils.LOGGER, "_auto_configured", False, raising=False)
    monkeypatch.setattr(logging_utils, "VERBOSE_LOG_DIRECTORY", None)

    assert logging_utils.current_verbose_log_path() is None


def test_write_errors_are_reported_once(monkeypatch, capsys):
    class BrokenLog:
        def write(self, _value):
            raise OSError("disk full")

        def flush(self):
            pass

    monkeypatch.setattr(logging_utils.LOGGER, "_log_file", BrokenLog(), raising=False)
    monkeypatch.setattr(logging_utils.LOGGER, "_log_error_reported", False, raising=False)

    logging_utils.LOGGER._write_verbose_log_entry("[00:00.000] [TEST] msg", "\n")
    logging_utils.LOGGER._write_verbose_log_entry("[00:00.000] [TEST] msg", "\n")

    assert capsys.readouterr().err.count("Unable to write to verbose log file") == 1
    monkeypatch.setattr(logging_utils.LOGGER, "_log_file", None, raising=False)


def test_unwritable_destination_is_reported(monkeypatch, tmp_path: Path, capsys):
    target = tmp_path / "logs" / "session.log"
    original_open = logging_utils.Path.open

    def fake_open(self, *args, **kwargs):
        if self == target:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(logging_utils.Path, "open", fake_open, raising=False)

    logging_utils.configure_verbose_log_capture(target)

    assert "Unable to open verbose log file" in capsys.readouterr().err
    assert logging_utils.current_verbose_log_path() is None


def test_session_log_path_retries_on_collisions(monkeypatch, tmp_path: Path):
    original_open = logging_utils.Path.open
    attempts = {"count": 0}

    def flaky_open(self, mode="r", *args, **kwargs):
        if mode == "x" and self.parent == tmp_path:
            attempts["count"] += 1
            if attempts["count"] < 3:
                raise FileExistsError
        return original_open(self, mode, *args, **kwargs)

    monkeypatch.setattr(logging_utils.Path, "open", flaky_open, raising=False)

    path = logging_utils.LOGGER._build_session_log_path(tmp_path)

    assert attempts["count"] == 3
    assert path.exists()
    assert path.stem.endswith("_2")
