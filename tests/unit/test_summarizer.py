"""
Unit tests for the first-prompt summarizer.

The CLI backend is exercised with subprocess.run patched out and the API
backend with urlopen patched out; nothing leaves the machine.
"""

import json
import subprocess
import urllib.error
from unittest.mock import MagicMock, patch

from agentdeck.settings import TIMING
from agentdeck.summarizer import (
    SUMMARY_THRESHOLD,
    Summarizer,
    clean_model_output,
    truncate,
)

LONG_PROMPT = "Refactor the payment module so that retries are idempotent " * 3

CLI_CONFIG = {"backend": "cli", "model": "haiku", "timeout": 5}
API_CONFIG = {
    "backend": "api",
    "timeout": 5,
    "api_url": "https://example.invalid/v1/chat/completions",
    "api_model": "gpt-4o-mini",
    "api_key": "sk-test",
}


def completed(stdout="", returncode=0):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr="")


def api_response(body, status=200):
    response = MagicMock()
    response.status = status
    response.read.return_value = json.dumps(body).encode("utf-8")
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    return response


class TestTruncate:
    def test_short_text_unchanged(self):
        assert truncate("fix the bug") == "fix the bug"

    def test_long_text_cut_with_ellipsis(self):
        result = truncate("x" * 150)
        assert len(result) == SUMMARY_THRESHOLD
        assert result.endswith("...")

    def test_custom_limit(self):
        assert truncate("abcdefghij", limit=6) == "abc..."


class TestCleanModelOutput:
    def test_strips_quotes_and_whitespace(self):
        assert clean_model_output('  "Fix login bug"\n') == "Fix login bug"

    def test_strips_level_prefix(self):
        assert clean_model_output("[INFO] Add retries") == "Add retries"

    def test_strips_escapes(self):
        assert clean_model_output("\x1b[1mAdd tests\x1b[0m") == "Add tests"


class TestShortPrompts:
    """Prompts at or under the threshold never reach a model."""

    def test_returned_as_is(self):
        with patch("agentdeck.summarizer.subprocess.run") as run:
            assert Summarizer(CLI_CONFIG).summarize("fix the bug") == "fix the bug"
            run.assert_not_called()

    def test_cleaned_first(self):
        assert Summarizer(CLI_CONFIG).summarize("  fix teh\x7f\x7fhe bug\r") == "fix the bug"


class TestCliBackend:
    """Summaries through the agent CLI."""

    def test_uses_model_output(self):
        with patch("agentdeck.summarizer.subprocess.run", return_value=completed("Make payment retries idempotent\n")) as run:
            summary = Summarizer(CLI_CONFIG).summarize(LONG_PROMPT)

        assert summary == "Make payment retries idempotent"
        cmd = run.call_args[0][0]
        assert cmd[:3] == ["claude", "--model", "haiku"]
        assert cmd[-2] == "-p"
        assert "payment module" in cmd[-1]
        assert run.call_args[1]["timeout"] == 5.0

    def test_custom_command(self):
        with patch("agentdeck.summarizer.subprocess.run", return_value=completed("ok")) as run:
            Summarizer(CLI_CONFIG, command="/opt/bin/claude").summarize(LONG_PROMPT)
        assert run.call_args[0][0][0] == "/opt/bin/claude"

    def test_timeout_falls_back_to_truncation(self):
        with patch("agentdeck.summarizer.subprocess.run",
                   side_effect=subprocess.TimeoutExpired(cmd="claude", timeout=5)):
            summary = Summarizer(CLI_CONFIG).summarize(LONG_PROMPT)

        assert summary == truncate(LONG_PROMPT.strip())
        assert len(summary) <= SUMMARY_THRESHOLD

    def test_missing_cli_falls_back(self):
        with patch("agentdeck.summarizer.subprocess.run", side_effect=FileNotFoundError("claude")):
            assert Summarizer(CLI_CONFIG).summarize(LONG_PROMPT).endswith("...")

    def test_nonzero_exit_falls_back(self):
        with patch("agentdeck.summarizer.subprocess.run", return_value=completed("boom", returncode=1)):
            assert Summarizer(CLI_CONFIG).summarize(LONG_PROMPT).endswith("...")

    def test_empty_output_falls_back(self):
        with patch("agentdeck.summarizer.subprocess.run", return_value=completed("  \n")):
            assert Summarizer(CLI_CONFIG).summarize(LONG_PROMPT).endswith("...")

    def test_long_model_output_is_truncated(self):
        with patch("agentdeck.summarizer.subprocess.run", return_value=completed("y" * 300)):
            assert len(Summarizer(CLI_CONFIG).summarize(LONG_PROMPT)) == SUMMARY_THRESHOLD


class TestApiBackend:
    """Summaries through an OpenAI-compatible endpoint."""

    def test_uses_response_content(self):
        body = {"choices": [{"message": {"content": "Idempotent payment retries"}}]}
        with patch("agentdeck.summarizer.urllib.request.urlopen", return_value=api_response(body)) as urlopen:
            summary = Summarizer(API_CONFIG).summarize(LONG_PROMPT)

        assert summary == "Idempotent payment retries"
        request = urlopen.call_args[0][0]
        assert request.full_url == API_CONFIG["api_url"]
        assert request.get_header("Authorization") == "Bearer sk-test"
        payload = json.loads(request.data)
        assert payload["model"] == "gpt-4o-mini"

    def test_no_api_key_falls_back(self):
        config = dict(API_CONFIG, api_key=None)
        with patch("agentdeck.summarizer.urllib.request.urlopen") as urlopen:
            assert Summarizer(config).summarize(LONG_PROMPT).endswith("...")
            urlopen.assert_not_called()

    def test_network_error_falls_back(self):
        with patch("agentdeck.summarizer.urllib.request.urlopen",
                   side_effect=urllib.error.URLError("refused")):
            assert Summarizer(API_CONFIG).summarize(LONG_PROMPT).endswith("...")

    def test_unexpected_body_falls_back(self):
        with patch("agentdeck.summarizer.urllib.request.urlopen", return_value=api_response({"error": "x"})):
            assert Summarizer(API_CONFIG).summarize(LONG_PROMPT).endswith("...")


class TestConfigDefaults:
    def test_reads_config_file_when_no_config_given(self, monkeypatch):
        monkeypatch.setattr(
            "agentdeck.summarizer.get_summarizer_config",
            lambda: {"backend": "api", "model": "haiku", "timeout": 3.0,
                     "api_url": "u", "api_model": "m", "api_key": None},
        )
        summarizer = Summarizer()
        assert summarizer.backend == "api"
        assert summarizer.timeout == 3.0

    def test_timeout_defaults_to_timing_setting(self):
        assert Summarizer({"backend": "cli"}).timeout == TIMING.summarizer_timeout
