"""
Unit tests for history_reader.
"""

import os
import time

from agentdeck.history_reader import (
    DEFAULT_CONTEXT_WINDOW,
    completed_assistant_message,
    context_tokens,
    encode_project_path,
    get_active_log_file,
    iter_log_entries,
    last_context_usage,
    list_log_files,
    model_context_window,
    parse_timestamp,
)
from fixtures import assistant_entry, user_entry, write_log


class TestEncodeProjectPath:
    def test_slashes_become_dashes(self):
        assert encode_project_path("/home/user/myproject") == "-home-user-myproject"


class TestModelContextWindow:
    def test_known_model(self):
        assert model_context_window("claude-opus-4-6") == 200_000

    def test_unknown_or_missing_model_gets_default(self):
        assert model_context_window("some-future-model") == DEFAULT_CONTEXT_WINDOW
        assert model_context_window(None) == DEFAULT_CONTEXT_WINDOW


class TestParseTimestamp:
    def test_zulu(self):
        assert parse_timestamp("1970-01-01T00:01:00.000Z") == 60.0

    def test_naive_is_utc(self):
        assert parse_timestamp("1970-01-01T00:00:10") == 10.0

    def test_garbage(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None
        assert parse_timestamp(12) is None


class TestCompletedAssistantMessage:
    """Which log entries count as completed turns."""

    def test_complete_turn(self):
        assert completed_assistant_message(assistant_entry(0)) is not None

    def test_streaming_turn_without_stop_reason(self):
        assert completed_assistant_message(assistant_entry(0, stop_reason=None)) is None

    def test_user_entry(self):
        assert completed_assistant_message(user_entry(0)) is None

    def test_missing_usage(self):
        entry = assistant_entry(0)
        del entry["message"]["usage"]
        assert completed_assistant_message(entry) is None

    def test_non_dict_message(self):
        assert completed_assistant_message({"message": "text"}) is None


class TestContextTokens:
    def test_sums_input_and_cache(self):
        usage = {
            "input_tokens": 100,
            "cache_read_input_tokens": 2000,
            "cache_creation_input_tokens": 30,
            "output_tokens": 999,
        }
        assert context_tokens(usage) == 2130

    def test_missing_fields_are_zero(self):
        assert context_tokens({"input_tokens": 5, "cache_read_input_tokens": None}) == 5


class TestLogFiles:
    """Locating and reading JSONL logs."""

    def test_iter_skips_malformed_lines(self, projects_dir):
        path = write_log(
            projects_dir, "/work/a", [user_entry(0)],
            extra_lines=["{not json", "[1, 2]", ""],
        )
        assert len(list(iter_log_entries(path))) == 1

    def test_iter_missing_file(self, tmp_path):
        assert list(iter_log_entries(tmp_path / "missing.jsonl")) == []

    def test_list_log_files(self, projects_dir):
        write_log(projects_dir, "/work/a", [user_entry(0)])
        write_log(projects_dir, "/work/b", [user_entry(0)], name="other.jsonl")
        (projects_dir / "-work-b" / "notes.txt").write_text("x")

        names = sorted(p.name for p in list_log_files(projects_dir))
        assert names == ["other.jsonl", "session.jsonl"]

    def test_list_log_files_without_projects_dir(self, tmp_path):
        assert list_log_files(tmp_path / "nope") == []

    def test_active_log_is_newest(self, projects_dir):
        old = write_log(projects_dir, "/work/a", [user_entry(0)], name="old.jsonl")
        new = write_log(projects_dir, "/work/a", [user_entry(0)], name="new.jsonl")
        past = time.time() - 3600
        os.utime(old, (past, past))

        assert get_active_log_file("/work/a", projects_dir) == new

    def test_active_log_missing_project(self, projects_dir):
        assert get_active_log_file("/work/none", projects_dir) is None


class TestLastContextUsage:
    def test_uses_last_completed_turn(self, projects_dir):
        path = write_log(projects_dir, "/work/a", [
            assistant_entry(0, input_tokens=100),
            assistant_entry(1, input_tokens=500, cache_read=1000, model="claude-sonnet-4-5-20250929"),
            assistant_entry(2, input_tokens=9999, stop_reason=None),
        ])

        usage = last_context_usage(path)

        assert usage == {"tokens": 1500, "model": "claude-sonnet-4-5-20250929"}

    def test_no_completed_turn(self, projects_dir):
        path = write_log(projects_dir, "/work/a", [user_entry(0)])
        assert last_context_usage(path) is None
