"""
Pytest configuration for agentdeck tests.

Every test runs with AGENTDECK_DIR, AGENTDECK_STATE_DIR and
AGENTDECK_CLAUDE_DIR pointed at temp directories so nothing touches the
user's real config, session snapshot or Claude logs.
"""

import sys

import pytest


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "requires_pty: mark test as spawning a real pseudo-terminal"
    )


def pytest_collection_modifyitems(config, items):
    if sys.platform != "win32":
        return
    skip = pytest.mark.skip(reason="pseudo-terminals not available")
    for item in items:
        if "requires_pty" in item.keywords:
            item.add_marker(skip)


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path, monkeypatch):
    """Point all agentdeck paths at a per-test temp directory."""
    home = tmp_path / "agentdeck-home"
    monkeypatch.setenv("AGENTDECK_DIR", str(home / "config"))
    monkeypatch.setenv("AGENTDECK_STATE_DIR", str(home / "state"))
    monkeypatch.setenv("AGENTDECK_CLAUDE_DIR", str(home / "claude"))
    return home


@pytest.fixture
def projects_dir(isolated_dirs):
    path = isolated_dirs / "claude" / "projects"
    path.mkdir(parents=True)
    return path
