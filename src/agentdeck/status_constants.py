"""
Status constants and display mappings for Agentdeck.
"""

from typing import Tuple


# =============================================================================
# Session Status Values
# =============================================================================

STATUS_IDLE = "idle"  # At a prompt, nothing happening
STATUS_WORKING = "working"  # Agent is producing output
STATUS_WAITING = "waiting"  # Agent asked a question and needs an answer
STATUS_DRAFT = "draft"  # User has typed but not submitted
STATUS_ERROR = "error"  # Process could not be started

ALL_STATUSES = (
    STATUS_IDLE,
    STATUS_WORKING,
    STATUS_WAITING,
    STATUS_DRAFT,
    STATUS_ERROR,
)


def is_valid_status(status: str) -> bool:
    return status in ALL_STATUSES


# =============================================================================
# Display Mappings (for Rich output)
# =============================================================================

STATUS_SYMBOLS = {
    STATUS_IDLE: ("⚪", "dim"),
    STATUS_WORKING: ("🟢", "green"),
    STATUS_WAITING: ("🔴", "red"),
    STATUS_DRAFT: ("🟡", "yellow"),
    STATUS_ERROR: ("🟣", "magenta"),
}


def get_status_symbol(status: str) -> Tuple[str, str]:
    """Get (emoji, color) tuple for a session status."""
    return STATUS_SYMBOLS.get(status, ("⚪", "dim"))


def needs_attention(status: str) -> bool:
    """Check if status means the user should look at the session."""
    return status in (STATUS_WAITING, STATUS_ERROR)
