"""Terminal multiplexer adapters."""

from .base import PaneCollaborator, PaneDetails, PaneError, is_subshell
from .tmux_adapter import TmuxAdapter


def create_pane_collaborator(name: str = "tmux") -> PaneCollaborator:
    normalized = name.strip().lower()
    if normalized == "tmux":
        return TmuxAdapter()
    msg = f"Unsupported multiplexer: {name}"
    raise ValueError(msg)


__all__ = [
    "PaneCollaborator",
    "PaneDetails",
    "PaneError",
    "TmuxAdapter",
    "create_pane_collaborator",
    "is_subshell",
]
