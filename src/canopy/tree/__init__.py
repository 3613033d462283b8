"""Tree model: navigation and history queries over conversation trees."""

from canopy.tree.context import build_fork_context, dedupe_by_filename, select_history
from canopy.tree.query import (
    children_index,
    extract_linear_history,
    find_deepest_leaf,
    history_to,
    latest_message,
)

__all__ = [
    "build_fork_context",
    "children_index",
    "dedupe_by_filename",
    "extract_linear_history",
    "find_deepest_leaf",
    "history_to",
    "latest_message",
    "select_history",
]
