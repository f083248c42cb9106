"""Per-invocation session identity and completion state."""

from cliwire.session.completion import CompletionGuard
from cliwire.session.identity import Confirmation, SessionReconciler

__all__ = [
    "CompletionGuard",
    "Confirmation",
    "SessionReconciler",
]
