"""Completion event publication."""

from timekeeper.events.emitter import CompletionEmitter, Listener, TaskCompleted

__all__ = [
    "CompletionEmitter",
    "Listener",
    "TaskCompleted",
]
