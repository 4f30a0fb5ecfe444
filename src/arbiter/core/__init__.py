"""Core data model, configuration and context budgeting."""

from arbiter.core.models import (
    AdapterKind,
    BackendDescriptor,
    CompletionResult,
    DEFAULT_ROSTER,
    MODEL_REGISTRY,
    Message,
    MessageRole,
    ModelSpec,
)

__all__ = [
    "AdapterKind",
    "BackendDescriptor",
    "CompletionResult",
    "DEFAULT_ROSTER",
    "MODEL_REGISTRY",
    "Message",
    "MessageRole",
    "ModelSpec",
]
