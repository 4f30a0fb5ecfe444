"""Single-model streaming delivery."""

from arbiter.streaming.channel import (
    CompleteEvent,
    ErrorEvent,
    StreamingChannel,
    StreamStateError,
    TokenEvent,
    WindTunnel,
    ensure_terminated,
    to_ndjson,
    to_sse,
)

__all__ = [
    "StreamingChannel",
    "StreamStateError",
    "TokenEvent",
    "CompleteEvent",
    "ErrorEvent",
    "WindTunnel",
    "ensure_terminated",
    "to_ndjson",
    "to_sse",
]
