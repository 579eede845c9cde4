from .config import UpstreamConfig, load_upstream_config
from .dispatcher import Capability, RequestSpec, UpstreamDispatcher, resolve_capability
from .errors import (
    ConfigurationError,
    DataShapeError,
    InvalidCapabilityError,
    MalformedEventError,
    RelayError,
    UpstreamError,
)
from .relay import StreamRelay, relay_chat_stream, relay_response

__all__ = [
    "UpstreamConfig",
    "load_upstream_config",
    "Capability",
    "RequestSpec",
    "UpstreamDispatcher",
    "resolve_capability",
    "ConfigurationError",
    "DataShapeError",
    "InvalidCapabilityError",
    "MalformedEventError",
    "RelayError",
    "UpstreamError",
    "StreamRelay",
    "relay_chat_stream",
    "relay_response",
]
