"""difystream HTTP API client."""

from difystream.api.client import (
    DifyClient,
    HTTPStatusFault,
    NetworkFault,
    ProtocolFault,
    TransportError,
)

__all__ = [
    "DifyClient",
    "HTTPStatusFault",
    "NetworkFault",
    "ProtocolFault",
    "TransportError",
]
