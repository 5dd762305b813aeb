"""DevTools protocol session, transport and target management."""

from .session import ProtocolSession, DEFAULT_PROTOCOL_TIMEOUT_MS
from .target_manager import TargetManager, SUPPORTED_TARGET_TYPES, PROTOCOL_EVENT
from .transport import CDPTransport, PlaywrightTransport

__all__ = [
    'ProtocolSession',
    'DEFAULT_PROTOCOL_TIMEOUT_MS',
    'TargetManager',
    'SUPPORTED_TARGET_TYPES',
    'PROTOCOL_EVENT',
    'CDPTransport',
    'PlaywrightTransport',
]
