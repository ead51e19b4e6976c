"""
WebSocket constants shared by the payment update channel.
"""

from enum import IntEnum
from typing import Final


class WSCloseCode(IntEnum):
    """
    WebSocket close codes used by the payment channel.

    Standard codes from RFC 6455.
    """

    NORMAL = 1000  # Normal closure
    GOING_AWAY = 1001  # Server shutting down
    POLICY_VIOLATION = 1008  # Generic policy violation
    MESSAGE_TOO_BIG = 1009  # Message too large to process
    SERVER_ERROR = 1011  # Unexpected server error
    SERVER_OVERLOADED = 1013  # Too many connections, try again later


# Heartbeat messages
MSG_PING_PLAIN: Final[str] = "ping"
MSG_PONG_PLAIN: Final[str] = "pong"
MSG_PING_JSON: Final[str] = '{"type":"ping"}'
MSG_PONG_JSON: Final[str] = '{"type":"pong"}'

# Server push message type
MSG_TYPE_PAYMENT_UPDATE: Final[str] = "payment_update"
