"""
Real-time payment notifications over WebSocket.
"""

from ws_gateway.connection_manager import ConnectionManager

__all__ = ["ConnectionManager"]
