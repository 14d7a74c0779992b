from live_interview.protocol.client import SessionProtocolClient
from live_interview.protocol.transport import SessionTransport, WebSocketTransport

__all__ = ["SessionProtocolClient", "SessionTransport", "WebSocketTransport"]
