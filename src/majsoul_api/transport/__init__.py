from .adapters import MockTransport, Transport, WebSocketTransport, create_transport

__all__ = ["MockTransport", "Transport", "WebSocketTransport", "create_transport"]
