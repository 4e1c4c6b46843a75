"""WebSocket module for real-time messaging.

This module provides:
- WebSocket Hub (one messaging service per connected socket)
- Event Emitter for pushing state snapshots
"""

from lf_server.websocket.event_emitter import EventEmitter
from lf_server.websocket.hub import WebSocketHub, init_websocket_hub

__all__ = ['EventEmitter', 'WebSocketHub', 'init_websocket_hub']
