"""Event emitter for pushing messaging state to connected sockets.

Sessions and directories change on worker threads (history loads) and on
the writer's thread (change-feed callbacks), outside any Socket.IO request
context, so emits go through the module-level Socket.IO instance.

Usage:
    from lf_server.websocket.event_emitter import EventEmitter

    EventEmitter.emit_to_sid(sid, EventEmitter.MESSAGES_STATE, snapshot)
"""
import logging
from typing import Any, Dict

from lf_server.utils.helpers import normalize_doc
from lf_server.utils.time_utils import now_utc, to_iso

logger = logging.getLogger(__name__)

# Will be set when WebSocket hub initializes
_socketio = None


def set_socketio(socketio_instance):
    """Set the Socket.IO instance for the event emitter."""
    global _socketio
    _socketio = socketio_instance
    logger.debug("EventEmitter initialized with Socket.IO instance")


class EventEmitter:
    """Emits server -> client messaging events."""

    MESSAGES_STATE = 'messages:state'
    ERROR = 'error'

    @staticmethod
    def emit_to_sid(sid: str, event: str, data: Dict[str, Any]) -> bool:
        """Emit event to one socket.

        Returns:
            True if the event was handed to Socket.IO
        """
        if not _socketio:
            logger.error(f"EVENT_EMITTER: Socket.IO NOT initialized, cannot emit {event} to {sid}")
            return False

        payload = {
            **normalize_doc(data),
            '_event': event,
            '_timestamp': to_iso(now_utc())
        }
        try:
            _socketio.emit(event, payload, to=sid)
        except Exception as e:
            logger.error(f"EVENT_EMITTER: emit {event} to {sid} failed: {e}")
            return False
        logger.debug(f"EVENT_EMITTER: {event} -> {sid}")
        return True

    @staticmethod
    def emit_state(sid: str, snapshot: Dict[str, Any]) -> bool:
        return EventEmitter.emit_to_sid(sid, EventEmitter.MESSAGES_STATE, snapshot)

