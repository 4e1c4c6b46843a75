"""WebSocket hub for the messages page.

Each authenticated socket gets its own MessagingService. Any change to that
service's directory or session is pushed back to the socket as a
``messages:state`` snapshot.

Client -> server events (each acknowledged with ``{success, ...}``):
- messages:open           {conversation?}   page load with optional deep link
- conversation:select     {conversation_id}
- conversation:deselect
- message:send            {content}
- conversation:close      {conversation_id?} defaults to the selection

Server -> client events:
- messages:state          directory + session snapshot
- error                   {code, message}
"""
import logging
import threading
from typing import Dict, Any, Optional

from flask import Flask, request
from flask_socketio import SocketIO, emit

from lf_server.exception.StoreError import StoreError
from lf_server.exception.UnauthorizedError import UnauthorizedError
from lf_server.messaging.service import MessagingService
from lf_server.messaging.store import get_conversation_store
from lf_server.security.authentication import AuthSecurity
from lf_server.websocket.event_emitter import EventEmitter, set_socketio

logger = logging.getLogger(__name__)


class WebSocketHub:
    """Socket.IO front for per-connection messaging services."""

    def __init__(self, socketio: SocketIO = None):
        self.socketio = socketio
        self.store = None
        self.executor = None
        self.services: Dict[str, MessagingService] = {}
        self._lock = threading.Lock()
        self._initialized = False

    def init_app(self, app: Flask, socketio: SocketIO, store=None, executor=None):
        """Initialize the WebSocket hub."""
        logger.debug(f"WS_HUB: init app={app.name}, mode={getattr(socketio, 'async_mode', '?')}")

        self.socketio = socketio
        self.app = app
        self.store = store
        self.executor = executor

        set_socketio(socketio)
        self._register_handlers()

        self._initialized = True
        logger.debug("WS_HUB: initialized")

    def _register_handlers(self):
        """Register WebSocket event handlers."""

        @self.socketio.on_error_default
        def default_error_handler(e):
            logger.error(f"WS error: {e}")

        # =====================================================================
        # Connection Events
        # =====================================================================

        @self.socketio.on('connect')
        def handle_connect(auth=None):
            socket_id = request.sid
            logger.debug(f"WS connect: sid={socket_id}, ip={request.remote_addr}")

            # Get token from auth data, headers or query string
            token = None
            if auth and isinstance(auth, dict):
                token = auth.get('token')

            if not token:
                token = request.headers.get('Authorization', '').replace('Bearer ', '')

            if not token:
                token = request.args.get('token', '')

            payload = self._authenticate(token)
            if not payload:
                logger.warning(f"WS auth failed: sid={socket_id}")
                return False

            user_key = payload.get('user_key')
            service = MessagingService(self._store(), executor=self.executor)
            try:
                service.identify(user_key)
            except StoreError as e:
                logger.error(f"WS identify failed for {user_key}: {e}")
            # Pushes start once the socket is registered
            service.on_change = lambda svc: EventEmitter.emit_state(socket_id, svc.snapshot())
            with self._lock:
                self.services[socket_id] = service

            logger.info(f"WS connected: user={user_key}, sid={socket_id}")
            return True

        @self.socketio.on('disconnect')
        def handle_disconnect(*args):
            socket_id = request.sid
            with self._lock:
                service = self.services.pop(socket_id, None)
            if service:
                service.teardown()
                logger.debug(f"WS disconnected: user={service.user_id}, sid={socket_id}")

        # =====================================================================
        # Messaging Events
        # =====================================================================

        @self.socketio.on('messages:open')
        def handle_open(data=None):
            """Page load; ``conversation`` is the optional deep-link parameter."""
            data = data or {}
            return self._dispatch(lambda svc: svc.open(data.get('conversation')) or True)

        @self.socketio.on('conversation:select')
        def handle_select(data=None):
            conversation_id = (data or {}).get('conversation_id')
            if not conversation_id:
                emit(EventEmitter.ERROR, {'code': 'INVALID_DATA', 'message': 'conversation_id required'})
                return {'success': False, 'error': 'conversation_id required'}
            return self._dispatch(lambda svc: svc.select(conversation_id))

        @self.socketio.on('conversation:deselect')
        def handle_deselect(data=None):
            return self._dispatch(lambda svc: svc.deselect() or True)

        @self.socketio.on('message:send')
        def handle_send(data=None):
            content = data.get('content') if isinstance(data, dict) else None
            if not isinstance(content, str):
                emit(EventEmitter.ERROR, {'code': 'INVALID_DATA', 'message': 'content must be a string'})
                return {'success': False, 'error': 'content must be a string'}
            return self._dispatch(lambda svc: svc.send_message(content))

        @self.socketio.on('conversation:close')
        def handle_close(data=None):
            conversation_id = (data or {}).get('conversation_id')
            return self._dispatch(lambda svc: svc.close_conversation(conversation_id))

    def _dispatch(self, action) -> Dict[str, Any]:
        """Run ``action`` against the caller's service and build the ack."""
        service = self._get_service()
        if service is None:
            emit(EventEmitter.ERROR, {'code': 'UNAUTHORIZED'})
            return {'success': False, 'error': 'Not authenticated'}
        try:
            ok = bool(action(service))
        except UnauthorizedError as e:
            emit(EventEmitter.ERROR, {'code': 'UNAUTHORIZED', 'message': str(e)})
            return {'success': False, 'error': str(e)}
        except ValueError as e:
            emit(EventEmitter.ERROR, {'code': 'INVALID_DATA', 'message': str(e)})
            return {'success': False, 'error': str(e)}
        except StoreError as e:
            logger.error(f"WS store error: {e}")
            emit(EventEmitter.ERROR, {'code': 'SERVICE_UNAVAILABLE', 'message': 'Messaging store unavailable'})
            return {'success': False, 'error': 'Service unavailable'}
        return {'success': ok, 'state': service.snapshot()}

    def _store(self):
        return self.store if self.store is not None else get_conversation_store()

    def _authenticate(self, token: str) -> Optional[Dict]:
        """Authenticate WebSocket connection."""
        if not token:
            return None
        try:
            return AuthSecurity.decode_token(token)
        except UnauthorizedError as e:
            logger.debug(f"WS auth error: {e}")
            return None

    def _get_service(self, socket_id: str = None) -> Optional[MessagingService]:
        sid = socket_id or request.sid
        with self._lock:
            return self.services.get(sid)


# Singleton instance
_hub_instance: Optional[WebSocketHub] = None


def get_websocket_hub() -> WebSocketHub:
    """Get WebSocket hub singleton."""
    global _hub_instance
    if _hub_instance is None:
        _hub_instance = WebSocketHub()
    return _hub_instance


def init_websocket_hub(app: Flask, socketio: SocketIO, store=None, executor=None) -> WebSocketHub:
    """Initialize WebSocket hub."""
    hub = get_websocket_hub()
    hub.init_app(app, socketio, store=store, executor=executor)
    return hub


def reset_websocket_hub():
    """Drop the singleton so a fresh app can register its own handlers."""
    global _hub_instance
    _hub_instance = None
