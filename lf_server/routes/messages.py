"""Messaging REST API routes.

These endpoints cover initial loads and one-shot actions. Live updates
(new messages, peer closure) are delivered over Socket.IO by the hub.

REST API Endpoints:
- GET    /api/messages/conversations                 - Visible conversations with display names
- POST   /api/messages/conversations                 - Get-or-create the conversation about a listing
- GET    /api/messages/conversations/{id}/messages   - Message history plus closure flag
- POST   /api/messages/conversations/{id}/messages   - Send a message
- DELETE /api/messages/conversations/{id}            - Close a conversation (permanent)
"""
import logging

from flask import Blueprint

from lf_server.messaging.closure import ClosureProtocol
from lf_server.messaging.directory import ConversationDirectory
from lf_server.messaging.models import Conversation, Message
from lf_server.messaging.read_models import ProfileReadModel
from lf_server.messaging.service import get_or_create_conversation
from lf_server.messaging.store import (
    get_conversation_store, CONVERSATIONS, MESSAGES, HIDDEN_CONVERSATIONS
)
from lf_server.utils.decorators import handle_errors, require_auth, require_json
from lf_server.utils.helpers import respond_success, respond_error, normalize_doc
from config import config

logger = logging.getLogger(__name__)

# Blueprint
messages_bp = Blueprint('messages', __name__, url_prefix='/api/messages')


# =============================================================================
# Helper Functions
# =============================================================================

def _load_conversation(store, conversation_id: str, user_key: str):
    """Return (conversation, error_response). Exactly one of them is None."""
    row = store.select_one(CONVERSATIONS, {'id': conversation_id})
    if row is None:
        return None, respond_error('Conversation not found', status=404)
    conversation = Conversation.from_doc(row)
    if not conversation.has_participant(user_key):
        return None, respond_error('Not authorized to view this conversation', status=403)
    return conversation, None


def _is_closed(store, conversation_id: str) -> bool:
    return bool(store.select(HIDDEN_CONVERSATIONS, {'conversation_id': conversation_id}))


# =============================================================================
# Conversation Endpoints
# =============================================================================

@messages_bp.route('/conversations', methods=['GET'])
@handle_errors
@require_auth
def list_conversations(user_key):
    """List the conversations visible to the current user.

    Response:
        {
            "conversations": [{conversationId, listingId, peerId, peerName, listingTitle, ...}],
            "count": 2
        }
    """
    logger.debug(f"MESSAGES_ROUTE: GET /conversations | user_key={user_key}")

    directory = ConversationDirectory(get_conversation_store())
    directory.refresh(user_key)
    if directory.last_error:
        return respond_error('Failed to load conversations', status=503)

    rows = directory.to_list(user_key)
    return respond_success({'conversations': normalize_doc(rows), 'count': len(rows)})


@messages_bp.route('/conversations', methods=['POST'])
@handle_errors
@require_auth
@require_json('listing_id')
def create_conversation(user_key, body):
    """Get or create the conversation with a listing's poster.

    Request Body:
        {"listing_id": "item-1"}

    Response:
        {"conversation_id": "...", "created": true, "redirect": "/messages?conversation=..."}
    """
    listing_id = str(body['listing_id']).strip()
    logger.info(f"MESSAGES_ROUTE: POST /conversations | user_key={user_key}, listing_id={listing_id}")

    result = get_or_create_conversation(get_conversation_store(), listing_id, user_key)
    return respond_success(result, status=201 if result['created'] else 200)


@messages_bp.route('/conversations/<conversation_id>', methods=['DELETE'])
@handle_errors
@require_auth
def close_conversation(conversation_id, user_key):
    """Close a conversation for both participants.

    Closing a conversation that no longer exists is not an error; the
    response reports ``closed: false``.
    """
    logger.info(f"MESSAGES_ROUTE: DELETE /conversations/{conversation_id} | user_key={user_key}")

    store = get_conversation_store()
    row = store.select_one(CONVERSATIONS, {'id': conversation_id})
    if row is None:
        return respond_success({'conversation_id': conversation_id, 'closed': False})

    conversation = Conversation.from_doc(row)
    if not conversation.has_participant(user_key):
        return respond_error('Not authorized to close this conversation', status=403)

    profile = ProfileReadModel(store).get(user_key)
    closed = ClosureProtocol(store).close_conversation(conversation, user_key, profile)
    return respond_success({'conversation_id': conversation_id, 'closed': closed})


# =============================================================================
# Message Endpoints
# =============================================================================

@messages_bp.route('/conversations/<conversation_id>/messages', methods=['GET'])
@handle_errors
@require_auth
def get_messages(conversation_id, user_key):
    """Message history, oldest first.

    Response:
        {"messages": [...], "count": 3, "closed": false}
    """
    store = get_conversation_store()
    conversation, error = _load_conversation(store, conversation_id, user_key)
    if error:
        return error

    rows = store.select_history(conversation_id, limit=config.HISTORY_LIMIT)
    messages = [Message.from_doc(r).to_dict() for r in rows]
    return respond_success({
        'conversation': conversation.to_dict(),
        'messages': messages,
        'count': len(messages),
        'closed': _is_closed(store, conversation_id)
    })


@messages_bp.route('/conversations/<conversation_id>/messages', methods=['POST'])
@handle_errors
@require_auth
@require_json('content')
def send_message(conversation_id, user_key, body):
    """Send a message.

    Request Body:
        {"content": "Is this still available?"}
    """
    content = body['content']
    if not isinstance(content, str):
        return respond_error('content must be a string', status=400)

    store = get_conversation_store()
    conversation, error = _load_conversation(store, conversation_id, user_key)
    if error:
        return error
    if _is_closed(store, conversation_id):
        return respond_error('Conversation is closed', status=409)

    message = Message(
        message_id=None,
        conversation_id=conversation.conversation_id,
        sender_id=user_key,
        content=content
    )
    stored = store.insert(MESSAGES, message.to_db_doc())
    logger.debug(f"MESSAGES_ROUTE: {user_key} sent {stored['id']} to {conversation_id}")
    return respond_success({'message': Message.from_doc(stored).to_dict()}, status=201)
