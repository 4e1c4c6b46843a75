"""Messaging module for listing conversations.

This module provides:
- Conversation store over MongoDB with a realtime change feed
- Conversation directory (visible conversations + display metadata)
- Conversation session (selected conversation state machine)
- Closure protocol (permanent, two-sided conversation closing)
- Deep-link resolution of an externally supplied conversation id
"""

from lf_server.messaging.models import (
    Conversation, Message, ClosureMarker, ProfileRef, ListingRef, SessionState
)
from lf_server.messaging.realtime import ChangeFeed, ChangeType, ChangeEvent, Subscription
from lf_server.messaging.store import (
    ConversationStore, get_conversation_store, reset_conversation_store
)
from lf_server.messaging.directory import ConversationDirectory
from lf_server.messaging.session import ConversationSession
from lf_server.messaging.closure import ClosureProtocol
from lf_server.messaging.deep_link import DeepLinkResolver
from lf_server.messaging.service import (
    MessagingService, get_or_create_conversation, messages_url
)

__all__ = [
    # Models
    'Conversation', 'Message', 'ClosureMarker', 'ProfileRef', 'ListingRef', 'SessionState',
    # Store
    'ChangeFeed', 'ChangeType', 'ChangeEvent', 'Subscription',
    'ConversationStore', 'get_conversation_store', 'reset_conversation_store',
    # Core
    'ConversationDirectory', 'ConversationSession', 'ClosureProtocol', 'DeepLinkResolver',
    # Service
    'MessagingService', 'get_or_create_conversation', 'messages_url',
]
