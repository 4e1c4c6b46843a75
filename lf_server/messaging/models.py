"""Messaging data models for listing conversations.

Collections:
- conversations: two-party threads about one listing
- messages: individual messages, owned by their conversation
- hidden_conversations: closure markers (who closed which conversation)
- profiles / listings: read-only projections used for display
"""
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum

from lf_server.utils.time_utils import to_iso


class SessionState(str, Enum):
    IDLE = "idle"          # Nothing selected
    LOADING = "loading"    # History fetch and closure check in flight
    ACTIVE = "active"      # Subscribed, accepting input
    CLOSED = "closed"      # Input locked, terminal for this selection


def make_pair_key(listing_id: Optional[str], user_a: str, user_b: str) -> str:
    """Normalized key for one conversation per (listing, unordered pair)."""
    low, high = sorted([user_a, user_b])
    return f"{listing_id or '-'}|{low}|{high}"


class Conversation:
    """Conversation document structure."""

    def __init__(
        self,
        conversation_id: str,
        participant_1: str,
        participant_2: str,
        listing_id: Optional[str] = None,
        created_at: Optional[datetime] = None
    ):
        self.conversation_id = conversation_id
        self.listing_id = listing_id
        self.participant_1 = participant_1
        self.participant_2 = participant_2
        self.created_at = created_at

    @property
    def pair_key(self) -> str:
        return make_pair_key(self.listing_id, self.participant_1, self.participant_2)

    def has_participant(self, user_key: str) -> bool:
        return user_key in (self.participant_1, self.participant_2)

    def peer_of(self, user_key: str) -> str:
        """Return the other participant."""
        if user_key == self.participant_1:
            return self.participant_2
        if user_key == self.participant_2:
            return self.participant_1
        raise ValueError(f"{user_key} is not a participant of {self.conversation_id}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'conversationId': self.conversation_id,
            'listingId': self.listing_id,
            'participant1': self.participant_1,
            'participant2': self.participant_2,
            'createdAt': to_iso(self.created_at)
        }

    def to_db_doc(self) -> Dict[str, Any]:
        return {
            'id': self.conversation_id,
            'listing_id': self.listing_id,
            'participant_1': self.participant_1,
            'participant_2': self.participant_2,
            'pair_key': self.pair_key,
            'created_at': self.created_at
        }

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'Conversation':
        return cls(
            conversation_id=doc.get('id'),
            listing_id=doc.get('listing_id'),
            participant_1=doc.get('participant_1'),
            participant_2=doc.get('participant_2'),
            created_at=doc.get('created_at')
        )

    def __eq__(self, other):
        return isinstance(other, Conversation) and other.conversation_id == self.conversation_id

    def __hash__(self):
        return hash(self.conversation_id)

    def __repr__(self):
        return f"Conversation({self.conversation_id!r}, listing={self.listing_id!r})"


class Message:
    """Message document structure.

    System messages narrate lifecycle events (closure) in the transcript;
    they are attributed to the user who triggered them.
    """

    def __init__(
        self,
        message_id: Optional[str],
        conversation_id: str,
        sender_id: str,
        content: str,
        is_system: bool = False,
        created_at: Optional[datetime] = None
    ):
        self.message_id = message_id
        self.conversation_id = conversation_id
        self.sender_id = sender_id
        self.content = content
        self.is_system = is_system
        self.created_at = created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'messageId': self.message_id,
            'conversationId': self.conversation_id,
            'senderId': self.sender_id,
            'content': self.content,
            'isSystem': self.is_system,
            'createdAt': to_iso(self.created_at)
        }

    def to_db_doc(self) -> Dict[str, Any]:
        return {
            'id': self.message_id,
            'conversation_id': self.conversation_id,
            'sender_id': self.sender_id,
            'content': self.content,
            'is_system': self.is_system,
            'created_at': self.created_at
        }

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'Message':
        return cls(
            message_id=doc.get('id'),
            conversation_id=doc.get('conversation_id'),
            sender_id=doc.get('sender_id'),
            content=doc.get('content'),
            is_system=bool(doc.get('is_system', False)),
            created_at=doc.get('created_at')
        )


class ClosureMarker:
    """Signal that a user closed a conversation; removed by cascade with it."""

    def __init__(self, user_id: str, conversation_id: str):
        self.user_id = user_id
        self.conversation_id = conversation_id

    def to_db_doc(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'conversation_id': self.conversation_id
        }

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'ClosureMarker':
        return cls(user_id=doc.get('user_id'), conversation_id=doc.get('conversation_id'))


class ProfileRef:
    """Read-only projection of a user profile."""

    def __init__(
        self,
        user_id: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None
    ):
        self.user_id = user_id
        self.first_name = first_name
        self.last_name = last_name
        self.email = email

    def display_name(self, fallback: Optional[str] = None) -> Optional[str]:
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.email or fallback

    def to_dict(self) -> Dict[str, Any]:
        return {
            'userId': self.user_id,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'displayName': self.display_name()
        }

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'ProfileRef':
        return cls(
            user_id=doc.get('id'),
            first_name=doc.get('first_name'),
            last_name=doc.get('last_name'),
            email=doc.get('email')
        )


class ListingRef:
    """Read-only projection of a lost-and-found listing."""

    def __init__(self, listing_id: str, title: Optional[str] = None, poster_id: Optional[str] = None):
        self.listing_id = listing_id
        self.title = title
        self.poster_id = poster_id

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'ListingRef':
        return cls(
            listing_id=doc.get('item_id'),
            title=doc.get('title'),
            poster_id=doc.get('poster_id')
        )
