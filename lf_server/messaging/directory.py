"""Conversation directory: the conversations a user can see.

A conversation is visible to a user when they participate in it and have not
closed it. Display metadata (peer profile, listing title) is resolved with at
most two batched lookups per refresh, one for distinct peers and one for
distinct listings, and cached for later splices.
"""
import logging
import threading
from typing import Callable, Dict, List, Optional

from lf_server.exception.StoreError import StoreError
from lf_server.messaging.models import Conversation, ProfileRef
from lf_server.messaging.read_models import ProfileReadModel, ListingReadModel
from lf_server.messaging.store import ConversationStore, CONVERSATIONS, HIDDEN_CONVERSATIONS

logger = logging.getLogger(__name__)


class ConversationDirectory:
    """Visible conversation set for one user, plus display caches."""

    def __init__(
        self,
        store: ConversationStore,
        profiles: Optional[ProfileReadModel] = None,
        listings: Optional[ListingReadModel] = None
    ):
        self.store = store
        self.profiles = profiles or ProfileReadModel(store)
        self.listings = listings or ListingReadModel(store)
        self.user_id: Optional[str] = None
        self.last_error: Optional[str] = None
        self._conversations: List[Conversation] = []
        self._profile_cache: Dict[str, ProfileRef] = {}
        self._listing_titles: Dict[str, Optional[str]] = {}
        self._listeners: List[Callable[['ConversationDirectory'], None]] = []
        self._lock = threading.RLock()

    # =========================================================================
    # Loading
    # =========================================================================

    def list_conversations(self, user_id: str) -> List[Conversation]:
        """Fetch the user's conversations, minus those they closed.

        A failed fetch returns an empty list and records ``last_error``; the
        next refresh retries.
        """
        try:
            hidden = {
                row.get('conversation_id')
                for row in self.store.select(HIDDEN_CONVERSATIONS, {'user_id': user_id})
            }
            rows = self.store.select(
                CONVERSATIONS,
                {'$or': [{'participant_1': user_id}, {'participant_2': user_id}]},
                sort=[('created_at', -1)]
            )
        except StoreError as e:
            logger.warning(f"DIRECTORY: listing conversations for {user_id} failed: {e}")
            self.last_error = str(e)
            return []

        self.last_error = None
        conversations = [Conversation.from_doc(r) for r in rows if r.get('id') not in hidden]
        self.enrich(conversations, user_id)
        return conversations

    def enrich(self, conversations: List[Conversation], user_id: str):
        """Populate profile and listing-title caches for the given conversations.

        Only ids not already cached are fetched: one batch for peers, one
        for listings.
        """
        with self._lock:
            peer_ids = {c.peer_of(user_id) for c in conversations} - set(self._profile_cache)
            listing_ids = {c.listing_id for c in conversations if c.listing_id} - set(self._listing_titles)

        try:
            profiles = self.profiles.select_where_id_in(peer_ids) if peer_ids else {}
            listings = self.listings.select_where_id_in(listing_ids) if listing_ids else {}
        except StoreError as e:
            # Names fall back to generic labels; the list itself is still usable
            logger.warning(f"DIRECTORY: display lookup failed: {e}")
            return

        with self._lock:
            self._profile_cache.update(profiles)
            for listing_id in listing_ids:
                listing = listings.get(listing_id)
                self._listing_titles[listing_id] = listing.title if listing else None

    def refresh(self, user_id: str) -> List[Conversation]:
        conversations = self.list_conversations(user_id)
        with self._lock:
            self.user_id = user_id
            self._conversations = conversations
        logger.debug(f"DIRECTORY: {len(conversations)} conversation(s) for {user_id}")
        self._notify()
        return list(conversations)

    # =========================================================================
    # Visible set
    # =========================================================================

    @property
    def conversations(self) -> List[Conversation]:
        with self._lock:
            return list(self._conversations)

    def find(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            for conv in self._conversations:
                if conv.conversation_id == conversation_id:
                    return conv
        return None

    def add(self, conversation: Conversation) -> bool:
        """Splice a conversation into the visible set (newest first)."""
        with self._lock:
            if any(c.conversation_id == conversation.conversation_id for c in self._conversations):
                return False
            self._conversations.insert(0, conversation)
        self._notify()
        return True

    def remove(self, conversation_id: str) -> bool:
        with self._lock:
            before = len(self._conversations)
            self._conversations = [c for c in self._conversations if c.conversation_id != conversation_id]
            removed = len(self._conversations) != before
        if removed:
            logger.debug(f"DIRECTORY: removed {conversation_id}")
            self._notify()
        return removed

    # =========================================================================
    # Display
    # =========================================================================

    def peer_profile(self, conversation: Conversation, user_id: str) -> Optional[ProfileRef]:
        with self._lock:
            return self._profile_cache.get(conversation.peer_of(user_id))

    def peer_name(self, conversation: Conversation, user_id: str, fallback: str = 'Unknown user') -> str:
        profile = self.peer_profile(conversation, user_id)
        return profile.display_name(fallback) if profile else fallback

    def listing_title(self, conversation: Conversation) -> Optional[str]:
        with self._lock:
            return self._listing_titles.get(conversation.listing_id)

    def to_list(self, user_id: str) -> List[Dict]:
        """Directory rows as sent to clients."""
        rows = []
        for conv in self.conversations:
            row = conv.to_dict()
            row['peerId'] = conv.peer_of(user_id)
            row['peerName'] = self.peer_name(conv, user_id)
            row['listingTitle'] = self.listing_title(conv)
            rows.append(row)
        return rows

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_listener(self, listener: Callable[['ConversationDirectory'], None]):
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[['ConversationDirectory'], None]):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self):
        for listener in list(self._listeners):
            listener(self)
