"""Messaging service layer.

MessagingService is the controller behind one open messages page: it wires
the identity, directory, session, closure protocol and deep-link resolver
together. Whenever the directory changes it re-runs deep-link resolution for
the page's ``conversation`` parameter; the resolver's handled-id set makes
that re-run a no-op once the link has been served.

get_or_create_conversation backs the "message the poster" action on a
listing and returns the messages page URL to navigate to.
"""
import logging
from typing import Optional, Dict, Any, Callable
from urllib.parse import urlencode

from lf_server.exception.StoreError import StoreError, DuplicateConversationError
from lf_server.exception.UnauthorizedError import UnauthorizedError
from lf_server.messaging.closure import ClosureProtocol
from lf_server.messaging.deep_link import DeepLinkResolver
from lf_server.messaging.directory import ConversationDirectory
from lf_server.messaging.models import Conversation, ProfileRef, make_pair_key
from lf_server.messaging.read_models import ListingReadModel
from lf_server.messaging.session import ConversationSession
from lf_server.messaging.store import ConversationStore, CONVERSATIONS
from lf_server.utils.generator import generate_conversation_id

logger = logging.getLogger(__name__)

MESSAGES_PAGE_PATH = '/messages'


def messages_url(conversation_id: str) -> str:
    return f"{MESSAGES_PAGE_PATH}?{urlencode({'conversation': conversation_id})}"


def get_or_create_conversation(store: ConversationStore, listing_id: str, requester_id: str) -> Dict[str, Any]:
    """Get the conversation between the requester and a listing's poster, creating it if needed."""
    listing = ListingReadModel(store).get(listing_id)
    if listing is None:
        raise ValueError("Listing not found")
    if not listing.poster_id:
        raise ValueError("Listing has no poster to contact")
    if listing.poster_id == requester_id:
        raise ValueError("You cannot message yourself about your own listing")

    pair_key = make_pair_key(listing_id, requester_id, listing.poster_id)
    row = store.select_one(CONVERSATIONS, {'pair_key': pair_key})
    created = False
    if row is None:
        conversation = Conversation(
            conversation_id=generate_conversation_id(),
            listing_id=listing_id,
            participant_1=requester_id,
            participant_2=listing.poster_id
        )
        try:
            row = store.insert(CONVERSATIONS, conversation.to_db_doc())
            created = True
        except DuplicateConversationError:
            # A concurrent click created it first
            row = store.select_one(CONVERSATIONS, {'pair_key': pair_key})
            if row is None:
                raise StoreError("Conversation vanished right after creation", table=CONVERSATIONS)

    conversation_id = row['id']
    if created:
        logger.info(f"MESSAGING: {requester_id} started {conversation_id} about listing {listing_id}")
    return {
        'conversation_id': conversation_id,
        'created': created,
        'conversation': Conversation.from_doc(row).to_dict(),
        'redirect': messages_url(conversation_id)
    }


class MessagingService:
    """Messages page controller for one connected user."""

    def __init__(
        self,
        store: ConversationStore,
        executor=None,
        on_change: Optional[Callable[['MessagingService'], None]] = None
    ):
        self.store = store
        self.executor = executor
        self.on_change = on_change
        self.user_id: Optional[str] = None
        self.profile: Optional[ProfileRef] = None
        self.pending_link: Optional[str] = None

        self.directory = ConversationDirectory(store)
        self.session: Optional[ConversationSession] = None
        self.resolver: Optional[DeepLinkResolver] = None
        self.closure: Optional[ClosureProtocol] = None
        self.directory.add_listener(self._on_directory_changed)

    # =========================================================================
    # Page lifecycle
    # =========================================================================

    def identify(self, user_id: str, profile: Optional[ProfileRef] = None):
        """Identity became available: build the session and populate the directory."""
        if self.user_id == user_id and self.session is not None:
            return
        if self.session is not None:
            self.session.teardown()

        self.user_id = user_id
        if profile is None:
            try:
                profile = self.directory.profiles.get(user_id)
            except StoreError as e:
                logger.warning(f"MESSAGING: profile lookup for {user_id} failed: {e}")
        self.profile = profile

        self.session = ConversationSession(
            self.store, user_id,
            directory=self.directory,
            executor=self.executor,
            on_change=self._on_session_changed
        )
        self.resolver = DeepLinkResolver(self.store, self.directory, self.session, user_id)
        self.closure = ClosureProtocol(self.store, self.directory, self.session)
        self.directory.refresh(user_id)

    def open(self, conversation_id: Optional[str] = None):
        """Page load, with the optional ``conversation`` navigation parameter."""
        if conversation_id:
            self.pending_link = conversation_id
        self._resolve_pending()

    def refresh(self):
        self._require_identity()
        self.directory.refresh(self.user_id)

    def teardown(self):
        self.directory.remove_listener(self._on_directory_changed)
        if self.session is not None:
            self.session.teardown()
        self.on_change = None

    # =========================================================================
    # User actions
    # =========================================================================

    def select(self, conversation_id: str) -> bool:
        self._require_identity()
        conversation = self.directory.find(conversation_id)
        if conversation is None:
            return False
        self.session.select(conversation)
        return True

    def deselect(self):
        self._require_identity()
        self.session.deselect()

    def send_message(self, content: str) -> bool:
        self._require_identity()
        return self.session.send_message(content)

    def close_conversation(self, conversation_id: Optional[str] = None) -> bool:
        """Close the given conversation, or the selected one."""
        self._require_identity()
        conversation_id = conversation_id or self.session.conversation_id
        if not conversation_id:
            return False
        conversation = self.directory.find(conversation_id)
        if conversation is None and self.session.conversation_id == conversation_id:
            conversation = self.session.conversation
        if conversation is None:
            # Already closed and removed; nothing left to do
            return False
        return self.closure.close_conversation(conversation, self.user_id, self.profile)

    # =========================================================================
    # State
    # =========================================================================

    def snapshot(self) -> Dict[str, Any]:
        return {
            'userId': self.user_id,
            'conversations': self.directory.to_list(self.user_id) if self.user_id else [],
            'directoryError': self.directory.last_error,
            'session': self.session.to_dict() if self.session else None
        }

    def _require_identity(self):
        if self.user_id is None or self.session is None:
            raise UnauthorizedError('Identity not available')

    def _resolve_pending(self):
        if self.resolver is not None and self.pending_link:
            self.resolver.resolve(self.pending_link)

    def _on_directory_changed(self, directory: ConversationDirectory):
        self._resolve_pending()
        self._notify()

    def _on_session_changed(self, session: ConversationSession):
        self._notify()

    def _notify(self):
        listener = self.on_change
        if listener is not None:
            listener(self)
