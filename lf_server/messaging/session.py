"""Conversation session: the selected conversation of one messages page.

State machine:
    IDLE --select--> LOADING --history + closure check--> ACTIVE | CLOSED
    any  --deselect/teardown--> IDLE

Every selection bumps ``generation``. History loads and subscription
callbacks capture the generation they were started under and are dropped
if it no longer matches, so a late response for a previous selection can
never mutate state for the current one.

Two subscriptions run while a conversation is selected:
- message INSERT filtered by conversation id (appended in arrival order)
- conversation DELETE filtered by id (-> CLOSED, removed from the directory)

Deletion of the conversation row is the authoritative closure signal; the
closure marker can be cascaded away before a peer ever observes its insert.

Sending never appends locally: the sender sees their own message through the
same subscription path as the peer does.
"""
import logging
import threading
from typing import Callable, Dict, List, Optional, Any

from config import config
from lf_server.exception.StoreError import StoreError
from lf_server.messaging.models import Conversation, Message, SessionState
from lf_server.messaging.realtime import ChangeType, ChangeEvent, Subscription
from lf_server.messaging.store import (
    ConversationStore, CONVERSATIONS, MESSAGES, HIDDEN_CONVERSATIONS
)
from lf_server.utils.threading_util.pool import SharedExecutor

logger = logging.getLogger(__name__)


class ConversationSession:
    """Selected-conversation state for one user."""

    def __init__(
        self,
        store: ConversationStore,
        user_id: str,
        directory=None,
        executor=None,
        on_change: Optional[Callable[['ConversationSession'], None]] = None
    ):
        self.store = store
        self.user_id = user_id
        self.directory = directory
        self.executor = executor or SharedExecutor()
        self.on_change = on_change

        self.state = SessionState.IDLE
        self.conversation: Optional[Conversation] = None
        self.messages: List[Message] = []
        self.generation = 0
        self.last_error: Optional[str] = None

        self._pending: List[Message] = []
        self._subscriptions: List[Subscription] = []
        self._lock = threading.RLock()

    @property
    def conversation_id(self) -> Optional[str]:
        conv = self.conversation
        return conv.conversation_id if conv else None

    @property
    def is_closed(self) -> bool:
        return self.state == SessionState.CLOSED

    # =========================================================================
    # Selection
    # =========================================================================

    def select(self, conversation: Conversation):
        """Select a conversation and start loading it.

        Returns the Future of the history load.
        """
        with self._lock:
            self._release_subscriptions()
            self.generation += 1
            generation = self.generation
            self.conversation = conversation
            self.messages = []
            self._pending = []
            self.last_error = None
            self.state = SessionState.LOADING
            self._subscribe(generation, conversation.conversation_id)

        logger.debug(f"SESSION: {self.user_id} selected {conversation.conversation_id} (gen={generation})")
        self._notify()
        return self.executor.submit(self._load, generation, conversation.conversation_id)

    def reload(self):
        """Re-run the load for the current selection (retry after a failed read)."""
        conversation = self.conversation
        if conversation is None:
            return None
        return self.select(conversation)

    def deselect(self):
        with self._lock:
            self._release_subscriptions()
            self.generation += 1
            self.conversation = None
            self.messages = []
            self._pending = []
            self.last_error = None
            self.state = SessionState.IDLE
        self._notify()

    def teardown(self):
        """Release everything; called when the page goes away."""
        self.deselect()
        self.on_change = None

    # =========================================================================
    # Loading
    # =========================================================================

    def _load(self, generation: int, conversation_id: str) -> bool:
        try:
            rows = self.store.select_history(conversation_id, limit=config.HISTORY_LIMIT)
            markers = self.store.select(HIDDEN_CONVERSATIONS, {'conversation_id': conversation_id})
            row = self.store.select_one(CONVERSATIONS, {'id': conversation_id})
        except StoreError as e:
            logger.warning(f"SESSION: load of {conversation_id} failed: {e}")
            with self._lock:
                if generation != self.generation:
                    return False
                self.last_error = str(e)
                # The retry refetches everything, so nothing buffered is kept
                self._pending = []
            self._notify()
            return False

        closed_by_peer = bool(markers) or row is None
        with self._lock:
            if generation != self.generation:
                logger.debug(f"SESSION: discarding stale load of {conversation_id} (gen={generation})")
                return False

            history = [Message.from_doc(r) for r in rows]
            seen = {m.message_id for m in history}
            # Messages delivered while loading that the fetch did not include
            history.extend(m for m in self._pending if m.message_id not in seen)
            self._pending = []
            self.messages = history

            if closed_by_peer or self.state == SessionState.CLOSED:
                self.state = SessionState.CLOSED
            else:
                self.state = SessionState.ACTIVE

        if closed_by_peer:
            logger.info(f"SESSION: {conversation_id} was already closed when loaded")
            if self.directory is not None:
                self.directory.remove(conversation_id)
        self._notify()
        return True

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def _subscribe(self, generation: int, conversation_id: str):
        self._subscriptions = [
            self.store.subscribe(
                MESSAGES, ChangeType.INSERT,
                lambda event: self._on_message(generation, event),
                filters={'conversation_id': conversation_id}
            ),
            self.store.subscribe(
                CONVERSATIONS, ChangeType.DELETE,
                lambda event: self._on_conversation_deleted(generation, event),
                filters={'id': conversation_id}
            ),
        ]

    def _release_subscriptions(self):
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []

    def _on_message(self, generation: int, event: ChangeEvent):
        message = Message.from_doc(event.row)
        with self._lock:
            if generation != self.generation:
                return
            if self.state == SessionState.LOADING:
                if self.last_error is None:
                    self._pending.append(message)
                return
            if any(m.message_id == message.message_id for m in self.messages):
                return
            self.messages.append(message)
        self._notify()

    def _on_conversation_deleted(self, generation: int, event: ChangeEvent):
        conversation_id = event.row.get('id')
        with self._lock:
            if generation != self.generation:
                return
            self.state = SessionState.CLOSED
        logger.info(f"SESSION: {conversation_id} closed (seen by {self.user_id})")
        if self.directory is not None:
            self.directory.remove(conversation_id)
        self._notify()

    def mark_closed(self, conversation_id: str) -> bool:
        """Lock input if ``conversation_id`` is the current selection."""
        with self._lock:
            if self.conversation_id != conversation_id:
                return False
            self.state = SessionState.CLOSED
        self._notify()
        return True

    # =========================================================================
    # Sending
    # =========================================================================

    def send_message(self, content: str) -> bool:
        """Store a message from the current user.

        Returns False unless the session is ACTIVE and ``content`` is a
        non-blank string. The new message shows up through the INSERT
        subscription.
        """
        if not isinstance(content, str) or not content.strip():
            return False
        with self._lock:
            conversation_id = self.conversation_id
            state = self.state
        if conversation_id is None or state != SessionState.ACTIVE:
            return False

        message = Message(
            message_id=None,
            conversation_id=conversation_id,
            sender_id=self.user_id,
            content=content
        )
        try:
            self.store.insert(MESSAGES, message.to_db_doc())
        except StoreError as e:
            logger.warning(f"SESSION: send to {conversation_id} failed: {e}")
            return False
        return True

    # =========================================================================
    # Snapshot
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'state': self.state.value,
                'conversationId': self.conversation_id,
                'messages': [m.to_dict() for m in self.messages],
                'error': self.last_error
            }

    def _notify(self):
        listener = self.on_change
        if listener is not None:
            listener(self)
