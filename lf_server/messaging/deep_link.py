"""Deep-link resolution for an externally supplied conversation id.

Each id is handled at most once per page lifetime. The handled set is
checked before anything else, so a conversation that was closed (and thus
dropped from the directory) is not fetched and spliced back in when a
directory change re-triggers resolution.
"""
import logging
import threading
from typing import Optional, Set

from lf_server.exception.StoreError import StoreError
from lf_server.messaging.models import Conversation
from lf_server.messaging.store import CONVERSATIONS

logger = logging.getLogger(__name__)


class DeepLinkResolver:

    def __init__(self, store, directory, session, user_id: str):
        self.store = store
        self.directory = directory
        self.session = session
        self.user_id = user_id
        self.handled: Set[str] = set()
        self._lock = threading.RLock()

    def resolve(self, conversation_id: Optional[str]) -> Optional[Conversation]:
        """Select ``conversation_id``, fetching and registering it on a directory miss.

        Returns the selected conversation, or None if nothing was done.
        """
        if not conversation_id:
            return None
        with self._lock:
            if conversation_id in self.handled:
                return None

            existing = self.directory.find(conversation_id)
            if existing is not None:
                self.handled.add(conversation_id)
                conversation = existing
            else:
                conversation = self._fetch(conversation_id)
                if conversation is None:
                    return None
                self.directory.enrich([conversation], self.user_id)
                # Marked before the splice: directory listeners may re-enter resolve()
                self.handled.add(conversation_id)
                self.directory.add(conversation)

        self.session.select(conversation)
        return conversation

    def _fetch(self, conversation_id: str) -> Optional[Conversation]:
        try:
            row = self.store.select_one(CONVERSATIONS, {'id': conversation_id})
        except StoreError as e:
            logger.warning(f"DEEP_LINK: fetch of {conversation_id} failed: {e}")
            return None
        if row is None:
            logger.info(f"DEEP_LINK: {conversation_id} no longer exists")
            return None
        conversation = Conversation.from_doc(row)
        if not conversation.has_participant(self.user_id):
            logger.warning(f"DEEP_LINK: {self.user_id} is not a participant of {conversation_id}")
            return None
        return conversation
