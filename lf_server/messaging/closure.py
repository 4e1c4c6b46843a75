"""Closure protocol: permanently end a conversation.

Steps, in order:
1. insert a system message attributing the closure to the acting user
2. insert a closure marker for (acting user, conversation)
3. delete every message of the conversation
4. delete the conversation row (the event every open session keys off)
5. mirror locally: drop it from the directory, lock the session if selected

Closure is terminal; there is no reopen. Closing a conversation that is
already gone is a silent no-op.
"""
import logging
from typing import Optional

from config import config
from lf_server.exception.StoreError import StoreError
from lf_server.messaging.models import Conversation, Message, ClosureMarker, ProfileRef
from lf_server.messaging.store import ConversationStore, CONVERSATIONS, MESSAGES, HIDDEN_CONVERSATIONS

logger = logging.getLogger(__name__)

CLOSED_MESSAGE_TEMPLATE = "{name} has closed this conversation"


def closed_message_text(profile: Optional[ProfileRef]) -> str:
    fallback = config.CLOSURE_FALLBACK_NAME
    name = profile.display_name(fallback) if profile else fallback
    return CLOSED_MESSAGE_TEMPLATE.format(name=name)


class ClosureProtocol:

    def __init__(self, store: ConversationStore, directory=None, session=None):
        self.store = store
        self.directory = directory
        self.session = session

    def close_conversation(
        self,
        conversation: Conversation,
        acting_user_id: str,
        acting_profile: Optional[ProfileRef] = None
    ) -> bool:
        """Run the closure protocol. Returns True if this call closed it.

        Raises ValueError if the acting user is not a participant. Store
        failures leave local state untouched and return False.
        """
        if not conversation.has_participant(acting_user_id):
            raise ValueError("Conversation not found or access denied")

        conversation_id = conversation.conversation_id
        try:
            if self.store.select_one(CONVERSATIONS, {'id': conversation_id}) is None:
                logger.info(f"CLOSURE: {conversation_id} already gone, nothing to close")
                self._mirror(conversation_id)
                return False

            notice = Message(
                message_id=None,
                conversation_id=conversation_id,
                sender_id=acting_user_id,
                content=closed_message_text(acting_profile),
                is_system=True
            )
            self.store.insert(MESSAGES, notice.to_db_doc())
            self.store.insert(HIDDEN_CONVERSATIONS, ClosureMarker(acting_user_id, conversation_id).to_db_doc())
            self.store.delete(MESSAGES, {'conversation_id': conversation_id})
            deleted = self.store.delete(CONVERSATIONS, {'id': conversation_id})
            if deleted == 0:
                # The peer's delete won the race; no cascade ran for our marker
                self.store.delete(HIDDEN_CONVERSATIONS, {'conversation_id': conversation_id})
        except StoreError as e:
            logger.error(f"CLOSURE: closing {conversation_id} by {acting_user_id} failed: {e}")
            return False

        if deleted == 0:
            logger.info(f"CLOSURE: {conversation_id} was deleted concurrently")
        else:
            logger.info(f"CLOSURE: {conversation_id} closed by {acting_user_id}")
        self._mirror(conversation_id)
        return deleted > 0

    def _mirror(self, conversation_id: str):
        if self.directory is not None:
            self.directory.remove(conversation_id)
        if self.session is not None:
            self.session.mark_closed(conversation_id)
