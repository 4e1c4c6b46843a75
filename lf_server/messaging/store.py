"""Conversation store backed by MongoDB.

Provides the table-level primitives the messaging core is written against:
- insert(table, row)
- delete(table, filter)        (cascades from conversations to their children)
- select(table, filter)        and select_one / select_where_id_in
- subscribe(table, event, filter) -> Subscription

Every confirmed insert or delete is published on the store's ChangeFeed, so
all visible state changes in sessions and directories are reactions to
store events.
"""
import logging
from typing import Optional, Dict, Any, List, Iterable, Callable

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from lf_server.exception.StoreError import StoreError, DuplicateConversationError
from lf_server.messaging.models import make_pair_key
from lf_server.messaging.realtime import ChangeFeed, ChangeType, ChangeEvent, Subscription
from lf_server.repository.mongo_helper import MongoRepositorySingleton
from lf_server.utils.generator import generate_conversation_id, generate_message_id
from lf_server.utils.time_utils import now_utc

logger = logging.getLogger(__name__)

CONVERSATIONS = 'conversations'
MESSAGES = 'messages'
HIDDEN_CONVERSATIONS = 'hidden_conversations'
PROFILES = 'profiles'
LISTINGS = 'listings'

# Child tables removed along with a parent row: (child table, foreign key)
CASCADES = {
    CONVERSATIONS: [
        (MESSAGES, 'conversation_id'),
        (HIDDEN_CONVERSATIONS, 'conversation_id'),
    ],
}

# Primary key field per table
ID_FIELDS = {
    LISTINGS: 'item_id',
}

# Insertion order breaks ties between messages stored within the same millisecond
HISTORY_SORT = [('created_at', ASCENDING), ('_id', ASCENDING)]
_NEWEST_FIRST = [('created_at', DESCENDING), ('_id', DESCENDING)]


def _clean(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in doc.items() if k != '_id'}


class ConversationStore:
    """Store facade over the messaging collections.

    Uses lazy initialization so the store can be built before MongoDB is
    reachable; the database is resolved on first use.
    """

    def __init__(self, db=None, feed: Optional[ChangeFeed] = None):
        self._db = db
        self.feed = feed or ChangeFeed()

    @property
    def db(self):
        if self._db is None:
            self._db = MongoRepositorySingleton.get_db()
        return self._db

    def _collection(self, table: str):
        return self.db[table]

    @staticmethod
    def id_field(table: str) -> str:
        return ID_FIELDS.get(table, 'id')

    def ensure_indexes(self):
        """Create indexes used by query paths (idempotent)."""
        try:
            self._collection(CONVERSATIONS).create_index([('id', ASCENDING)], unique=True, name='conversations_id')
            # One conversation per (listing, unordered participant pair)
            self._collection(CONVERSATIONS).create_index([('pair_key', ASCENDING)], unique=True, name='conversations_pair_key')
            self._collection(CONVERSATIONS).create_index([('participant_1', ASCENDING)], name='conversations_participant_1')
            self._collection(CONVERSATIONS).create_index([('participant_2', ASCENDING)], name='conversations_participant_2')
            self._collection(MESSAGES).create_index(
                [('conversation_id', ASCENDING), ('created_at', ASCENDING)], name='messages_conversation_created_at'
            )
            self._collection(HIDDEN_CONVERSATIONS).create_index(
                [('user_id', ASCENDING), ('conversation_id', ASCENDING)], name='hidden_user_conversation'
            )
            logger.info('Ensured messaging indexes')
        except PyMongoError as e:
            raise StoreError(f"Failed to ensure indexes: {e}") from e

    # =========================================================================
    # Writes
    # =========================================================================

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and publish an INSERT event. Returns the stored row."""
        doc = dict(row)
        doc.pop('_id', None)

        if table == MESSAGES:
            doc['id'] = doc.get('id') or generate_message_id()
            # Server-assigned; history ordering relies on it
            doc['created_at'] = now_utc()
        elif table == CONVERSATIONS:
            doc['id'] = doc.get('id') or generate_conversation_id()
            doc['created_at'] = doc.get('created_at') or now_utc()
            if not doc.get('pair_key'):
                doc['pair_key'] = make_pair_key(doc.get('listing_id'), doc['participant_1'], doc['participant_2'])

        try:
            self._collection(table).insert_one(doc)
        except DuplicateKeyError as e:
            if table == CONVERSATIONS:
                raise DuplicateConversationError(doc.get('pair_key')) from e
            raise StoreError(f"Duplicate row in {table}: {e}", table=table) from e
        except PyMongoError as e:
            logger.error(f"STORE: insert into {table} failed: {e}")
            raise StoreError(f"Insert into {table} failed: {e}", table=table) from e

        stored = _clean(doc)
        logger.debug(f"STORE: inserted into {table} id={stored.get('id')}")
        self.feed.publish(table, ChangeType.INSERT, stored)
        return stored

    def delete(self, table: str, filters: Dict[str, Any]) -> int:
        """Delete matching rows (and cascaded children). Returns rows deleted from ``table``."""
        if not filters:
            raise ValueError(f"Refusing to delete from {table} without a filter")

        coll = self._collection(table)
        try:
            rows = list(coll.find(filters))
            if not rows:
                return 0

            ids = [r.get(self.id_field(table)) for r in rows]
            for child_table, foreign_key in CASCADES.get(table, []):
                self.delete(child_table, {foreign_key: {'$in': ids}})

            result = coll.delete_many({'_id': {'$in': [r['_id'] for r in rows]}})
        except PyMongoError as e:
            logger.error(f"STORE: delete from {table} failed: {e}")
            raise StoreError(f"Delete from {table} failed: {e}", table=table) from e

        if result.deleted_count == 0:
            return 0

        logger.debug(f"STORE: deleted {result.deleted_count} row(s) from {table}")
        for row in rows:
            self.feed.publish(table, ChangeType.DELETE, _clean(row))
        return result.deleted_count

    # =========================================================================
    # Reads
    # =========================================================================

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        sort: Optional[List] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        try:
            cursor = self._collection(table).find(filters or {})
            if sort:
                cursor = cursor.sort(sort)
            if limit:
                cursor = cursor.limit(limit)
            return [_clean(doc) for doc in cursor]
        except PyMongoError as e:
            logger.error(f"STORE: select from {table} failed: {e}")
            raise StoreError(f"Select from {table} failed: {e}", table=table) from e

    def select_one(self, table: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            doc = self._collection(table).find_one(filters)
        except PyMongoError as e:
            logger.error(f"STORE: select_one from {table} failed: {e}")
            raise StoreError(f"Select from {table} failed: {e}", table=table) from e
        return _clean(doc) if doc else None

    def select_where_id_in(self, table: str, ids: Iterable[str]) -> List[Dict[str, Any]]:
        """Batched lookup by primary key. Issues no query for an empty id set."""
        unique_ids = sorted({i for i in ids if i is not None})
        if not unique_ids:
            return []
        return self.select(table, {self.id_field(table): {'$in': unique_ids}})

    def select_history(self, conversation_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """The latest `limit` messages of a conversation, oldest first."""
        rows = self.select(MESSAGES, {'conversation_id': conversation_id}, sort=_NEWEST_FIRST, limit=limit)
        rows.reverse()
        return rows

    # =========================================================================
    # Realtime
    # =========================================================================

    def subscribe(
        self,
        table: str,
        change_type: ChangeType,
        callback: Callable[[ChangeEvent], None],
        filters: Optional[Dict[str, Any]] = None
    ) -> Subscription:
        return self.feed.subscribe(table, change_type, callback, filters)


# Singleton instance
_conversation_store = None


def get_conversation_store() -> ConversationStore:
    """Get singleton conversation store instance."""
    global _conversation_store
    if _conversation_store is None:
        _conversation_store = ConversationStore()
    return _conversation_store


def reset_conversation_store(store: Optional[ConversationStore] = None):
    """Replace the singleton (useful for testing or reconnection)."""
    global _conversation_store
    _conversation_store = store
