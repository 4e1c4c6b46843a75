"""Read-only profile and listing lookups used for display enrichment."""
import logging
from typing import Dict, Iterable, Optional

from lf_server.messaging.models import ProfileRef, ListingRef
from lf_server.messaging.store import ConversationStore, PROFILES, LISTINGS

logger = logging.getLogger(__name__)


class ProfileReadModel:
    """Batched lookups against the profiles table."""

    def __init__(self, store: ConversationStore):
        self.store = store

    def select_where_id_in(self, ids: Iterable[str]) -> Dict[str, ProfileRef]:
        rows = self.store.select_where_id_in(PROFILES, ids)
        return {row['id']: ProfileRef.from_doc(row) for row in rows}

    def get(self, user_id: str) -> Optional[ProfileRef]:
        return self.select_where_id_in([user_id]).get(user_id)


class ListingReadModel:
    """Batched lookups against the listings table."""

    def __init__(self, store: ConversationStore):
        self.store = store

    def select_where_id_in(self, ids: Iterable[str]) -> Dict[str, ListingRef]:
        rows = self.store.select_where_id_in(LISTINGS, ids)
        return {row['item_id']: ListingRef.from_doc(row) for row in rows}

    def get(self, listing_id: str) -> Optional[ListingRef]:
        return self.select_where_id_in([listing_id]).get(listing_id)
