"""Migration script: create the messaging indexes.

This script creates:
1. Unique conversation id and pair_key indexes (one conversation per
   listing and participant pair)
2. Participant lookup indexes for directory queries
3. Message history and closure-marker indexes

Usage:
    python scripts/add_indexes.py

Ensure MONGO_URI and LF_DB_NAME environment variables are set.
"""
import logging
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from lf_server.exception.StoreError import StoreError
from lf_server.messaging.store import ConversationStore, CONVERSATIONS

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def report_duplicate_pairs(store: ConversationStore) -> int:
    """Log conversations that would violate the unique pair_key index."""
    seen = {}
    duplicates = 0
    for row in store.select(CONVERSATIONS, sort=[('created_at', 1)]):
        key = row.get('pair_key')
        if key in seen:
            duplicates += 1
            logger.warning(f"  Duplicate pair {key}: {row.get('id')} (first: {seen[key]})")
        else:
            seen[key] = row.get('id')
    return duplicates


def main():
    logger.info('Starting index migration...')
    logger.info('=' * 50)

    store = ConversationStore()
    duplicates = report_duplicate_pairs(store)
    if duplicates:
        logger.error(f'{duplicates} duplicate conversation(s) found; resolve them before indexing')
        return 1

    try:
        store.ensure_indexes()
    except StoreError as e:
        logger.error(f'Index migration failed: {e}')
        return 1

    logger.info('=' * 50)
    logger.info('Index migration complete!')
    return 0


if __name__ == '__main__':
    sys.exit(main())
