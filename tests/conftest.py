import os

os.environ['APP_ENV'] = 'testing'
os.environ['FLASK_ENV'] = 'testing'

from concurrent.futures import Future
from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from pymongo.errors import ServerSelectionTimeoutError

from lf_server.messaging.models import Conversation
from lf_server.messaging.store import (
    ConversationStore, CONVERSATIONS, PROFILES, LISTINGS, reset_conversation_store
)
from lf_server.security.authentication import AuthSecurity


class InlineExecutor:
    """Runs submitted work immediately on the caller's thread."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class ManualExecutor:
    """Queues submitted work until the test runs it, in any order."""

    def __init__(self):
        self.jobs = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.jobs.append((future, fn, args, kwargs))
        return future

    def run(self, index=0):
        future, fn, args, kwargs = self.jobs.pop(index)
        future.set_result(fn(*args, **kwargs))
        return future.result()

    def run_all(self):
        results = []
        while self.jobs:
            results.append(self.run(0))
        return results


class FailingCollection:
    """Collection whose every operation fails like an unreachable server."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise ServerSelectionTimeoutError('mongo unreachable')
        return fail


class FailingDatabase:

    def __getitem__(self, name):
        return FailingCollection()


PROFILE_ROWS = [
    {'id': 'u1', 'first_name': 'Alice', 'last_name': 'Smith', 'email': 'alice@campus.edu'},
    {'id': 'u2', 'first_name': 'Bob', 'last_name': 'Jones', 'email': 'bob@campus.edu'},
    {'id': 'u3', 'first_name': None, 'last_name': None, 'email': 'carol@campus.edu'},
    {'id': 'u4', 'first_name': 'Dan', 'last_name': 'Lee', 'email': 'dan@campus.edu'},
]

LISTING_ROWS = [
    {'item_id': 'item-1', 'title': 'Blue backpack', 'poster_id': 'u2'},
    {'item_id': 'item-2', 'title': 'Car keys', 'poster_id': 'u1'},
    {'item_id': 'item-3', 'title': 'Water bottle', 'poster_id': 'u4'},
    {'item_id': 'item-orphan', 'title': 'Umbrella', 'poster_id': None},
]


@pytest.fixture
def db():
    return mongomock.MongoClient()['lost_found_test']


@pytest.fixture
def store(db):
    store = ConversationStore(db=db)
    store.ensure_indexes()
    db[PROFILES].insert_many([dict(r) for r in PROFILE_ROWS])
    db[LISTINGS].insert_many([dict(r) for r in LISTING_ROWS])
    yield store
    reset_conversation_store(None)


@pytest.fixture
def failing_store():
    return ConversationStore(db=FailingDatabase())


@pytest.fixture
def inline_executor():
    return InlineExecutor()


@pytest.fixture
def manual_executor():
    return ManualExecutor()


_BASE_TIME = datetime(2026, 9, 1, 12, 0, tzinfo=timezone.utc)


def create_conversation(store, listing_id, participant_1, participant_2, minutes=0):
    """Insert a conversation row and return it as a Conversation."""
    row = store.insert(CONVERSATIONS, Conversation(
        conversation_id=None,
        listing_id=listing_id,
        participant_1=participant_1,
        participant_2=participant_2,
        created_at=_BASE_TIME + timedelta(minutes=minutes)
    ).to_db_doc())
    return Conversation.from_doc(row)


def auth_headers(user_key):
    AuthSecurity.configure_from_config()
    token = AuthSecurity.encode_token({'user_key': user_key})
    return {'Authorization': f'Bearer {token}'}
