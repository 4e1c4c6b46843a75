from datetime import datetime, timezone

import pytest

from conftest import create_conversation
from lf_server.exception.StoreError import StoreError, DuplicateConversationError
from lf_server.messaging.models import ClosureMarker, Message
from lf_server.messaging.realtime import ChangeType
from lf_server.messaging.store import (
    CONVERSATIONS, MESSAGES, HIDDEN_CONVERSATIONS, PROFILES, LISTINGS, HISTORY_SORT
)


def _message(conversation_id, sender, content):
    return Message(None, conversation_id, sender, content).to_db_doc()


def test_message_insert_assigns_id_and_server_time(store):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    doc = _message(conv.conversation_id, 'u1', 'hello')
    doc['created_at'] = datetime(2000, 1, 1, tzinfo=timezone.utc)

    stored = store.insert(MESSAGES, doc)

    assert stored['id'].startswith('MSG-')
    assert stored['created_at'].year != 2000
    assert '_id' not in stored


def test_insert_publishes_event(store):
    events = []
    store.subscribe(MESSAGES, ChangeType.INSERT, events.append)
    conv = create_conversation(store, 'item-1', 'u1', 'u2')

    stored = store.insert(MESSAGES, _message(conv.conversation_id, 'u1', 'hi'))

    assert len(events) == 1
    assert events[0].row['id'] == stored['id']


def test_conversation_gets_pair_key(store):
    conv = create_conversation(store, 'item-1', 'u2', 'u1')
    row = store.select_one(CONVERSATIONS, {'id': conv.conversation_id})
    assert row['pair_key'] == 'item-1|u1|u2'


def test_duplicate_pair_is_rejected(store):
    create_conversation(store, 'item-1', 'u1', 'u2')
    with pytest.raises(DuplicateConversationError) as exc:
        create_conversation(store, 'item-1', 'u2', 'u1')
    assert exc.value.pair_key == 'item-1|u1|u2'


def test_same_pair_may_talk_about_another_listing(store):
    create_conversation(store, 'item-1', 'u1', 'u2')
    create_conversation(store, 'item-3', 'u1', 'u2')
    assert len(store.select(CONVERSATIONS)) == 2


def test_deleting_conversation_cascades_children_first(store):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    other = create_conversation(store, 'item-3', 'u1', 'u4')
    cid = conv.conversation_id
    store.insert(MESSAGES, _message(cid, 'u1', 'one'))
    store.insert(MESSAGES, _message(cid, 'u2', 'two'))
    store.insert(MESSAGES, _message(other.conversation_id, 'u4', 'keep me'))
    store.insert(HIDDEN_CONVERSATIONS, ClosureMarker('u1', cid).to_db_doc())

    events = []
    for table in (CONVERSATIONS, MESSAGES, HIDDEN_CONVERSATIONS):
        store.subscribe(table, ChangeType.DELETE, events.append)

    deleted = store.delete(CONVERSATIONS, {'id': cid})

    assert deleted == 1
    assert store.select(MESSAGES, {'conversation_id': cid}) == []
    assert store.select(HIDDEN_CONVERSATIONS, {'conversation_id': cid}) == []
    assert len(store.select(MESSAGES, {'conversation_id': other.conversation_id})) == 1
    assert [e.table for e in events] == [MESSAGES, MESSAGES, HIDDEN_CONVERSATIONS, CONVERSATIONS]


def test_delete_of_missing_row_is_silent(store):
    events = []
    store.subscribe(CONVERSATIONS, ChangeType.DELETE, events.append)

    assert store.delete(CONVERSATIONS, {'id': 'CONV-missing'}) == 0
    assert events == []


def test_delete_requires_filter(store):
    with pytest.raises(ValueError):
        store.delete(MESSAGES, {})


def test_history_sort_keeps_insertion_order(store):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    for text in ['first', 'second', 'third', 'fourth']:
        store.insert(MESSAGES, _message(conv.conversation_id, 'u1', text))

    rows = store.select(MESSAGES, {'conversation_id': conv.conversation_id}, sort=HISTORY_SORT)

    assert [r['content'] for r in rows] == ['first', 'second', 'third', 'fourth']


def test_select_history_keeps_newest_in_order(store):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    other = create_conversation(store, 'item-3', 'u1', 'u4')
    for text in ['first', 'second', 'third', 'fourth']:
        store.insert(MESSAGES, _message(conv.conversation_id, 'u1', text))
    store.insert(MESSAGES, _message(other.conversation_id, 'u4', 'elsewhere'))

    latest = store.select_history(conv.conversation_id, limit=2)
    everything = store.select_history(conv.conversation_id)

    assert [r['content'] for r in latest] == ['third', 'fourth']
    assert [r['content'] for r in everything] == ['first', 'second', 'third', 'fourth']


def test_select_where_id_in_uses_table_primary_key(store):
    profiles = store.select_where_id_in(PROFILES, ['u1', 'u2', 'u1', None])
    listings = store.select_where_id_in(LISTINGS, ['item-1'])

    assert sorted(p['id'] for p in profiles) == ['u1', 'u2']
    assert listings[0]['title'] == 'Blue backpack'
    assert store.select_where_id_in(PROFILES, []) == []


def test_failures_are_wrapped(failing_store):
    with pytest.raises(StoreError) as exc:
        failing_store.select(CONVERSATIONS, {'id': 'x'})
    assert exc.value.table == CONVERSATIONS

    with pytest.raises(StoreError):
        failing_store.insert(MESSAGES, _message('c1', 'u1', 'hi'))

    with pytest.raises(StoreError):
        failing_store.delete(CONVERSATIONS, {'id': 'x'})


def test_failed_insert_publishes_nothing(failing_store):
    events = []
    failing_store.subscribe(MESSAGES, ChangeType.INSERT, events.append)
    with pytest.raises(StoreError):
        failing_store.insert(MESSAGES, _message('c1', 'u1', 'hi'))
    assert events == []


def test_store_resolves_shared_database(db):
    from lf_server.messaging.store import ConversationStore
    from lf_server.repository.mongo_helper import MongoRepositorySingleton
    MongoRepositorySingleton.set_db(db)
    try:
        assert ConversationStore().db is db
    finally:
        MongoRepositorySingleton.set_db(None)
