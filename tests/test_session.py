from conftest import create_conversation
from lf_server.exception.StoreError import StoreError
from lf_server.messaging.directory import ConversationDirectory
from lf_server.messaging.models import ClosureMarker, Message, SessionState
from lf_server.messaging.session import ConversationSession
from lf_server.messaging.store import CONVERSATIONS, MESSAGES, HIDDEN_CONVERSATIONS


def _send(store, conv, sender, content):
    return store.insert(MESSAGES, Message(None, conv.conversation_id, sender, content).to_db_doc())


def _contents(session):
    return [m.content for m in session.messages]


def test_select_loads_history_and_activates(store, inline_executor):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    _send(store, conv, 'u1', 'found it?')
    _send(store, conv, 'u2', 'yes!')
    session = ConversationSession(store, 'u1', executor=inline_executor)

    future = session.select(conv)

    assert future.result() is True
    assert session.state == SessionState.ACTIVE
    assert _contents(session) == ['found it?', 'yes!']


def test_blank_messages_are_never_stored(store, inline_executor):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    session = ConversationSession(store, 'u1', executor=inline_executor)
    session.select(conv)

    assert session.send_message('') is False
    assert session.send_message('   \n\t') is False
    assert session.send_message(None) is False
    assert store.select(MESSAGES) == []


def test_send_without_selection_is_noop(store, inline_executor):
    session = ConversationSession(store, 'u1', executor=inline_executor)
    assert session.send_message('hello') is False
    assert store.select(MESSAGES) == []


def test_own_message_arrives_through_subscription_once(store, inline_executor):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    session = ConversationSession(store, 'u1', executor=inline_executor)
    session.select(conv)

    assert session.send_message('hello') is True

    assert _contents(session) == ['hello']
    assert session.messages[0].sender_id == 'u1'


def test_failed_send_does_not_append_locally(store, inline_executor, monkeypatch):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    session = ConversationSession(store, 'u1', executor=inline_executor)
    session.select(conv)

    def broken_insert(table, row):
        raise StoreError('write failed', table=table)

    monkeypatch.setattr(store, 'insert', broken_insert)

    assert session.send_message('hello') is False
    assert session.messages == []
    assert session.state == SessionState.ACTIVE


def test_sending_while_closed_is_noop(store, inline_executor):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    session = ConversationSession(store, 'u1', executor=inline_executor)
    session.select(conv)
    session.mark_closed(conv.conversation_id)
    inserts = []
    store.feed.subscribe(MESSAGES, 'INSERT', inserts.append)

    assert session.send_message('anyone there?') is False
    assert inserts == []


def test_late_load_for_previous_selection_is_discarded(store, manual_executor):
    conv_a = create_conversation(store, 'item-1', 'u1', 'u2')
    conv_b = create_conversation(store, 'item-3', 'u1', 'u4')
    _send(store, conv_a, 'u2', 'from A')
    _send(store, conv_b, 'u4', 'from B')
    session = ConversationSession(store, 'u1', executor=manual_executor)

    session.select(conv_a)
    session.select(conv_b)

    # B's load finishes first, then A's stale load arrives
    assert manual_executor.run(1) is True
    assert manual_executor.run(0) is False

    assert session.conversation_id == conv_b.conversation_id
    assert session.state == SessionState.ACTIVE
    assert _contents(session) == ['from B']


def test_switching_releases_previous_subscriptions(store, inline_executor):
    conv_a = create_conversation(store, 'item-1', 'u1', 'u2')
    conv_b = create_conversation(store, 'item-3', 'u1', 'u4')
    session = ConversationSession(store, 'u1', executor=inline_executor)

    session.select(conv_a)
    session.select(conv_b)
    _send(store, conv_a, 'u2', 'late for A')

    assert session.messages == []
    assert store.feed.subscriber_count() == 2

    session.deselect()
    assert session.state == SessionState.IDLE
    assert store.feed.subscriber_count() == 0


def test_messages_arriving_during_load_are_merged(store, manual_executor):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    _send(store, conv, 'u2', 'before')
    session = ConversationSession(store, 'u1', executor=manual_executor)

    session.select(conv)
    _send(store, conv, 'u2', 'during')
    assert session.state == SessionState.LOADING
    manual_executor.run_all()

    assert _contents(session) == ['before', 'during']
    assert session.state == SessionState.ACTIVE


def test_peer_deletion_closes_session_and_drops_from_directory(store, inline_executor):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    directory = ConversationDirectory(store)
    directory.refresh('u2')
    session = ConversationSession(store, 'u2', directory=directory, executor=inline_executor)
    session.select(conv)

    store.delete(CONVERSATIONS, {'id': conv.conversation_id})

    assert session.state == SessionState.CLOSED
    assert directory.find(conv.conversation_id) is None
    assert session.send_message('hello?') is False


def test_conversation_already_closed_when_loaded(store, inline_executor):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    store.insert(HIDDEN_CONVERSATIONS, ClosureMarker('u1', conv.conversation_id).to_db_doc())
    directory = ConversationDirectory(store)
    directory.refresh('u2')
    session = ConversationSession(store, 'u2', directory=directory, executor=inline_executor)

    session.select(conv)

    assert session.state == SessionState.CLOSED
    assert directory.find(conv.conversation_id) is None


def test_conversation_deleted_before_load_completes(store, manual_executor):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    session = ConversationSession(store, 'u2', executor=manual_executor)

    session.select(conv)
    store.delete(CONVERSATIONS, {'id': conv.conversation_id})
    manual_executor.run_all()

    assert session.state == SessionState.CLOSED


def test_failed_load_stays_loading_and_can_retry(failing_store, inline_executor):
    from lf_server.messaging.models import Conversation
    conv = Conversation('CONV-1', 'u1', 'u2', listing_id='item-1')
    session = ConversationSession(failing_store, 'u1', executor=inline_executor)

    assert session.select(conv).result() is False
    assert session.state == SessionState.LOADING
    assert session.last_error

    assert session.reload().result() is False
    assert session.conversation_id == 'CONV-1'


def test_on_change_fires_for_visible_changes(store, inline_executor):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    states = []
    session = ConversationSession(
        store, 'u1', executor=inline_executor,
        on_change=lambda s: states.append(s.state)
    )

    session.select(conv)
    _send(store, conv, 'u2', 'hi')

    assert states == [SessionState.LOADING, SessionState.ACTIVE, SessionState.ACTIVE]
    assert session.to_dict()['messages'][0]['content'] == 'hi'


def test_history_keeps_latest_messages_when_limited(store, inline_executor, monkeypatch):
    monkeypatch.setenv('HISTORY_LIMIT', '2')
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    for text in ['one', 'two', 'three']:
        _send(store, conv, 'u2', text)
    session = ConversationSession(store, 'u1', executor=inline_executor)

    session.select(conv)

    assert _contents(session) == ['two', 'three']


def test_failed_load_refuses_sends_and_drops_live_events(store, inline_executor, monkeypatch):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    session = ConversationSession(store, 'u1', executor=inline_executor)
    original = store.select_history
    attempts = []

    def flaky_history(conversation_id, limit=None):
        attempts.append(conversation_id)
        if len(attempts) == 1:
            raise StoreError('read failed', table=MESSAGES)
        return original(conversation_id, limit=limit)

    monkeypatch.setattr(store, 'select_history', flaky_history)

    assert session.select(conv).result() is False
    assert session.send_message('hello') is False
    assert store.select(MESSAGES) == []

    _send(store, conv, 'u2', 'still there?')
    assert session._pending == []
    assert session.messages == []

    assert session.reload().result() is True
    assert session.state == SessionState.ACTIVE
    assert session.last_error is None
    assert _contents(session) == ['still there?']


def test_send_while_loading_is_refused(store, manual_executor):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    session = ConversationSession(store, 'u1', executor=manual_executor)

    session.select(conv)

    assert session.state == SessionState.LOADING
    assert session.send_message('too early') is False
    assert store.select(MESSAGES) == []


def test_non_string_content_is_refused(store, inline_executor):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    session = ConversationSession(store, 'u1', executor=inline_executor)
    session.select(conv)

    assert session.send_message(42) is False
    assert session.send_message(['hi']) is False
    assert session.send_message({'text': 'hi'}) is False
    assert store.select(MESSAGES) == []
