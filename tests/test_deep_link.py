from conftest import create_conversation
from lf_server.messaging.closure import ClosureProtocol
from lf_server.messaging.deep_link import DeepLinkResolver
from lf_server.messaging.directory import ConversationDirectory
from lf_server.messaging.models import SessionState
from lf_server.messaging.session import ConversationSession
from lf_server.messaging.store import CONVERSATIONS


def _page(store, user_id, executor):
    directory = ConversationDirectory(store)
    directory.refresh(user_id)
    session = ConversationSession(store, user_id, directory=directory, executor=executor)
    resolver = DeepLinkResolver(store, directory, session, user_id)
    return directory, session, resolver


def _count_calls(monkeypatch, obj, name):
    calls = []
    original = getattr(obj, name)

    def wrapper(*args, **kwargs):
        calls.append(args)
        return original(*args, **kwargs)

    monkeypatch.setattr(obj, name, wrapper)
    return calls


def test_link_to_listed_conversation_selects_it(store, inline_executor, monkeypatch):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    directory, session, resolver = _page(store, 'u1', inline_executor)
    fetches = _count_calls(monkeypatch, resolver, '_fetch')

    assert resolver.resolve(conv.conversation_id) == conv
    assert fetches == []
    assert session.conversation_id == conv.conversation_id
    assert session.state == SessionState.ACTIVE
    assert len(directory.conversations) == 1


def test_double_link_fetches_and_inserts_once(store, inline_executor, monkeypatch):
    directory, session, resolver = _page(store, 'u1', inline_executor)
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    fetches = _count_calls(monkeypatch, resolver, '_fetch')
    inserted = []
    directory.add_listener(lambda d: inserted.append(len(d.conversations)))

    first = resolver.resolve(conv.conversation_id)
    second = resolver.resolve(conv.conversation_id)

    assert first == conv
    assert second is None
    assert len(fetches) == 1
    assert inserted == [1]
    assert session.conversation_id == conv.conversation_id
    assert directory.peer_name(conv, 'u1') == 'Bob Jones'


def test_link_to_deleted_conversation_does_nothing(store, inline_executor):
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    directory, session, resolver = _page(store, 'u1', inline_executor)
    directory.remove(conv.conversation_id)
    store.delete(CONVERSATIONS, {'id': conv.conversation_id})

    assert resolver.resolve(conv.conversation_id) is None
    assert directory.conversations == []
    assert session.state == SessionState.IDLE
    assert session.last_error is None


def test_link_for_non_participant_is_ignored(store, inline_executor):
    conv = create_conversation(store, 'item-1', 'u2', 'u4')
    directory, session, resolver = _page(store, 'u1', inline_executor)

    assert resolver.resolve(conv.conversation_id) is None
    assert directory.conversations == []
    assert session.conversation is None


def test_closed_conversation_is_not_spliced_back(store, inline_executor, monkeypatch):
    directory, session, resolver = _page(store, 'u1', inline_executor)
    conv = create_conversation(store, 'item-1', 'u1', 'u2')
    fetches = _count_calls(monkeypatch, resolver, '_fetch')
    resolver.resolve(conv.conversation_id)

    ClosureProtocol(store, directory=directory, session=session).close_conversation(conv, 'u1')
    directory.refresh('u1')
    resolver.resolve(conv.conversation_id)

    assert directory.conversations == []
    assert len(fetches) == 1
    assert session.state == SessionState.CLOSED


def test_empty_link_is_ignored(store, inline_executor):
    directory, session, resolver = _page(store, 'u1', inline_executor)
    assert resolver.resolve(None) is None
    assert resolver.resolve('') is None
    assert resolver.handled == set()
