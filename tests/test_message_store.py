from __future__ import annotations

import threading
import uuid
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from support_chat.core.exceptions import ConversationMissingError
from support_chat.models.conversation import Conversation, Message, Sender
from support_chat.services import message_store
from support_chat.services.message_store import MessageStore


def _conversation_count(session: Session, conversation_id: uuid.UUID) -> int:
    statement = select(func.count()).select_from(Conversation).where(Conversation.id == conversation_id)
    return session.exec(statement).one()


def test_ensure_conversation_is_idempotent(store, session, conversation_id):
    store.ensure_conversation(conversation_id)
    store.ensure_conversation(conversation_id)

    assert _conversation_count(session, conversation_id) == 1


def test_concurrent_ensure_creates_exactly_one_row(engine, conversation_id):
    workers = 8
    barrier = threading.Barrier(workers)
    errors: list[Exception] = []

    def worker():
        with Session(engine) as own_session:
            barrier.wait()
            try:
                MessageStore(own_session).ensure_conversation(conversation_id)
            except Exception as exc:  # collected for the assertion below
                errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    with Session(engine) as check:
        assert _conversation_count(check, conversation_id) == 1


def test_insert_requires_existing_conversation(store, conversation_id):
    with pytest.raises(ConversationMissingError) as exc_info:
        store.insert_message(conversation_id, Sender.USER, "hello")

    assert exc_info.value.conversation_id == conversation_id


def test_store_remains_usable_after_missing_conversation(store, conversation_id):
    with pytest.raises(ConversationMissingError):
        store.insert_message(conversation_id, Sender.USER, "too early")

    store.ensure_conversation(conversation_id)
    stored = store.insert_message(conversation_id, Sender.USER, "now it works")

    assert [m.id for m in store.get_recent_messages(conversation_id, 10)] == [stored.id]


def test_insert_returns_generated_id_and_timestamp(store, conversation_id, base_time):
    store.ensure_conversation(conversation_id)

    first = store.insert_message(conversation_id, Sender.USER, "hello")
    second = store.insert_message(conversation_id, "ai", "hi there", created_at=base_time)

    assert first.id != second.id
    assert first.created_at.tzinfo is not None
    assert second.created_at == base_time
    assert second.sender is Sender.AI


def test_recent_messages_are_newest_n_in_ascending_order(store, add_messages, conversation_id):
    messages = add_messages(conversation_id, 5)

    recent = store.get_recent_messages(conversation_id, 3)

    assert [m.text for m in recent] == ["m3", "m4", "m5"]
    assert [m.id for m in recent] == [m.id for m in messages[2:]]
    assert all(m.created_at.tzinfo is not None for m in recent)


def test_recent_messages_are_scoped_to_conversation(store, add_messages, conversation_id):
    add_messages(conversation_id, 2)
    other = uuid.uuid4()
    add_messages(other, 3)

    assert [m.text for m in store.get_recent_messages(conversation_id, 10)] == ["m1", "m2"]
    assert store.get_recent_messages(uuid.uuid4(), 10) == []


def test_older_messages_are_strictly_before_cursor(store, add_messages, conversation_id):
    messages = add_messages(conversation_id, 5)
    m4 = messages[3]

    older = store.get_older_messages(conversation_id, m4.created_at, m4.id, 2)

    assert [m.text for m in older] == ["m2", "m3"]


def test_same_timestamp_is_ordered_by_id(store, conversation_id, base_time):
    store.ensure_conversation(conversation_id)
    tied = [store.insert_message(conversation_id, Sender.USER, f"t{i}", created_at=base_time) for i in range(4)]
    by_id = sorted(tied, key=lambda m: m.id)

    recent = store.get_recent_messages(conversation_id, 10)
    assert [m.id for m in recent] == [m.id for m in by_id]

    pivot = by_id[2]
    older = store.get_older_messages(conversation_id, pivot.created_at, pivot.id, 10)
    assert [m.id for m in older] == [m.id for m in by_id[:2]]


def test_timestamp_only_cursor_compares_on_timestamp(store, conversation_id, base_time):
    store.ensure_conversation(conversation_id)
    store.insert_message(conversation_id, Sender.USER, "before", created_at=base_time - timedelta(seconds=1))
    store.insert_message(conversation_id, Sender.USER, "same-a", created_at=base_time)
    store.insert_message(conversation_id, Sender.AI, "same-b", created_at=base_time)

    older = store.get_older_messages(conversation_id, base_time, None, 10)

    assert [m.text for m in older] == ["before"]


def test_ensure_after_messages_keeps_history_intact(store, session, add_messages, conversation_id):
    messages = add_messages(conversation_id, 3)

    store.ensure_conversation(conversation_id)

    assert _conversation_count(session, conversation_id) == 1
    assert [m.id for m in store.get_recent_messages(conversation_id, 10)] == [m.id for m in messages]


def test_messages_are_persisted_rows(session, add_messages, conversation_id):
    add_messages(conversation_id, 2)

    rows = session.exec(select(Message).where(Message.conversation_id == conversation_id)).all()

    assert {row.sender for row in rows} == {Sender.USER, Sender.AI}


def test_plain_insert_fallback_tolerates_duplicates(store, session, conversation_id, monkeypatch):
    monkeypatch.setattr(message_store, "_UPSERT_INSERTS", {})

    store.ensure_conversation(conversation_id)
    store.ensure_conversation(conversation_id)

    assert _conversation_count(session, conversation_id) == 1


def test_plain_insert_fallback_reraises_other_integrity_errors(store, session, conversation_id, monkeypatch):
    monkeypatch.setattr(message_store, "_UPSERT_INSERTS", {})
    monkeypatch.setattr(message_store, "utcnow", lambda: None)

    with pytest.raises(IntegrityError):
        store.ensure_conversation(conversation_id)

    assert _conversation_count(session, conversation_id) == 0
