from __future__ import annotations

import uuid

import pytest

from switchyard.exceptions import (
    ConversationNotFoundError,
    InvalidSwitchRequestError,
    ModelNotFoundError,
    ProviderInactiveError,
    ProviderNotFoundError,
)
from switchyard.models import Conversation
from switchyard.services import conversation_service


def test_create_uses_default_model(db_session):
    conversation = conversation_service.create_conversation(db_session, "openai", title="demo")

    assert conversation.provider_name == "openai"
    assert conversation.model_name == "gpt-4o"
    assert conversation.title == "demo"
    assert conversation.total_cost == 0
    assert conversation.total_messages == 0


def test_create_with_system_prompt(db_session):
    conversation = conversation_service.create_conversation(
        db_session, "xai", system_prompt="You are terse."
    )

    messages = conversation_service.get_messages(db_session, conversation)
    assert [(m.sequence, m.role, m.content) for m in messages] == [(1, "system", "You are terse.")]


@pytest.mark.parametrize(
    "provider, model, error",
    [
        ("nope", None, ProviderNotFoundError),
        ("retired", None, ProviderInactiveError),
        ("openai", "gpt-99", ModelNotFoundError),
    ],
)
def test_create_rejects_invalid_targets(db_session, provider, model, error):
    with pytest.raises(error):
        conversation_service.create_conversation(db_session, provider, model)

    assert db_session.query(Conversation).count() == 0


def test_get_conversation(db_session):
    created = conversation_service.create_conversation(db_session, "openai")

    assert conversation_service.get_conversation(db_session, str(created.id)).id == created.id
    assert conversation_service.get_conversation(db_session, created.id).id == created.id


@pytest.mark.parametrize("key", ["not-a-uuid", str(uuid.uuid4())])
def test_get_missing_conversation(db_session, key):
    with pytest.raises(ConversationNotFoundError) as excinfo:
        conversation_service.get_conversation(db_session, key)

    assert excinfo.value.conversation_id == key


def test_messages_get_consecutive_sequences(db_session):
    conversation = conversation_service.create_conversation(db_session, "openai", system_prompt="hi")

    user = conversation_service.append_message(db_session, conversation, "user", "question", token_count=5)
    reply = conversation_service.append_message(db_session, conversation, "assistant", "answer")

    assert (user.sequence, reply.sequence) == (2, 3)
    assert user.provider_name is None
    assert (reply.provider_name, reply.model_name) == ("openai", "gpt-4o")
    assert user.token_count == 5


def test_unknown_role_is_rejected(db_session):
    conversation = conversation_service.create_conversation(db_session, "openai")

    with pytest.raises(InvalidSwitchRequestError):
        conversation_service.append_message(db_session, conversation, "tool", "{}")
