"""Tests for document <-> entity conversion."""

from datetime import datetime, timedelta, timezone

from bson.timestamp import Timestamp

from synaptide.storage.adapter import (
    EPOCH,
    assistant_timestamp,
    document_to_message,
    document_to_profile,
    document_to_user,
    exchange_to_messages,
    message_to_document,
    profile_to_document,
    to_datetime,
    user_to_document,
)
from synaptide.storage.merge import seed_profile
from synaptide.storage.models import Message, ProfilePatch, Role, User

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestToDatetime:
    def test_aware_datetime_kept(self):
        assert to_datetime(T0) == T0

    def test_naive_datetime_is_utc(self):
        result = to_datetime(datetime(2024, 5, 1, 12, 0, 0))
        assert result == T0
        assert result.tzinfo is not None

    def test_other_timezone_converted(self):
        plus_two = timezone(timedelta(hours=2))
        result = to_datetime(datetime(2024, 5, 1, 14, 0, 0, tzinfo=plus_two))
        assert result == T0
        assert result.utcoffset() == timedelta(0)

    def test_epoch_seconds(self):
        assert to_datetime(T0.timestamp()) == T0

    def test_epoch_milliseconds(self):
        assert to_datetime(int(T0.timestamp() * 1000)) == T0

    def test_iso_string_with_z(self):
        assert to_datetime("2024-05-01T12:00:00Z") == T0

    def test_iso_string_with_offset(self):
        assert to_datetime("2024-05-01T12:00:00+00:00") == T0

    def test_bson_timestamp(self):
        assert to_datetime(Timestamp(int(T0.timestamp()), 1)) == T0

    def test_object_with_to_datetime(self):
        class Structured:
            def to_datetime(self):
                return datetime(2024, 5, 1, 12, 0, 0)

        assert to_datetime(Structured()) == T0

    def test_out_of_range_epoch_returns_none(self):
        assert to_datetime(float("nan")) is None
        assert to_datetime(1e20) is None
        assert to_datetime(float("inf")) is None

    def test_garbage_returns_none(self):
        assert to_datetime("not a date") is None
        assert to_datetime(None) is None
        assert to_datetime(True) is None
        assert to_datetime(["2024"]) is None


class TestUserDocuments:
    def test_roundtrip(self):
        user = User(id="u1", name="Ada", created_at=T0, last_seen=T0)
        assert document_to_user(user_to_document(user)) == user

    def test_legacy_camel_case_keys(self):
        doc = {"_id": "u1", "name": "Ada", "createdAt": "2024-05-01T12:00:00Z", "lastSeen": T0}
        user = document_to_user(doc)
        assert user.created_at == T0
        assert user.last_seen == T0

    def test_missing_last_seen_defaults_to_created(self):
        user = document_to_user({"_id": "u1", "name": "Ada", "created_at": T0})
        assert user.last_seen == T0


class TestMessageDocuments:
    def test_roundtrip(self):
        message = Message(id="m1", user_id="u1", role=Role.USER, content="hi", timestamp=T0)
        assert document_to_message(message_to_document(message)) == message

    def test_legacy_user_id_key(self):
        doc = {"_id": "m1", "userId": "u1", "role": "assistant", "content": "hey", "timestamp": T0}
        message = document_to_message(doc)
        assert message.user_id == "u1"
        assert message.role is Role.ASSISTANT

    def test_unknown_role_becomes_system(self):
        doc = {"_id": "m1", "user_id": "u1", "role": "tool", "content": "x", "timestamp": T0}
        assert document_to_message(doc).role is Role.SYSTEM

    def test_missing_timestamp_is_epoch(self):
        doc = {"_id": "m1", "user_id": "u1", "role": "user", "content": "x"}
        assert document_to_message(doc).timestamp == EPOCH


class TestExchangeDocuments:
    def test_full_exchange_yields_two_turns(self):
        doc = {"_id": "d1", "user_id": "u1", "user_input": "hi", "ai_response": "hello", "timestamp": T0}
        user_turn, reply = exchange_to_messages(doc)

        assert user_turn.id == "d1"
        assert user_turn.role is Role.USER
        assert user_turn.content == "hi"
        assert reply.id == "d1_ai"
        assert reply.role is Role.ASSISTANT
        assert reply.content == "hello"
        assert reply.timestamp > user_turn.timestamp

    def test_same_instant_reply_sorts_after_user(self):
        doc = {
            "_id": "d1",
            "user_id": "u1",
            "user_input": "hi",
            "ai_response": "hello",
            "timestamp": T0,
            "ai_timestamp": T0,
        }
        messages = sorted(exchange_to_messages(doc), key=lambda m: m.timestamp)
        assert [m.role for m in messages] == [Role.USER, Role.ASSISTANT]

    def test_later_reply_keeps_its_timestamp(self):
        later = T0 + timedelta(seconds=3)
        doc = {"_id": "d1", "timestamp": T0, "ai_timestamp": later}
        assert assistant_timestamp(doc) == later

    def test_missing_reply_yields_user_turn_only(self):
        doc = {"_id": "d1", "user_id": "u1", "user_input": "hi", "timestamp": T0}
        messages = exchange_to_messages(doc)
        assert [m.role for m in messages] == [Role.USER]

    def test_reply_only_document(self):
        doc = {"_id": "d1", "user_id": "u1", "ai_response": "hello", "timestamp": T0}
        messages = exchange_to_messages(doc)
        assert [m.id for m in messages] == ["d1_ai"]

    def test_empty_user_input_is_omitted(self):
        doc = {"_id": "d1", "user_id": "u1", "user_input": "", "ai_response": "hello", "timestamp": T0}
        assert [m.role for m in exchange_to_messages(doc)] == [Role.ASSISTANT]

    def test_flagged_document_keeps_empty_halves(self):
        doc = {
            "_id": "d1",
            "user_id": "u1",
            "user_input": "",
            "ai_response": "",
            "ai_only": False,
            "timestamp": T0,
        }
        assert [(m.role, m.content) for m in exchange_to_messages(doc)] == [
            (Role.USER, ""),
            (Role.ASSISTANT, ""),
        ]

    def test_reply_only_flag_hides_user_half(self):
        doc = {"_id": "d1", "user_id": "u1", "ai_response": "", "ai_only": True, "timestamp": T0}
        (message,) = exchange_to_messages(doc)
        assert message.id == "d1_ai"
        assert message.content == ""

    def test_plain_role_document(self):
        doc = {"_id": "d1", "user_id": "u1", "role": "system", "content": "be brief", "timestamp": T0}
        (message,) = exchange_to_messages(doc)
        assert message.role is Role.SYSTEM
        assert message.content == "be brief"

    def test_user_id_falls_back_to_argument(self):
        doc = {"_id": "d1", "user_input": "hi", "timestamp": T0}
        (message,) = exchange_to_messages(doc, "u9")
        assert message.user_id == "u9"


class TestProfileDocuments:
    def test_roundtrip(self):
        profile = seed_profile(
            "p1", "u1", ProfilePatch(interests=["chess"], communication_style="formal"), T0
        )
        doc = {"_id": "p1", **profile_to_document(profile)}
        assert document_to_profile(doc) == profile

    def test_legacy_interests_key(self):
        doc = {"_id": "p1", "user_id": "u1", "short_term_interests": ["chess"]}
        assert document_to_profile(doc).interests == ["chess"]

    def test_new_interests_key_wins(self):
        doc = {"_id": "p1", "user_id": "u1", "interests": ["go"], "short_term_interests": ["chess"]}
        assert document_to_profile(doc).interests == ["go"]

    def test_empty_new_key_still_wins(self):
        doc = {"_id": "p1", "user_id": "u1", "interests": [], "short_term_interests": ["chess"]}
        assert document_to_profile(doc).interests == []

    def test_no_interests_defaults_empty(self):
        assert document_to_profile({"_id": "p1", "user_id": "u1"}).interests == []

    def test_legacy_personality_traits(self):
        doc = {"_id": "p1", "user_id": "u1", "bio": {"personality_traits": ["curious", "formal"]}}
        profile = document_to_profile(doc)
        assert profile.traits == ["curious", "formal"]
        assert profile.communication_style == "curious"

    def test_explicit_style_wins_over_traits(self):
        doc = {
            "_id": "p1",
            "user_id": "u1",
            "communication_style": "formal",
            "traits": ["casual", "formal"],
        }
        assert document_to_profile(doc).communication_style == "formal"

    def test_defaults(self):
        profile = document_to_profile({"_id": "p1", "userId": "u1"})
        assert profile.user_id == "u1"
        assert profile.communication_style == "neutral"
        assert profile.preferences == {}
        assert profile.version == 1
        assert profile.last_updated is None
        assert profile.version_history == []

    def test_legacy_history_and_timestamp_keys(self):
        doc = {
            "_id": "p1",
            "user_id": "u1",
            "version": 4,
            "lastUpdated": T0,
            "versionHistory": [{"timestamp": T0, "changes": {"interests": ["chess"]}}],
        }
        profile = document_to_profile(doc)
        assert profile.version == 4
        assert profile.last_updated == T0
        assert profile.version_history[0].changes == {"interests": ["chess"]}
