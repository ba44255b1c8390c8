"""Tests for LimitsValidator."""

from __future__ import annotations

from parley.limits.validator import LimitsValidator
from parley.models.config import LimitsConfig
from parley.models.content import LimitKind
from parley.models.session import ItemKind, Session
from tests.conftest import BASE_TS, USER_ID, make_item


def _session(*kinds: ItemKind) -> Session:
    items = [
        make_item(BASE_TS + i, kind=kind, file_id=f"f{i}" if kind != ItemKind.TEXT else None)
        for i, kind in enumerate(kinds)
    ]
    return Session(user_id=USER_ID, messages=items)


class TestValidateNewMessage:
    def test_accepts_below_limits(self, validator):
        """A text item is admitted into an empty session."""
        result = validator.validate_new_message(_session(), make_item(BASE_TS))
        assert result.valid
        assert result.limit_kind is None
        assert result.reason is None

    def test_total_limit(self):
        """A full buffer rejects any item with max_messages."""
        validator = LimitsValidator(LimitsConfig(max_messages=3))
        session = _session(ItemKind.TEXT, ItemKind.TEXT, ItemKind.TEXT)
        result = validator.validate_new_message(session, make_item(BASE_TS + 10))
        assert not result.valid
        assert result.limit_kind == LimitKind.MAX_MESSAGES
        assert "3" in result.reason

    def test_total_limit_checked_before_image_limit(self):
        """The total count short-circuits before kind-specific checks."""
        validator = LimitsValidator(LimitsConfig(max_messages=2, max_images=1))
        session = _session(ItemKind.IMAGE, ItemKind.TEXT)
        candidate = make_item(BASE_TS + 5, kind=ItemKind.IMAGE, file_id="img")
        result = validator.validate_new_message(session, candidate)
        assert result.limit_kind == LimitKind.MAX_MESSAGES

    def test_image_limit(self):
        """Images beyond max_images are rejected; text still fits."""
        validator = LimitsValidator(LimitsConfig(max_images=2))
        session = _session(ItemKind.IMAGE, ItemKind.IMAGE)
        image = make_item(BASE_TS + 5, kind=ItemKind.IMAGE, file_id="img")
        assert validator.validate_new_message(session, image).limit_kind == LimitKind.MAX_IMAGES
        assert validator.validate_new_message(session, make_item(BASE_TS + 6)).valid

    def test_voice_limit(self):
        """Voice items beyond max_voice are rejected."""
        validator = LimitsValidator(LimitsConfig(max_voice=1))
        session = _session(ItemKind.VOICE)
        voice = make_item(BASE_TS + 5, kind=ItemKind.VOICE, file_id="v", duration=3)
        assert validator.validate_new_message(session, voice).limit_kind == LimitKind.MAX_VOICE

    def test_voice_too_long_regardless_of_counts(self, validator):
        """An over-long voice item is rejected even in an empty session."""
        voice = make_item(BASE_TS, kind=ItemKind.VOICE, file_id="v", duration=61)
        result = validator.validate_new_message(_session(), voice)
        assert result.limit_kind == LimitKind.VOICE_TOO_LONG
        assert "60" in result.reason

    def test_voice_at_max_duration_accepted(self, validator):
        """Duration equal to the maximum is allowed."""
        voice = make_item(BASE_TS, kind=ItemKind.VOICE, file_id="v", duration=60)
        assert validator.validate_new_message(_session(), voice).valid

    def test_validation_does_not_mutate_session(self, validator):
        """Checking a candidate leaves the buffer untouched."""
        session = _session(ItemKind.TEXT)
        validator.validate_new_message(session, make_item(BASE_TS + 9))
        assert len(session.messages) == 1


class TestProgressMessage:
    def test_counts_images_and_omits_voice(self, validator):
        """3 total with 1 image renders both counters and no voice fragment."""
        text = validator.format_progress_message(
            _session(ItemKind.TEXT, ItemKind.IMAGE, ItemKind.TEXT)
        )
        assert "3/50" in text
        assert "1/5 изображений" in text
        assert "голосов" not in text
        assert "/analyze" in text

    def test_voice_counter(self, validator):
        """Voice counts appear once any voice item is buffered."""
        text = validator.format_progress_message(_session(ItemKind.VOICE))
        assert "1/7 голосовых" in text
        assert "изображений" not in text

    def test_empty_session_has_no_hint(self, validator):
        """A session with nothing buffered never shows the analyze hint."""
        text = validator.format_progress_message(_session())
        assert "0/50" in text
        assert "/analyze" not in text
