"""Unit tests for key namespacing and timestamp encoding."""

from datetime import datetime, timedelta, timezone

import pytest

from throttle_store.core.keys import KeyNamespacer, hash_key_for_logging, make_key
from throttle_store.utils.timestamps import decode_timestamp, encode_timestamp


class TestMakeKey:
    def test_concatenates_prefix_and_id(self) -> None:
        assert make_key("api", "ip:10.0.0.1") == "api|throttle:ip:10.0.0.1"

    def test_accepts_empty_values(self) -> None:
        assert make_key("", "") == "|throttle:"

    def test_non_string_ids_are_stringified(self) -> None:
        assert make_key("api", 42) == "api|throttle:42"


class TestKeyNamespacer:
    def test_key_uses_fixed_prefix(self) -> None:
        namespacer = KeyNamespacer("api")
        assert namespacer.key("user-1") == make_key("api", "user-1")

    def test_rejects_prefix_with_terminator(self) -> None:
        with pytest.raises(ValueError):
            KeyNamespacer("api|v2")

    @pytest.mark.parametrize(
        ("first", "second"),
        [
            (("a", "b|throttle:c"), ("a|throttle:b", "c")),
            (("a:throttle", "x"), ("a", "throttle:x")),
            (("", "a"), ("a", "")),
        ],
    )
    def test_distinct_pairs_never_collide(self, first, second) -> None:
        keys = set()
        for prefix, throttle_id in (first, second):
            try:
                keys.add(KeyNamespacer(prefix).key(throttle_id))
            except ValueError:
                # Prefixes that could collide are refused up front.
                keys.add(("rejected", prefix))
        assert len(keys) == 2

    def test_prefix_is_immutable(self) -> None:
        namespacer = KeyNamespacer("api")
        with pytest.raises(AttributeError):
            namespacer.prefix = "other"  # type: ignore[misc]


def test_hash_key_for_logging_hides_identifier() -> None:
    digest = hash_key_for_logging("ip:10.0.0.1")

    assert len(digest) == 16
    assert "10.0.0.1" not in digest
    assert digest == hash_key_for_logging("ip:10.0.0.1")


class TestTimestamps:
    @pytest.mark.parametrize(
        "value",
        [
            datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc),
            datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone(timedelta(hours=-3))),
            datetime(2024, 5, 1, 12, 0, 0),
        ],
    )
    def test_round_trip(self, value: datetime) -> None:
        decoded = decode_timestamp(encode_timestamp(value))
        assert decoded == value
        assert decoded.tzinfo == value.tzinfo

    def test_encoded_form_is_json_string(self) -> None:
        value = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert encode_timestamp(value) == '"2024-05-01T12:00:00+00:00"'

    def test_decodes_bytes(self) -> None:
        assert decode_timestamp(b'"2024-05-01T12:00:00+00:00"') == datetime(
            2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc
        )

    @pytest.mark.parametrize("raw", ["", "2024-05-01", "42", '"soon"', "null"])
    def test_rejects_invalid_values(self, raw: str) -> None:
        with pytest.raises(ValueError):
            decode_timestamp(raw)
