"""Tests for payload normalization and aggregate attribution helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from outbox_service.infra.outbox.naming import (
    UNKNOWN_AGGREGATE_TYPE,
    extract_aggregate_id,
    extract_aggregate_type,
    extract_command_args,
    extract_command_type,
    is_uuid,
    normalize_payload,
)

FIRST = "11111111-2222-3333-4444-555555555555"
SECOND = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"


@dataclass
class Envelope:
    body: Any


class TestNormalizePayload:
    """Tests for normalize_payload."""

    @pytest.mark.parametrize(
        ("payload", "expected"),
        [
            ({"type": "a.b"}, {"type": "a.b"}),
            ('{"type": "a.b", "args": [1]}', {"type": "a.b", "args": [1]}),
            ("[1, 2]", {"data": "[1, 2]"}),
            ("not json", {"data": "not json"}),
            (b'{"k": "v"}', {"k": "v"}),
            (Envelope(body='{"k": 1}'), {"k": 1}),
            (Envelope(body={"k": 2}), {"k": 2}),
            (42, {"data": 42}),
        ],
    )
    def test_normalization(self, payload, expected):
        """Every payload shape becomes a mapping."""
        assert normalize_payload(payload) == expected

    def test_undecodable_bytes_are_wrapped(self):
        """Binary payloads that are not UTF-8 are kept as opaque data."""
        assert normalize_payload(b"\xff\xfe binary") == {"data": b"\xff\xfe binary"}

    def test_undecodable_body_is_wrapped(self):
        assert normalize_payload(Envelope(body=bytearray(b"\x80\x81"))) == {"data": b"\x80\x81"}

    def test_returns_copy_of_mapping(self):
        """The caller's mapping is not mutated through the result."""
        original = {"type": "a.b"}

        result = normalize_payload(original)
        result["extra"] = True

        assert "extra" not in original


class TestCommandFields:
    """Tests for extract_command_type / extract_command_args."""

    def test_type_from_payload(self):
        assert extract_command_type({"type": "article.reindex"}, "bus") == "article.reindex"

    @pytest.mark.parametrize("payload", [{}, {"type": ""}, {"type": 5}])
    def test_type_falls_back_to_route(self, payload):
        """Missing, empty or non-string types use the route."""
        assert extract_command_type(payload, "bus") == "bus"

    def test_args_present(self):
        assert extract_command_args({"args": [1, 2]}) == [1, 2]

    def test_args_missing_uses_whole_payload(self):
        payload = {"user_id": SECOND}

        assert extract_command_args(payload) is payload


class TestAggregateId:
    """Tests for extract_aggregate_id."""

    def test_second_argument_preferred(self):
        """(process_id, entity_id) yields the entity id."""
        assert extract_aggregate_id([FIRST, SECOND]) == SECOND

    def test_first_argument_fallback(self):
        assert extract_aggregate_id([FIRST, "not-a-uuid"]) == FIRST

    def test_mapping_values_in_order(self):
        assert extract_aggregate_id({"process": "p", "entity": SECOND}) == SECOND

    @pytest.mark.parametrize("args", [[], ["x", "y"], "plain", None, 17])
    def test_random_fallback(self, args):
        """Without UUID-shaped arguments a fresh UUID is generated."""
        result = extract_aggregate_id(args)

        assert is_uuid(result)
        assert result not in {FIRST, SECOND}

    def test_uppercase_uuid_accepted(self):
        assert extract_aggregate_id([SECOND.upper()]) == SECOND.upper()


class TestAggregateType:
    """Tests for extract_aggregate_type."""

    @pytest.mark.parametrize(
        ("type_name", "expected"),
        [
            ("article.create.command", "Article"),
            ("user", "User"),
            ("mediaAsset.resize", "MediaAsset"),
            ("", UNKNOWN_AGGREGATE_TYPE),
            (".orphan", UNKNOWN_AGGREGATE_TYPE),
        ],
    )
    def test_first_segment_capitalized(self, type_name, expected):
        assert extract_aggregate_type(type_name) == expected
