"""Payload normalization and aggregate attribution for task commands.

Command producers accept loosely typed payloads. Everything is normalized up
front into one mapping so the rest of the write path only deals with dicts:

==========================  ==============================================
input                       normalized payload
==========================  ==============================================
``Mapping``                 ``dict(payload)``
JSON text of an object      the decoded object
any other ``str``           ``{"data": payload}``
``bytes``                   UTF-8 text normalized as above; undecodable
                            bytes become ``{"data": payload}``
object with ``.body``       ``body`` normalized the same way
anything else               ``{"data": payload}``
==========================  ==============================================
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any
from uuid import uuid4

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

UNKNOWN_AGGREGATE_TYPE = "Unknown"


def is_uuid(value: Any) -> bool:
    """Whether ``value`` is a UUID-shaped string."""
    return isinstance(value, str) and UUID_PATTERN.match(value) is not None


def normalize_payload(payload: Any) -> dict[str, Any]:
    """Coerce a command payload into a mapping (see module table)."""
    if isinstance(payload, Mapping):
        return dict(payload)
    if isinstance(payload, bytes | bytearray):
        try:
            text = bytes(payload).decode("utf-8")
        except UnicodeDecodeError:
            return {"data": bytes(payload)}
        return normalize_payload(text)
    if isinstance(payload, str):
        try:
            decoded = json.loads(payload)
        except ValueError:
            return {"data": payload}
        return dict(decoded) if isinstance(decoded, Mapping) else {"data": payload}
    body = getattr(payload, "body", None)
    if body is not None and payload is not body:
        return normalize_payload(body)
    return {"data": payload}


def extract_command_type(payload: Mapping[str, Any], route: str) -> str:
    """The payload's ``type`` when it is a non-empty string, else ``route``."""
    command_type = payload.get("type")
    if isinstance(command_type, str) and command_type:
        return command_type
    return route


def extract_command_args(payload: Mapping[str, Any]) -> Any:
    """The payload's ``args`` when present, else the whole payload."""
    return payload["args"] if "args" in payload else payload


def extract_aggregate_id(args: Any) -> str:
    """Best guess at the entity id among positional command arguments.

    Commands conventionally carry ``(process_id, entity_id, ...)``, so the
    second argument wins when it is UUID-shaped, then the first. Mappings
    are treated as their values in order. Falls back to a fresh UUID.

    Note: a business argument that merely looks like a UUID is taken as the
    entity id. Replace with an explicit envelope field once commands carry one.
    """
    if isinstance(args, Mapping):
        values: list[Any] = list(args.values())
    elif isinstance(args, Sequence) and not isinstance(args, str | bytes):
        values = list(args)
    else:
        values = []

    for index in (1, 0):
        if len(values) > index and is_uuid(values[index]):
            return values[index]
    return str(uuid4())


def extract_aggregate_type(type_name: str) -> str:
    """Capitalized first dotted segment, ``"Unknown"`` when empty.

    >>> extract_aggregate_type("article.create.command")
    'Article'
    >>> extract_aggregate_type("")
    'Unknown'
    """
    head = type_name.split(".", 1)[0].strip()
    if not head:
        return UNKNOWN_AGGREGATE_TYPE
    return head[0].upper() + head[1:]


__all__ = [
    "UNKNOWN_AGGREGATE_TYPE",
    "UUID_PATTERN",
    "extract_aggregate_id",
    "extract_aggregate_type",
    "extract_command_args",
    "extract_command_type",
    "is_uuid",
    "normalize_payload",
]
