"""Shared request validation helpers for marketplace routers."""

from __future__ import annotations

import json
from typing import Any

from marketplace_service.core.exceptions import ServiceError


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def require_actor(actor_id: str | None) -> str:
    """Return the caller's actor id from the X-Actor-Id header."""
    if actor_id is None or not actor_id.strip():
        raise ServiceError(
            "MISSING_ACTOR",
            "Missing X-Actor-Id header",
            401,
            {},
        )
    return actor_id.strip()


def require_admin(actor_id: str | None, admin_id: str) -> str:
    """Return the actor id if it is the platform admin."""
    actor = require_actor(actor_id)
    if actor != admin_id:
        raise ServiceError(
            "NOT_AUTHORIZED",
            "Only the platform admin can perform this operation",
            403,
            {"actor_id": actor},
        )
    return actor


def extract_field(data: dict[str, Any], field_name: str) -> Any:
    """Extract a required, non-null field from a parsed JSON body."""
    if field_name not in data:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"Missing required field: {field_name}",
            400,
            {"field": field_name},
        )

    value = data[field_name]
    if value is None:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"Field '{field_name}' must not be null",
            400,
            {"field": field_name},
        )
    return value


def extract_string(data: dict[str, Any], field_name: str, *, required: bool = True) -> str:
    """Extract a string field; optional fields default to the empty string."""
    if not required and data.get(field_name) is None:
        return ""

    value = extract_field(data, field_name)
    if not isinstance(value, str):
        raise ServiceError(
            "VALIDATION_ERROR",
            f"Field '{field_name}' must be a string",
            400,
            {"field": field_name},
        )
    return value


def parse_int_param(
    value: str | None,
    name: str,
    *,
    default: int | None,
    minimum: int,
    maximum: int | None = None,
) -> int | None:
    """Parse an integer query parameter, clamping to ``maximum``."""
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{name} must be an integer",
            400,
            {"field": name, "value": value},
        ) from None
    if parsed < minimum:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{name} must be >= {minimum}",
            400,
            {"field": name, "value": parsed},
        )
    if maximum is not None:
        parsed = min(parsed, maximum)
    return parsed
