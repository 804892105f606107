"""Extraction of JSON payloads from free-text model responses."""

from __future__ import annotations

import json
from typing import Any

from ophan.core.logging import get_logger

_logger = get_logger("parsing")


def extract_json_object(response: str) -> dict[str, Any] | None:
    """Return the outermost ``{...}`` object in ``response``, or None.

    Handles responses that wrap the JSON in markdown fences or prose.
    """
    json_start = response.find("{")
    json_end = response.rfind("}") + 1
    if json_start == -1 or json_end <= json_start:
        _logger.debug("no_json_in_response", response_length=len(response))
        return None
    try:
        data = json.loads(response[json_start:json_end])
    except json.JSONDecodeError as e:
        _logger.warning("json_parse_failed", error=str(e))
        return None
    return data if isinstance(data, dict) else None
