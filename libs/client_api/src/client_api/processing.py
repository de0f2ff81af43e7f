"""Post-processing of decoded response bodies: date hydration and key checks."""

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from client_api.errors import parse_error

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Could not parse event timestamp %r", value)
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def convert_doc(doc: Any) -> Any:
    """Hydrate ``events.<name>.at`` timestamps into ``datetime`` objects.

    Args:
        doc: Decoded item. Anything other than a mapping is returned as is.

    Returns:
        A new dict with every event's ``at`` replaced by a ``datetime``, or
        ``None`` when it is missing or unparseable. The input is not modified.
    """
    if not isinstance(doc, Mapping):
        return doc
    events = doc.get("events")
    if not isinstance(events, Mapping):
        return dict(doc)
    hydrated = {
        name: {**event, "at": _parse_timestamp(event.get("at"))}
        if isinstance(event, Mapping)
        else event
        for name, event in events.items()
    }
    return {**doc, "events": hydrated}


def process_one(response: Any) -> Any:
    """Post-process a single-item response."""
    return convert_doc(response)


def process_array(response: Any) -> list[Any]:
    """Post-process a list response.

    Raises:
        ClientApiError: ``parse`` kind if ``response`` is not a list.
    """
    if not isinstance(response, list):
        logger.error("Response was not an array: %s", type(response).__name__)
        raise parse_error(
            "Response was not an array", response_type=type(response).__name__
        )
    return [convert_doc(item) for item in response]


def _check_item(item: Any, pk_type: str) -> None:
    key = item.get("key") if isinstance(item, Mapping) else None
    if not isinstance(key, Mapping) or not key.get("kt"):
        raise parse_error("Item does not have a valid key", pk_type=pk_type)
    if key["kt"] != pk_type:
        raise parse_error(
            "Item has incorrect primary key type",
            expected=pk_type,
            actual=key["kt"],
        )


def validate_pk(item_or_items: Any, pk_type: str) -> Any:
    """Check that every item carries a ``key`` whose ``kt`` equals ``pk_type``.

    Returns:
        The input, unchanged.

    Raises:
        ClientApiError: ``parse`` kind for a missing or mismatched key.
    """
    if isinstance(item_or_items, list):
        for item in item_or_items:
            _check_item(item, pk_type)
    else:
        _check_item(item_or_items, pk_type)
    return item_or_items
