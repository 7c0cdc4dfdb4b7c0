"""
Carrier webhook reconciliation.

Turns Telnyx webhook envelopes (``{"data": {"event_type", "payload"}}``) into
writes against the message store:

- ``message.received`` inserts an inbound record
- ``message.delivery_status`` updates the status of the record carrying the
  same provider message id
- any other event type is acknowledged without touching the store

The reconciler keeps no state between calls. The last status applied wins;
events are not reordered.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from starlette.concurrency import run_in_threadpool

from smsrelay.errors import MalformedWebhookError
from smsrelay.gateway import phone_number
from smsrelay.models import KNOWN_STATUSES, Direction, MessageRecord
from smsrelay.storage import MessageStore

logger = logging.getLogger(__name__)

EVENT_MESSAGE_RECEIVED = "message.received"
EVENT_DELIVERY_STATUS = "message.delivery_status"

DEFAULT_INBOUND_STATUS = "received"


@dataclass(frozen=True)
class ReconcileOutcome:
    event_type: Optional[str]
    provider_message_id: Optional[str]
    result: str  # inserted, updated, unmatched, skipped, ignored


# =============================================================================
# Delivery status extraction
# =============================================================================

def _non_empty(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def status_from_recipient_list(payload: dict) -> Optional[str]:
    recipients = payload.get("to")
    if isinstance(recipients, list) and recipients and isinstance(recipients[0], dict):
        return _non_empty(recipients[0].get("status"))
    return None


def status_from_recipient_object(payload: dict) -> Optional[str]:
    recipient = payload.get("to")
    if isinstance(recipient, dict):
        return _non_empty(recipient.get("status"))
    return None


def status_from_delivery_status(payload: dict) -> Optional[str]:
    return _non_empty(payload.get("delivery_status"))


def status_from_status(payload: dict) -> Optional[str]:
    return _non_empty(payload.get("status"))


# Tried in order; the first non-empty result wins.
STATUS_EXTRACTORS: Tuple[Callable[[dict], Optional[str]], ...] = (
    status_from_recipient_list,
    status_from_recipient_object,
    status_from_delivery_status,
    status_from_status,
)


def extract_delivery_status(payload: dict) -> Optional[str]:
    for extractor in STATUS_EXTRACTORS:
        status = extractor(payload)
        if status is not None:
            return status
    return None


def correlation_id(payload: dict) -> Optional[str]:
    return _non_empty(payload.get("id")) or _non_empty(payload.get("message_id"))


# =============================================================================
# Envelope parsing
# =============================================================================

def parse_envelope(raw_body: bytes) -> Tuple[Optional[str], dict]:
    """
    Decode a webhook body into ``(event_type, payload)``.

    Raises:
        MalformedWebhookError: the body is not a JSON object.
    """
    try:
        event = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError, RecursionError) as e:
        raise MalformedWebhookError(detail=str(e)) from e
    if not isinstance(event, dict):
        raise MalformedWebhookError(detail="top-level JSON value is not an object")

    data = event.get("data")
    if not isinstance(data, dict):
        data = {}
    payload = data.get("payload")
    if not isinstance(payload, dict):
        payload = {}
    return _non_empty(data.get("event_type")), payload


def inbound_record(payload: dict) -> MessageRecord:
    return MessageRecord(
        direction=Direction.INBOUND.value,
        from_number=phone_number(payload.get("from")) or "",
        to_number=phone_number(payload.get("to")) or "",
        body=payload.get("text") or "",
        status=_non_empty(payload.get("status")) or DEFAULT_INBOUND_STATUS,
        provider_message_id=_non_empty(payload.get("id")),
    )


class WebhookReconciler:
    def __init__(self, store: MessageStore):
        self.store = store

    async def handle(self, raw_body: bytes) -> ReconcileOutcome:
        """
        Apply one webhook delivery to the store.

        Raises:
            MalformedWebhookError: the body could not be parsed.
            StorageError: the store rejected the write.
        """
        event_type, payload = parse_envelope(raw_body)

        if event_type == EVENT_MESSAGE_RECEIVED:
            return await self._message_received(payload)
        if event_type == EVENT_DELIVERY_STATUS:
            return await self._delivery_status(payload)

        logger.info(f"Ignoring webhook event type: {event_type}")
        return ReconcileOutcome(event_type, correlation_id(payload), "ignored")

    async def _message_received(self, payload: dict) -> ReconcileOutcome:
        record = inbound_record(payload)
        await run_in_threadpool(self.store.insert, record)
        logger.info(f"Inbound message stored: provider_message_id={record.provider_message_id}")
        return ReconcileOutcome(EVENT_MESSAGE_RECEIVED, record.provider_message_id, "inserted")

    async def _delivery_status(self, payload: dict) -> ReconcileOutcome:
        message_id = correlation_id(payload)
        if message_id is None:
            logger.warning("Delivery status event without message id, not applied")
            return ReconcileOutcome(EVENT_DELIVERY_STATUS, None, "skipped")

        status = extract_delivery_status(payload)
        if status is None:
            logger.warning(f"Delivery status event without status, not applied: {message_id}")
            return ReconcileOutcome(EVENT_DELIVERY_STATUS, message_id, "skipped")
        if status not in KNOWN_STATUSES:
            logger.warning(f"Unrecognized delivery status '{status}' for {message_id}, storing as-is")

        affected = await run_in_threadpool(self.store.update_status, message_id, status)
        if affected == 0:
            logger.info(f"No message to reconcile yet for {message_id}")
            return ReconcileOutcome(EVENT_DELIVERY_STATUS, message_id, "unmatched")
        return ReconcileOutcome(EVENT_DELIVERY_STATUS, message_id, "updated")
