"""
Outbound send path: validate, resolve the sender, submit to the carrier, log.

A message is written to the store only after the carrier has accepted it, so
failed submissions never leave a record behind.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from starlette.concurrency import run_in_threadpool

from smsrelay.config import Settings
from smsrelay.errors import GatewayError, StorageError, ValidationError
from smsrelay.gateway import CarrierGateway, SenderIdentity
from smsrelay.metrics import record_outbound_send
from smsrelay.models import Direction, MessageRecord
from smsrelay.storage import MessageStore

logger = logging.getLogger(__name__)

DEFAULT_OUTBOUND_STATUS = "queued"


@dataclass(frozen=True)
class SendResult:
    provider_id: Optional[str]
    status: str


def resolve_sender(settings: Settings) -> SenderIdentity:
    """
    Pick the sender identity from configuration.

    Raises:
        ValidationError: neither a messaging profile nor a sender number is set.
    """
    if settings.TELNYX_MESSAGING_PROFILE_ID:
        return SenderIdentity(messaging_profile_id=settings.TELNYX_MESSAGING_PROFILE_ID)
    if settings.FROM_NUMBER:
        return SenderIdentity(from_number=settings.FROM_NUMBER)
    raise ValidationError("Configure FROM_NUMBER or TELNYX_MESSAGING_PROFILE_ID in .env")


class SendCoordinator:
    def __init__(self, gateway: CarrierGateway, store: MessageStore, settings: Settings):
        self.gateway = gateway
        self.store = store
        self.settings = settings

    async def send_message(self, to: Optional[str], body: Optional[str]) -> SendResult:
        """
        Send one SMS and log it as an outbound record.

        Raises:
            ValidationError: ``to`` or ``body`` is empty, or no sender is configured.
            GatewayError: the carrier did not accept the message. Nothing is stored.
            StorageError: the carrier accepted the message but it could not be logged.
        """
        if not to or not body:
            record_outbound_send("validation_error")
            raise ValidationError("Missing to or body")

        try:
            sender = resolve_sender(self.settings)
        except ValidationError:
            record_outbound_send("validation_error")
            raise

        try:
            receipt = await self.gateway.send(to, body, sender)
        except GatewayError:
            record_outbound_send("gateway_error")
            raise

        status = receipt.status or DEFAULT_OUTBOUND_STATUS
        record = MessageRecord(
            direction=Direction.OUTBOUND.value,
            from_number=receipt.from_number or self.settings.FROM_NUMBER or "",
            to_number=receipt.to_number or to,
            body=body,
            status=status,
            provider_message_id=receipt.provider_id,
        )

        try:
            await run_in_threadpool(self.store.insert, record)
        except StorageError:
            # The carrier already has the message; only the local log is missing.
            logger.error(
                f"Message sent but not logged: provider_message_id={receipt.provider_id}, to={to}"
            )
            record_outbound_send("storage_error")
            raise

        record_outbound_send("sent")
        logger.info(f"Outbound message accepted: provider_message_id={receipt.provider_id}, status={status}")
        return SendResult(provider_id=receipt.provider_id, status=status)
