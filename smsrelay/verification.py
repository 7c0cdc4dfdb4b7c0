"""
Webhook signature verification.

Verification is a pluggable stage run on the raw body before it is parsed.
When no Telnyx public key is configured the stage is skipped.
"""

import base64
import binascii
import logging
import time
from typing import Mapping, Optional, Protocol

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from smsrelay.config import Settings
from smsrelay.errors import SignatureVerificationError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "telnyx-signature-ed25519"
TIMESTAMP_HEADER = "telnyx-timestamp"


class WebhookVerifier(Protocol):
    def verify(self, body: bytes, headers: Mapping[str, str]) -> None:
        """Raise SignatureVerificationError if the delivery is not authentic."""


class Ed25519WebhookVerifier:
    """
    Checks Telnyx Ed25519 webhook signatures.

    The signed message is ``"{timestamp}|{raw body}"``; both the public key
    and the signature are base64 encoded.
    """

    def __init__(self, public_key_b64: str, tolerance_seconds: int = 300):
        try:
            key_bytes = base64.b64decode(public_key_b64, validate=True)
            self.public_key = Ed25519PublicKey.from_public_bytes(key_bytes)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid TELNYX_WEBHOOK_PUBLIC_KEY: {e}") from e
        self.tolerance_seconds = tolerance_seconds

    def verify(self, body: bytes, headers: Mapping[str, str], now: Optional[float] = None) -> None:
        signature_b64 = headers.get(SIGNATURE_HEADER)
        timestamp = headers.get(TIMESTAMP_HEADER)
        if not signature_b64 or not timestamp:
            logger.error("Missing webhook signature headers")
            raise SignatureVerificationError(detail="missing signature headers")

        try:
            sent_at = int(timestamp)
        except ValueError:
            raise SignatureVerificationError(detail="invalid timestamp")

        now = time.time() if now is None else now
        if abs(now - sent_at) > self.tolerance_seconds:
            logger.error(f"Webhook timestamp outside tolerance: {timestamp}")
            raise SignatureVerificationError(detail="timestamp outside tolerance")

        try:
            signature = base64.b64decode(signature_b64, validate=True)
            self.public_key.verify(signature, timestamp.encode("utf-8") + b"|" + body)
        except (binascii.Error, InvalidSignature):
            logger.error("Invalid webhook signature")
            raise SignatureVerificationError(detail="signature mismatch")

        logger.debug("Webhook signature verified")


def build_verifier(settings: Settings) -> Optional[WebhookVerifier]:
    if not settings.TELNYX_WEBHOOK_PUBLIC_KEY:
        logger.warning("TELNYX_WEBHOOK_PUBLIC_KEY not set, webhook signatures are not verified")
        return None
    return Ed25519WebhookVerifier(
        settings.TELNYX_WEBHOOK_PUBLIC_KEY,
        tolerance_seconds=settings.WEBHOOK_TOLERANCE_SECONDS,
    )
