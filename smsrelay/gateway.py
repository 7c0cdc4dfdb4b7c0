"""
Telnyx carrier gateway.

Submits outbound messages to the Telnyx v2 Messages API and returns the
provisional receipt. Every failure mode (HTTP error, network failure, timeout,
unparseable body) surfaces as a single ``GatewayError`` carrying the raw
provider payload; carrier error codes are never interpreted here.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from smsrelay.errors import GatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SenderIdentity:
    """Either a messaging profile or an explicit sender number, never both."""

    messaging_profile_id: Optional[str] = None
    from_number: Optional[str] = None

    def __post_init__(self):
        if bool(self.messaging_profile_id) == bool(self.from_number):
            raise ValueError("exactly one of messaging_profile_id or from_number is required")

    def as_params(self) -> dict:
        if self.messaging_profile_id:
            return {"messaging_profile_id": self.messaging_profile_id}
        return {"from": self.from_number}


@dataclass(frozen=True)
class SendReceipt:
    """What the carrier reported for an accepted submission. Any field may be missing."""

    provider_id: Optional[str] = None
    status: Optional[str] = None
    from_number: Optional[str] = None
    to_number: Optional[str] = None


def phone_number(value: Any) -> Optional[str]:
    """
    Read a phone number from the shapes Telnyx uses.

    Accepts a plain string, an object with ``phone_number``, or a list of such
    objects (first entry wins).
    """
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("phone_number")
    if isinstance(value, str) and value:
        return value
    return None


def parse_receipt(document: Any) -> SendReceipt:
    if not isinstance(document, dict):
        raise GatewayError(detail=document)
    data = document.get("data") or {}
    if not isinstance(data, dict):
        raise GatewayError(detail=document)
    return SendReceipt(
        provider_id=data.get("id") or None,
        status=data.get("status") or None,
        from_number=phone_number(data.get("from")),
        to_number=phone_number(data.get("to")),
    )


class CarrierGateway:
    """
    Telnyx Messages API client.

    The HTTP client is created lazily and reused; call ``close`` on shutdown.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.telnyx.com/v2",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def send(self, to: str, body: str, sender: SenderIdentity) -> SendReceipt:
        """
        Submit one message.

        Raises:
            GatewayError: the carrier rejected the request, could not be
                reached, or answered with something other than a JSON object.
        """
        payload = {"to": to, "text": body, **sender.as_params()}
        client = await self._get_client()

        try:
            response = await client.post("/messages", json=payload)
        except httpx.TimeoutException as e:
            logger.error(f"Telnyx request timed out: {e}")
            raise GatewayError(detail=f"Request timed out after {self.timeout}s") from e
        except httpx.RequestError as e:
            logger.error(f"Telnyx request failed: {e}")
            raise GatewayError(detail=f"HTTP request failed: {e}") from e

        try:
            document = response.json()
        except ValueError:
            logger.error(f"Telnyx returned a non-JSON body (status {response.status_code})")
            raise GatewayError(detail=response.text)

        if response.is_error:
            logger.error(f"Telnyx send error: status={response.status_code}", extra={"detail": document})
            raise GatewayError(detail=document)

        receipt = parse_receipt(document)
        logger.info(f"Telnyx accepted message: id={receipt.provider_id}, status={receipt.status}")
        return receipt
