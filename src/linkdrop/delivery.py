"""Outbound collaborators: direct-message delivery and public fallback replies."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from .classifier import ReplyContext
from .errors import DeliveryError


logger = logging.getLogger(__name__)

DIRECT_MESSAGE_PATH = "/direct_messages/events/new.json"
STATUS_UPDATE_PATH = "/statuses/update.json"


@dataclass(frozen=True, slots=True)
class DeliveryAck:
    requester_id: str
    message_id: Optional[str] = None


class DeliveryGateway(Protocol):
    """Sends the response message to the requester."""

    async def send(self, requester_id: str, message_text: str) -> DeliveryAck:
        """Deliver or raise ``DeliveryError``."""


class FallbackChannel(Protocol):
    """Posts a public reply under the triggering post."""

    async def post_public_reply(self, reply_context: ReplyContext, message_text: str) -> None:
        """Best effort; callers log failures."""


def direct_message_payload(requester_id: str, message_text: str) -> dict[str, Any]:
    return {
        "event": {
            "type": "message_create",
            "message_create": {
                "target": {"recipient_id": requester_id},
                "message_data": {"text": message_text},
            },
        }
    }


class HttpDeliveryGateway:
    """Direct messages through the platform REST API.

    The client is expected to carry authentication and base URL; transport
    errors and non-2xx answers both surface as ``DeliveryError``.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def send(self, requester_id: str, message_text: str) -> DeliveryAck:
        try:
            response = await self._client.post(
                DIRECT_MESSAGE_PATH,
                json=direct_message_payload(requester_id, message_text),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DeliveryError(
                details={"requester_id": requester_id, "status": exc.response.status_code}
            ) from exc
        except httpx.HTTPError as exc:
            raise DeliveryError(details={"requester_id": requester_id, "reason": str(exc)}) from exc
        message_id = None
        try:
            message_id = response.json().get("event", {}).get("id")
        except (ValueError, AttributeError):
            logger.debug("delivery response is not JSON", extra={"ctx_requester": requester_id})
        return DeliveryAck(requester_id=requester_id, message_id=message_id)


class HttpFallbackChannel:
    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def post_public_reply(self, reply_context: ReplyContext, message_text: str) -> None:
        status = f"{reply_context.handle} {message_text}".strip()
        response = await self._client.post(
            STATUS_UPDATE_PATH,
            data={"status": status, "in_reply_to_status_id": reply_context.post_id},
        )
        response.raise_for_status()


def build_api_client(base_url: str, bearer_token: str, *, timeout: float) -> httpx.AsyncClient:
    headers = {"Authorization": f"Bearer {bearer_token}"} if bearer_token else {}
    return httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)
