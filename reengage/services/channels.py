"""
Channel adapter - sends a text message through the conversation's connection.

Providers:
- evolution:  Evolution API (WhatsApp Web bridge), per-instance apikey
- meta:       WhatsApp Cloud API (Graph), bearer token
- instagram:  Instagram Messaging (Graph), bearer token

Error handling:
- 4xx responses are permanent for this tick: no retry
- timeouts, connection errors and 5xx are transient: retried once
Nothing here raises; the result dict carries "ok" and "error".
"""
import asyncio
import logging
import re
from typing import Optional

import httpx

from reengage.models.connection import ChannelConnection
from reengage.utils.encryption import decrypt_value
from reengage.utils.logging import mask_phone, sanitize_error

logger = logging.getLogger(__name__)

PROVIDER_EVOLUTION = "evolution"
PROVIDER_META = "meta"
PROVIDER_INSTAGRAM = "instagram"

MAX_RETRIES = 1
RETRY_DELAYS_SECONDS = [2]


class ChannelError(Exception):
    """Provider rejected or failed the send."""

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


def normalize_address(address: str) -> str:
    """WhatsApp numbers go out as bare digits."""
    return re.sub(r"\D", "", address or "")


def _result(ok: bool, provider: str, message_id: Optional[str] = None, error: Optional[str] = None) -> dict:
    return {"ok": ok, "provider": provider, "message_id": message_id, "error": error}


async def send_text(connection: ChannelConnection, address: str, text: str) -> dict:
    """
    Send text to a contact through a channel connection.

    Returns: {"ok": bool, "provider": str, "message_id": str|None, "error": str|None}
    """
    provider = connection.provider or PROVIDER_EVOLUTION
    sender = _SENDERS.get(provider)
    if sender is None:
        return _result(False, provider, error=f"Unsupported channel provider: {provider}")

    masked = mask_phone(address)
    last_error = None

    for attempt in range(MAX_RETRIES + 1):
        try:
            message_id = await sender(connection, address, text)
            logger.info(
                "Message sent via %s to %s: %s", provider, masked, message_id or "unknown",
                extra={"provider": provider},
            )
            return _result(True, provider, message_id=message_id)
        except ChannelError as e:
            last_error = sanitize_error(str(e))
            if not e.transient:
                logger.warning("%s permanent error for %s: %s", provider, masked, last_error)
                return _result(False, provider, error=last_error)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            last_error = f"{type(e).__name__}: {sanitize_error(str(e))}"

        if attempt < MAX_RETRIES:
            delay = RETRY_DELAYS_SECONDS[min(attempt, len(RETRY_DELAYS_SECONDS) - 1)]
            logger.warning(
                "%s transient error for %s (attempt %d/%d): %s. Retrying in %ds...",
                provider, masked, attempt + 1, MAX_RETRIES + 1, last_error, delay,
            )
            await asyncio.sleep(delay)

    logger.warning("%s send failed for %s: %s", provider, masked, last_error)
    return _result(False, provider, error=last_error)


def _raise_for_status(response: httpx.Response, provider: str) -> None:
    if response.status_code < 400:
        return
    body = response.text[:300]
    raise ChannelError(
        f"{provider} returned {response.status_code}: {body}",
        transient=response.status_code >= 500 or response.status_code == 429,
    )


def _message_id(response: httpx.Response, provider: str, extract) -> Optional[str]:
    """
    Provider message id from a 2xx body. The message is already out, so an
    unreadable body only costs the id.
    """
    if not response.content:
        return None
    try:
        return extract(response.json())
    except (ValueError, AttributeError, IndexError, KeyError, TypeError) as e:
        logger.warning(
            "%s accepted the message but the response body was unreadable: %s",
            provider, sanitize_error(str(e)),
        )
        return None


def _timeout() -> float:
    from reengage.config import get_settings
    return float(get_settings().channel_timeout_seconds)


async def _send_evolution(connection: ChannelConnection, address: str, text: str) -> Optional[str]:
    """POST /message/sendText/{instance} with the instance's apikey."""
    from reengage.config import get_settings
    settings = get_settings()

    if not connection.instance_name:
        raise ChannelError("Evolution connection has no instance name")
    api_key = decrypt_value(connection.token) or settings.evolution_api_key

    url = f"{settings.evolution_api_url.rstrip('/')}/message/sendText/{connection.instance_name}"
    async with httpx.AsyncClient(timeout=_timeout()) as client:
        response = await client.post(
            url,
            headers={"apikey": api_key, "Content-Type": "application/json"},
            json={"number": normalize_address(address), "text": text},
        )
    _raise_for_status(response, PROVIDER_EVOLUTION)
    return _message_id(response, PROVIDER_EVOLUTION, lambda data: (data.get("key") or {}).get("id"))


async def _send_meta(connection: ChannelConnection, address: str, text: str) -> Optional[str]:
    """WhatsApp Cloud API: POST /{phone_number_id}/messages."""
    from reengage.config import get_settings
    settings = get_settings()

    access_token = decrypt_value(connection.meta_access_token)
    if not connection.meta_phone_number_id or not access_token:
        raise ChannelError("Meta connection is missing phone_number_id or access token")

    url = f"{settings.meta_graph_url.rstrip('/')}/{connection.meta_phone_number_id}/messages"
    async with httpx.AsyncClient(timeout=_timeout()) as client:
        response = await client.post(
            url,
            headers={"Authorization": f"Bearer {access_token}"},
            json={
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": normalize_address(address),
                "type": "text",
                "text": {"body": text},
            },
        )
    _raise_for_status(response, PROVIDER_META)
    return _message_id(response, PROVIDER_META, lambda data: (data.get("messages") or [{}])[0].get("id"))


async def _send_instagram(connection: ChannelConnection, address: str, text: str) -> Optional[str]:
    """Instagram Messaging: POST /me/messages to an Instagram-scoped id."""
    from reengage.config import get_settings
    settings = get_settings()

    access_token = decrypt_value(connection.meta_access_token) or decrypt_value(connection.token)
    if not access_token:
        raise ChannelError("Instagram connection has no access token")

    url = f"{settings.meta_graph_url.rstrip('/')}/me/messages"
    async with httpx.AsyncClient(timeout=_timeout()) as client:
        response = await client.post(
            url,
            headers={"Authorization": f"Bearer {access_token}"},
            json={"recipient": {"id": address}, "message": {"text": text}},
        )
    _raise_for_status(response, PROVIDER_INSTAGRAM)
    return _message_id(response, PROVIDER_INSTAGRAM, lambda data: data.get("message_id"))


_SENDERS = {
    PROVIDER_EVOLUTION: _send_evolution,
    PROVIDER_META: _send_meta,
    PROVIDER_INSTAGRAM: _send_instagram,
}
