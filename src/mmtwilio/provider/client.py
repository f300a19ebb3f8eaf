"""Twilio Conversations / Messaging / Media REST client over httpx."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from mmtwilio.errors import ProviderError
from mmtwilio.provider.models import (
    AddressConfiguration,
    Conversation,
    ConversationWebhook,
    Participant,
)

logger = logging.getLogger(__name__)

CONVERSATIONS_API = "https://conversations.twilio.com/v1"
MESSAGING_API = "https://messaging.twilio.com/v1"
MEDIA_API = "https://mcs.us1.twilio.com/v1"
PAGE_SIZE = 50


class TwilioClient:
    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        *,
        timeout_seconds: float = 20.0,
        media_timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._auth = (account_sid, auth_token)
        self._timeout = timeout_seconds
        self._media_timeout = media_timeout_seconds
        self._transport = transport

    async def _request(
        self,
        method: str,
        url: str,
        *,
        allow_not_found: bool = False,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response | None:
        async with httpx.AsyncClient(
            timeout=timeout or self._timeout,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            try:
                response = await client.request(method, url, auth=self._auth, **kwargs)
            except httpx.HTTPError as exc:
                raise ProviderError(f"{method} {url} failed: {exc}") from exc
        if allow_not_found and response.status_code == 404:
            return None
        if response.status_code >= 400:
            detail = self._safe_json(response).get("message") or response.text[:200]
            raise ProviderError(
                f"{method} {url} returned {response.status_code}: {detail}",
                status_code=response.status_code,
                retryable=response.status_code >= 500,
            )
        return response

    async def _list(self, url: str, key: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        next_url: str | None = url
        params: dict[str, Any] | None = {"PageSize": PAGE_SIZE}
        while next_url:
            response = await self._request("GET", next_url, params=params)
            assert response is not None
            body = self._safe_json(response)
            page = body.get(key)
            if isinstance(page, list):
                items.extend(item for item in page if isinstance(item, dict))
            meta = body.get("meta")
            next_url = meta.get("next_page_url") if isinstance(meta, dict) else None
            # next_page_url already carries the paging query string
            params = None
        return items

    async def fetch_conversation(self, conversation_sid: str) -> Conversation:
        response = await self._request("GET", f"{CONVERSATIONS_API}/Conversations/{conversation_sid}")
        assert response is not None
        return Conversation.from_api(self._safe_json(response))

    async def list_conversations(self) -> list[Conversation]:
        items = await self._list(f"{CONVERSATIONS_API}/Conversations", "conversations")
        return [Conversation.from_api(item) for item in items]

    async def list_participants(self, conversation_sid: str) -> list[Participant]:
        items = await self._list(
            f"{CONVERSATIONS_API}/Conversations/{conversation_sid}/Participants", "participants"
        )
        return [Participant.from_api(item) for item in items]

    async def send_message(self, conversation_sid: str, body: str) -> str:
        response = await self._request(
            "POST",
            f"{CONVERSATIONS_API}/Conversations/{conversation_sid}/Messages",
            data={"Body": body},
        )
        assert response is not None
        return str(self._safe_json(response).get("sid", ""))

    async def send_media_message(self, conversation_sid: str, media_sid: str) -> str:
        response = await self._request(
            "POST",
            f"{CONVERSATIONS_API}/Conversations/{conversation_sid}/Messages",
            data={"MediaSid": media_sid},
        )
        assert response is not None
        return str(self._safe_json(response).get("sid", ""))

    async def upload_media(
        self, chat_service_sid: str, filename: str, content_type: str, data: bytes
    ) -> str:
        response = await self._request(
            "POST",
            f"{MEDIA_API}/Services/{chat_service_sid}/Media",
            content=data,
            headers={"Content-Type": content_type, "X-Twilio-File-Name": filename},
            timeout=self._media_timeout,
        )
        assert response is not None
        media_sid = str(self._safe_json(response).get("sid") or "")
        if not media_sid:
            raise ProviderError(f"media upload of {filename} returned no sid", retryable=False)
        return media_sid

    async def download_media(self, chat_service_sid: str, media_sid: str) -> bytes:
        response = await self._request(
            "GET",
            f"{MEDIA_API}/Services/{chat_service_sid}/Media/{media_sid}/Content",
            timeout=self._media_timeout,
        )
        assert response is not None
        return response.content

    async def list_conversation_webhooks(self, conversation_sid: str) -> list[ConversationWebhook]:
        items = await self._list(
            f"{CONVERSATIONS_API}/Conversations/{conversation_sid}/Webhooks", "webhooks"
        )
        return [ConversationWebhook.from_api(item) for item in items]

    async def create_conversation_webhook(
        self, conversation_sid: str, url: str, filters: list[str]
    ) -> ConversationWebhook:
        form: list[tuple[str, str]] = [
            ("Target", "webhook"),
            ("Configuration.Url", url),
            ("Configuration.Method", "POST"),
        ]
        form.extend(("Configuration.Filters", item) for item in filters)
        response = await self._request(
            "POST",
            f"{CONVERSATIONS_API}/Conversations/{conversation_sid}/Webhooks",
            content=self._encode_form(form),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        assert response is not None
        return ConversationWebhook.from_api(self._safe_json(response))

    async def delete_conversation_webhook(self, conversation_sid: str, webhook_sid: str) -> None:
        await self._request(
            "DELETE",
            f"{CONVERSATIONS_API}/Conversations/{conversation_sid}/Webhooks/{webhook_sid}",
        )

    async def fetch_address_configuration(self, address: str) -> AddressConfiguration | None:
        response = await self._request(
            "GET", f"{CONVERSATIONS_API}/Configuration/Addresses/{address}", allow_not_found=True
        )
        if response is None:
            return None
        config = AddressConfiguration.from_api(self._safe_json(response))
        return config if config.sid else None

    async def create_address_configuration(
        self, address: str, webhook_url: str, filters: list[str]
    ) -> AddressConfiguration:
        form = [("Type", "sms"), ("Address", address), *self._auto_creation_form(webhook_url, filters)]
        response = await self._request(
            "POST",
            f"{CONVERSATIONS_API}/Configuration/Addresses",
            content=self._encode_form(form),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        assert response is not None
        return AddressConfiguration.from_api(self._safe_json(response))

    async def update_address_configuration(
        self, address_sid: str, webhook_url: str, filters: list[str]
    ) -> AddressConfiguration:
        form = self._auto_creation_form(webhook_url, filters)
        response = await self._request(
            "POST",
            f"{CONVERSATIONS_API}/Configuration/Addresses/{address_sid}",
            content=self._encode_form(form),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        assert response is not None
        return AddressConfiguration.from_api(self._safe_json(response))

    async def delete_address_configuration(self, address_sid: str) -> None:
        await self._request("DELETE", f"{CONVERSATIONS_API}/Configuration/Addresses/{address_sid}")

    async def list_phone_numbers(self) -> list[str]:
        """Phone numbers attached to every messaging service on the account."""
        numbers: list[str] = []
        services = await self._list(f"{MESSAGING_API}/Services", "services")
        for service in services:
            service_sid = str(service.get("sid", ""))
            if not service_sid:
                continue
            items = await self._list(
                f"{MESSAGING_API}/Services/{service_sid}/PhoneNumbers", "phone_numbers"
            )
            numbers.extend(
                str(item["phone_number"]) for item in items if item.get("phone_number")
            )
        logger.debug("Listed %d phone numbers across %d services", len(numbers), len(services))
        return numbers

    @staticmethod
    def _auto_creation_form(webhook_url: str, filters: list[str]) -> list[tuple[str, str]]:
        form = [
            ("AutoCreation.Enabled", "true"),
            ("AutoCreation.Type", "webhook"),
            ("AutoCreation.WebhookUrl", webhook_url),
            ("AutoCreation.WebhookMethod", "POST"),
        ]
        form.extend(("AutoCreation.WebhookFilters", item) for item in filters)
        return form

    @staticmethod
    def _encode_form(form: list[tuple[str, str]]) -> bytes:
        return str(httpx.QueryParams(form)).encode()

    @staticmethod
    def _safe_json(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
