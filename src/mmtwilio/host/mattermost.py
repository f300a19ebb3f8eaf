"""Mattermost REST API v4 client implementing the chat host protocol."""

from __future__ import annotations

from typing import Any

import httpx

from mmtwilio.errors import HostError
from mmtwilio.host.base import BotAccount, Channel, FileInfo, OutgoingHook, Post, Team

HOOK_PAGE_SIZE = 100


class MattermostClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout_seconds: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = f"{base_url.rstrip('/')}/api/v4"
        self._token = token.strip()
        self._timeout = timeout_seconds
        self._transport = transport

    def _headers(self, token: str = "") -> dict[str, str]:
        headers: dict[str, str] = {"X-Requested-With": "XMLHttpRequest"}
        bearer = token or self._token
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        allow_not_found: bool = False,
        token: str = "",
        **kwargs: Any,
    ) -> httpx.Response | None:
        url = f"{self._api_url}{path}"
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            try:
                response = await client.request(method, url, headers=self._headers(token), **kwargs)
            except httpx.HTTPError as exc:
                raise HostError(f"{method} {path} failed: {exc}") from exc
        if allow_not_found and response.status_code == 404:
            return None
        if response.status_code >= 400:
            detail = self._safe_json(response).get("message") or response.text[:200]
            raise HostError(
                f"{method} {path} returned {response.status_code}: {detail}",
                status_code=response.status_code,
                retryable=response.status_code >= 500,
            )
        return response

    async def get_team_by_name(self, name: str) -> Team | None:
        response = await self._request("GET", f"/teams/name/{name}", allow_not_found=True)
        if response is None:
            return None
        body = self._safe_json(response)
        return Team(
            id=str(body.get("id", "")),
            name=str(body.get("name", name)),
            display_name=str(body.get("display_name", "")),
        )

    async def get_channel(self, channel_id: str) -> Channel | None:
        response = await self._request("GET", f"/channels/{channel_id}", allow_not_found=True)
        if response is None:
            return None
        return self._channel(self._safe_json(response))

    async def get_channel_by_name(self, team_id: str, name: str) -> Channel | None:
        response = await self._request(
            "GET", f"/teams/{team_id}/channels/name/{name}", allow_not_found=True
        )
        if response is None:
            return None
        return self._channel(self._safe_json(response))

    async def create_channel(self, channel: Channel) -> Channel:
        payload: dict[str, Any] = {
            "team_id": channel.team_id,
            "name": channel.name,
            "display_name": channel.display_name,
            "type": channel.type,
        }
        if channel.props:
            payload["props"] = channel.props
        response = await self._request("POST", "/channels", json=payload)
        assert response is not None
        created = self._channel(self._safe_json(response))
        if not created.props:
            created.props = dict(channel.props)
        return created

    async def add_channel_member(self, channel_id: str, user_id: str) -> None:
        await self._request(
            "POST", f"/channels/{channel_id}/members", json={"user_id": user_id}
        )

    async def get_user_ids_by_usernames(self, usernames: list[str]) -> dict[str, str]:
        if not usernames:
            return {}
        response = await self._request("POST", "/users/usernames", json=usernames)
        assert response is not None
        body = response.json()
        users = body if isinstance(body, list) else []
        return {
            str(user.get("username", "")): str(user.get("id", ""))
            for user in users
            if isinstance(user, dict) and user.get("id")
        }

    async def get_post(self, post_id: str) -> Post | None:
        response = await self._request("GET", f"/posts/{post_id}", allow_not_found=True)
        if response is None:
            return None
        return self._post(self._safe_json(response))

    async def create_post(self, post: Post, *, bot_token: str = "") -> Post:
        # the server authors the post as the token's user; user_id in the body is ignored
        payload: dict[str, Any] = {
            "channel_id": post.channel_id,
            "message": post.message,
            "props": post.props,
        }
        if post.file_ids:
            payload["file_ids"] = post.file_ids
        response = await self._request("POST", "/posts", token=bot_token, json=payload)
        assert response is not None
        return self._post(self._safe_json(response))

    async def get_file_info(self, file_id: str) -> FileInfo:
        response = await self._request("GET", f"/files/{file_id}/info")
        assert response is not None
        return self._file_info(self._safe_json(response))

    async def get_file(self, file_id: str) -> bytes:
        response = await self._request("GET", f"/files/{file_id}")
        assert response is not None
        return response.content

    async def upload_file(
        self, channel_id: str, filename: str, data: bytes, *, bot_token: str = ""
    ) -> FileInfo:
        response = await self._request(
            "POST",
            "/files",
            token=bot_token,
            data={"channel_id": channel_id},
            files={"files": (filename, data)},
        )
        assert response is not None
        infos = self._safe_json(response).get("file_infos")
        if not isinstance(infos, list) or not infos or not isinstance(infos[0], dict):
            raise HostError(f"upload of {filename} returned no file info")
        return self._file_info(infos[0])

    async def list_bots(self, page: int, per_page: int) -> list[BotAccount]:
        response = await self._request(
            "GET", "/bots", params={"page": page, "per_page": per_page}
        )
        assert response is not None
        body = response.json()
        bots = body if isinstance(body, list) else []
        return [self._bot(item) for item in bots if isinstance(item, dict)]

    async def create_bot(
        self, username: str, display_name: str, description: str, owner_id: str
    ) -> BotAccount:
        response = await self._request(
            "POST",
            "/bots",
            json={
                "username": username,
                "display_name": display_name,
                "description": description,
            },
        )
        assert response is not None
        bot = self._bot(self._safe_json(response))
        if owner_id and bot.owner_id != owner_id:
            assigned = await self._request("POST", f"/bots/{bot.user_id}/assign/{owner_id}")
            assert assigned is not None
            bot = self._bot(self._safe_json(assigned))
        return bot

    async def add_team_member(self, team_id: str, user_id: str) -> None:
        await self._request(
            "POST", f"/teams/{team_id}/members", json={"team_id": team_id, "user_id": user_id}
        )

    async def create_user_access_token(self, user_id: str, description: str) -> str:
        response = await self._request(
            "POST", f"/users/{user_id}/tokens", json={"description": description}
        )
        assert response is not None
        token = str(self._safe_json(response).get("token") or "")
        if not token:
            raise HostError(f"access token for {user_id} was not returned", retryable=False)
        return token

    async def list_outgoing_hooks(self, channel_id: str) -> list[OutgoingHook]:
        hooks: list[OutgoingHook] = []
        page = 0
        while True:
            response = await self._request(
                "GET",
                "/hooks/outgoing",
                params={"channel_id": channel_id, "page": page, "per_page": HOOK_PAGE_SIZE},
            )
            assert response is not None
            body = response.json()
            if not isinstance(body, list):
                return hooks
            items = [item for item in body if isinstance(item, dict)]
            hooks.extend(self._hook(item) for item in items)
            if len(items) < HOOK_PAGE_SIZE:
                return hooks
            page += 1

    async def create_outgoing_hook(self, hook: OutgoingHook) -> OutgoingHook:
        # no trigger words: the hook fires for every post in its channel
        response = await self._request(
            "POST",
            "/hooks/outgoing",
            json={
                "team_id": hook.team_id,
                "channel_id": hook.channel_id,
                "display_name": hook.display_name,
                "trigger_words": [],
                "trigger_when": 0,
                "callback_urls": hook.callback_urls,
                "content_type": "application/json",
            },
        )
        assert response is not None
        return self._hook(self._safe_json(response))

    async def delete_outgoing_hook(self, hook_id: str) -> None:
        await self._request("DELETE", f"/hooks/outgoing/{hook_id}", allow_not_found=True)

    @staticmethod
    def _hook(body: dict[str, Any]) -> OutgoingHook:
        urls = body.get("callback_urls")
        return OutgoingHook(
            id=str(body.get("id", "")),
            team_id=str(body.get("team_id", "")),
            channel_id=str(body.get("channel_id", "")),
            callback_urls=[str(url) for url in urls] if isinstance(urls, list) else [],
            token=str(body.get("token") or ""),
            display_name=str(body.get("display_name") or ""),
        )

    @staticmethod
    def _channel(body: dict[str, Any]) -> Channel:
        props = body.get("props")
        return Channel(
            id=str(body.get("id", "")),
            team_id=str(body.get("team_id", "")),
            name=str(body.get("name", "")),
            display_name=str(body.get("display_name", "")),
            type=str(body.get("type", "O")),
            creator_id=str(body.get("creator_id", "")),
            props=props if isinstance(props, dict) else {},
        )

    @staticmethod
    def _post(body: dict[str, Any]) -> Post:
        props = body.get("props")
        file_ids = body.get("file_ids")
        return Post(
            id=str(body.get("id", "")),
            channel_id=str(body.get("channel_id", "")),
            user_id=str(body.get("user_id", "")),
            message=str(body.get("message", "")),
            type=str(body.get("type", "")),
            props=props if isinstance(props, dict) else {},
            file_ids=[str(item) for item in file_ids] if isinstance(file_ids, list) else [],
        )

    @staticmethod
    def _file_info(body: dict[str, Any]) -> FileInfo:
        return FileInfo(
            id=str(body.get("id", "")),
            name=str(body.get("name", "")),
            mime_type=str(body.get("mime_type") or "application/octet-stream"),
            size=int(body.get("size") or 0),
        )

    @staticmethod
    def _bot(body: dict[str, Any]) -> BotAccount:
        return BotAccount(
            user_id=str(body.get("user_id", "")),
            username=str(body.get("username", "")),
            display_name=str(body.get("display_name", "")),
            owner_id=str(body.get("owner_id", "")),
            delete_at=int(body.get("delete_at") or 0),
        )

    @staticmethod
    def _safe_json(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
