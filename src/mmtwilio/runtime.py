"""Wiring of the relay's collaborators for one process."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from mmtwilio.bindings.resolver import BindingResolver
from mmtwilio.bindings.store import BindingStore
from mmtwilio.commands.service import CommandService
from mmtwilio.config import Settings
from mmtwilio.host.base import ChatHost
from mmtwilio.host.mattermost import MattermostClient
from mmtwilio.inbound.dispatcher import EventDispatcher
from mmtwilio.kvstore import KVStore, SqliteKVStore
from mmtwilio.outbound.hooks import PostHookRegistry
from mmtwilio.outbound.relay import OutboundRelay
from mmtwilio.provider.client import TwilioClient
from mmtwilio.snapshot import SnapshotHolder
from mmtwilio.webhooks.reconciler import WebhookReconciler


@dataclass(slots=True)
class Runtime:
    settings: Settings
    snapshots: SnapshotHolder
    host: ChatHost
    twilio: TwilioClient
    store: BindingStore
    resolver: BindingResolver
    reconciler: WebhookReconciler
    dispatcher: EventDispatcher
    relay: OutboundRelay
    commands: CommandService
    hooks: PostHookRegistry


def build_runtime(
    settings: Settings,
    *,
    host: ChatHost | None = None,
    twilio: TwilioClient | None = None,
    kv: KVStore | None = None,
    snapshots: SnapshotHolder | None = None,
) -> Runtime:
    if host is None:
        host = MattermostClient(
            settings.mattermost_url,
            settings.mattermost_token,
            timeout_seconds=float(settings.mattermost_timeout_seconds),
        )
    if twilio is None:
        twilio = TwilioClient(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            timeout_seconds=float(settings.twilio_timeout_seconds),
            media_timeout_seconds=float(settings.twilio_media_timeout_seconds),
        )
    kv_store = kv if kv is not None else SqliteKVStore()
    store = BindingStore(kv_store)
    hooks = PostHookRegistry(host, kv_store)
    resolver = BindingResolver(store, host, twilio, hooks)
    reconciler = WebhookReconciler(twilio)
    return Runtime(
        settings=settings,
        snapshots=snapshots if snapshots is not None else SnapshotHolder(),
        host=host,
        twilio=twilio,
        store=store,
        resolver=resolver,
        reconciler=reconciler,
        dispatcher=EventDispatcher(resolver, reconciler, host, twilio),
        relay=OutboundRelay(store, resolver, host, twilio),
        commands=CommandService(store, twilio, reconciler, resolver, hooks),
        hooks=hooks,
    )


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime
