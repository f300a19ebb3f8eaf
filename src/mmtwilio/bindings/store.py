"""Dual-keyed persistence of bindings, with migration of legacy records.

Every binding is written twice: once under its conversation key and once
under its channel key, so both directions are a single point read. The two
writes are independent; a crash between them leaves one index stale until
the next ``save`` of the same binding.

Legacy records live under ``by-conversation-legacy:<id>`` with no channel
index. They are migrated either by the one-shot ``migrate_legacy`` pass or,
until that pass has completed, on demand when a channel lookup misses.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from datetime import UTC, datetime

from mmtwilio.bindings.models import Binding
from mmtwilio.kvstore import KVStore

logger = logging.getLogger(__name__)

CONVERSATION_PREFIX = "by-conversation:"
CHANNEL_PREFIX = "by-channel:"
LEGACY_PREFIX = "by-conversation-legacy:"
LEGACY_MIGRATION_MARKER = "migrations:legacy-bindings"
LEGACY_SCAN_PAGE_SIZE = 50


def conversation_key(conversation_id: str) -> str:
    return f"{CONVERSATION_PREFIX}{conversation_id}"


def channel_key(channel_id: str) -> str:
    return f"{CHANNEL_PREFIX}{channel_id}"


def legacy_key(conversation_id: str) -> str:
    return f"{LEGACY_PREFIX}{conversation_id}"


class BindingStore:
    def __init__(self, kv: KVStore) -> None:
        self._kv = kv

    def find_by_conversation(self, conversation_id: str) -> Binding | None:
        return self._read(conversation_key(conversation_id))

    def find_by_channel(self, channel_id: str) -> Binding | None:
        binding = self._read(channel_key(channel_id))
        if binding is not None:
            return binding
        if self.legacy_migrated():
            return None
        return self._migrate_first(lambda candidate: candidate.channel_id == channel_id)

    def save(self, binding: Binding) -> None:
        data = binding.to_json()
        self._kv.set(conversation_key(binding.conversation_id), data)
        self._kv.set(channel_key(binding.channel_id), data)

    def delete(self, binding: Binding) -> None:
        self._kv.delete(conversation_key(binding.conversation_id))
        self._kv.delete(channel_key(binding.channel_id))

    def legacy_migrated(self) -> bool:
        return self._kv.get(LEGACY_MIGRATION_MARKER) is not None

    def migrate_legacy(self) -> int:
        """Migrate every legacy record, then write the completion marker.

        Keys are collected before any rewrite so deletions cannot shift the
        pages still to be read.
        """
        legacy_keys = [key for key in self._iter_keys() if key.startswith(LEGACY_PREFIX)]
        migrated = 0
        for key in legacy_keys:
            binding = self._read(key)
            if binding is None:
                continue
            self._promote(key, binding)
            migrated += 1
        self._kv.set(LEGACY_MIGRATION_MARKER, datetime.now(UTC).isoformat().encode())
        logger.info(
            "Legacy binding migration complete (migrated=%d scanned=%d)",
            migrated,
            len(legacy_keys),
        )
        return migrated

    def _migrate_first(self, predicate: Callable[[Binding], bool]) -> Binding | None:
        legacy_keys = [key for key in self._iter_keys() if key.startswith(LEGACY_PREFIX)]
        for key in legacy_keys:
            binding = self._read(key)
            if binding is None or not predicate(binding):
                continue
            promoted = self._promote(key, binding)
            if predicate(promoted):
                return promoted
        return None

    def _promote(self, key: str, binding: Binding) -> Binding:
        current = self.find_by_conversation(binding.conversation_id)
        if current is not None:
            # A dual-keyed record already exists; the legacy copy is stale.
            self._kv.delete(key)
            logger.info(
                "Dropped stale legacy binding for conversation %s", binding.conversation_id
            )
            return current
        self.save(binding)
        self._kv.delete(key)
        logger.info(
            "Migrated legacy binding conversation=%s channel=%s",
            binding.conversation_id,
            binding.channel_id,
        )
        return binding

    def _iter_keys(self) -> Iterator[str]:
        page = 0
        while True:
            keys = self._kv.list_keys(page, LEGACY_SCAN_PAGE_SIZE)
            if not keys:
                return
            yield from keys
            page += 1

    def _read(self, key: str) -> Binding | None:
        raw = self._kv.get(key)
        if raw is None:
            return None
        try:
            return Binding.from_json(raw)
        except ValueError as exc:
            logger.warning("Ignoring undecodable binding record %s: %s", key, exc)
            return None
