"""Mapping Store: durable thread/user records with an injected read cache.

Storage is the single source of truth. Every write reaches storage before the
cache is updated, and the cache is rebuilt from storage at startup.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Iterator, Optional, Set

from core.errors import StoreUnavailableError
from core.models import ThreadMapping, UserProfile, utc_now
from core.ports import StoragePort

LOGGER = logging.getLogger(__name__)


class MappingCache:
    """In-memory view of thread mappings and user profiles.

    Owned by the engine and passed to the store explicitly. Entries marked
    stale are never served from the fast path.
    """

    def __init__(self) -> None:
        self._threads: Dict[str, ThreadMapping] = {}
        self._topics: Dict[str, str] = {}
        self._stale: Set[str] = set()
        self._users: Dict[str, UserProfile] = {}

    def __len__(self) -> int:
        return len(self._threads)

    def __iter__(self) -> Iterator[ThreadMapping]:
        return iter(list(self._threads.values()))

    def get(self, source_thread_id: str) -> Optional[ThreadMapping]:
        return self._threads.get(source_thread_id)

    def fresh(self, source_thread_id: str) -> Optional[ThreadMapping]:
        if source_thread_id in self._stale:
            return None
        return self._threads.get(source_thread_id)

    def is_stale(self, source_thread_id: str) -> bool:
        return source_thread_id in self._stale

    def set(self, mapping: ThreadMapping, stale: bool = False) -> None:
        previous = self._threads.get(mapping.source_thread_id)
        if previous is not None and previous.dest_topic_id != mapping.dest_topic_id:
            self._topics.pop(previous.dest_topic_id, None)
        # Keep the reverse index bijective: a topic belongs to one thread.
        owner = self._topics.get(mapping.dest_topic_id)
        if owner is not None and owner != mapping.source_thread_id:
            self._threads.pop(owner, None)
            self._stale.discard(owner)
        self._threads[mapping.source_thread_id] = mapping
        self._topics[mapping.dest_topic_id] = mapping.source_thread_id
        if stale:
            self._stale.add(mapping.source_thread_id)
        else:
            self._stale.discard(mapping.source_thread_id)

    def drop(self, source_thread_id: str) -> Optional[ThreadMapping]:
        mapping = self._threads.pop(source_thread_id, None)
        self._stale.discard(source_thread_id)
        if mapping is not None and self._topics.get(mapping.dest_topic_id) == source_thread_id:
            del self._topics[mapping.dest_topic_id]
        return mapping

    def thread_for_topic(self, dest_topic_id: str) -> Optional[str]:
        return self._topics.get(dest_topic_id)

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        return self._users.get(user_id)

    def set_user(self, profile: UserProfile) -> None:
        self._users[profile.user_id] = profile

    def clear(self) -> None:
        self._threads.clear()
        self._topics.clear()
        self._stale.clear()
        self._users.clear()


class MappingStore:
    """Write-then-cache facade over a ``StoragePort``."""

    def __init__(self, storage: StoragePort, cache: MappingCache) -> None:
        self._storage = storage
        self._cache = cache
        # Topics invalidated while storage was down, per thread. Stored rows
        # pointing at them are ignored until a put overwrites the row.
        self._dead: Dict[str, Set[str]] = {}

    @property
    def cache(self) -> MappingCache:
        return self._cache

    def warm(self) -> int:
        """Rebuild the cache from storage and return the number of mappings.

        A store outage leaves the cache empty; threads are then treated as
        unmapped and re-provisioned on demand.
        """

        self._cache.clear()
        try:
            mappings = self.list_all()
            users = self._storage.list_users()
        except StoreUnavailableError:
            LOGGER.warning("Mapping store unavailable at startup, starting with an empty cache")
            return 0
        for mapping in mappings:
            if not self._is_dead(mapping):
                self._cache.set(mapping)
        for profile in users:
            self._cache.set_user(profile)
        LOGGER.info("Loaded mappings: %s chats, %s users", len(mappings), len(users))
        return len(mappings)

    def cached(self, source_thread_id: str) -> Optional[ThreadMapping]:
        """Fast path: a fresh cached mapping, without any I/O."""

        return self._cache.fresh(source_thread_id)

    def pending(self, source_thread_id: str) -> Optional[ThreadMapping]:
        """A cached mapping whose write has not reached storage yet."""

        if not self._cache.is_stale(source_thread_id):
            return None
        return self._cache.get(source_thread_id)

    def get(self, source_thread_id: str) -> Optional[ThreadMapping]:
        mapping = self._cache.fresh(source_thread_id)
        if mapping is not None:
            return mapping
        try:
            mapping = self._storage.get_mapping(source_thread_id)
        except StoreUnavailableError:
            LOGGER.error("Could not read mapping for thread %s", source_thread_id)
            raise
        if mapping is None:
            return None
        if self._is_dead(mapping):
            LOGGER.debug("Ignoring stored mapping %s -> %s, topic is gone", source_thread_id, mapping.dest_topic_id)
            return None
        self._cache.set(mapping)
        return mapping

    def put(self, mapping: ThreadMapping) -> None:
        try:
            self._storage.upsert_mapping(mapping)
        except StoreUnavailableError:
            LOGGER.error(
                "Could not persist mapping %s -> %s",
                mapping.source_thread_id,
                mapping.dest_topic_id,
            )
            raise
        self._dead.pop(mapping.source_thread_id, None)
        self._cache.set(mapping)
        LOGGER.debug("Saved chat mapping: %s -> %s", mapping.source_thread_id, mapping.dest_topic_id)

    def hold_pending(self, mapping: ThreadMapping) -> None:
        """Keep a mapping whose write failed so it can be retried, not served."""

        self._cache.set(mapping, stale=True)

    def remove(self, source_thread_id: str) -> None:
        # The cache entry goes even if storage fails; a dead topic must not be
        # served again. The next put overwrites the stored row.
        current = self._cache.drop(source_thread_id)
        try:
            self._storage.delete_mapping(source_thread_id)
        except StoreUnavailableError:
            LOGGER.error("Could not delete mapping for thread %s", source_thread_id)
            if current is not None:
                self._bury(source_thread_id, current.dest_topic_id)
            raise

    def invalidate(self, source_thread_id: str, dest_topic_id: str) -> bool:
        """Remove the mapping only if it still points at ``dest_topic_id``.

        Returns False when another caller already replaced the mapping.
        """

        current = self._cache.get(source_thread_id)
        if current is not None and current.dest_topic_id != dest_topic_id:
            return False
        self._cache.drop(source_thread_id)
        try:
            return self._storage.delete_mapping(source_thread_id, dest_topic_id) or current is not None
        except StoreUnavailableError:
            LOGGER.error("Could not invalidate mapping %s -> %s", source_thread_id, dest_topic_id)
            self._bury(source_thread_id, dest_topic_id)
            raise

    def _bury(self, source_thread_id: str, dest_topic_id: str) -> None:
        self._dead.setdefault(source_thread_id, set()).add(dest_topic_id)

    def _is_dead(self, mapping: ThreadMapping) -> bool:
        return mapping.dest_topic_id in self._dead.get(mapping.source_thread_id, ())

    def find_thread_by_topic(self, dest_topic_id: str) -> Optional[str]:
        thread_id = self._cache.thread_for_topic(dest_topic_id)
        if thread_id is not None:
            return thread_id
        try:
            mapping = self._storage.get_mapping_by_topic(dest_topic_id)
        except StoreUnavailableError:
            LOGGER.error("Could not look up topic %s", dest_topic_id)
            return None
        if mapping is None or self._is_dead(mapping):
            return None
        self._cache.set(mapping)
        return mapping.source_thread_id

    def list_all(self) -> list[ThreadMapping]:
        """Every stored mapping. Raises ``StoreUnavailableError`` on outage."""

        return self._storage.list_mappings()

    def touch(self, source_thread_id: str, profile_pic_url: Optional[str] = None) -> None:
        """Bump last_activity (and optionally the avatar). Best effort."""

        mapping = self._cache.fresh(source_thread_id)
        if mapping is None:
            return
        updated = mapping.touched(profile_pic_url)
        try:
            self._storage.upsert_mapping(updated)
        except StoreUnavailableError:
            LOGGER.warning("Could not update activity for thread %s", source_thread_id)
            return
        self._cache.set(updated)

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        profile = self._cache.get_user(user_id)
        if profile is not None:
            return profile
        try:
            profile = self._storage.get_user(user_id)
        except StoreUnavailableError:
            return None
        if profile is not None:
            self._cache.set_user(profile)
        return profile

    def record_user_activity(
        self,
        user_id: str,
        username: Optional[str] = None,
        full_name: Optional[str] = None,
    ) -> UserProfile:
        """Create or bump a user profile. Store failures are logged only."""

        now = utc_now()
        existing = self.get_user(user_id)
        if existing is None:
            profile = UserProfile(
                user_id=user_id,
                username=username,
                full_name=full_name,
                first_seen=now,
                message_count=1,
                last_seen=now,
            )
        else:
            profile = replace(
                existing,
                username=username or existing.username,
                full_name=full_name or existing.full_name,
                message_count=existing.message_count + 1,
                last_seen=now,
            )
        try:
            self._storage.upsert_user(profile)
        except StoreUnavailableError:
            LOGGER.warning("Could not save user profile %s", user_id)
            return profile
        self._cache.set_user(profile)
        return profile
