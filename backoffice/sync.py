"""
backoffice/sync.py

Local/remote snapshot reconciliation (whole-snapshot last-write-wins).

Rules:
- The snapshot is the mapping of every TRACKED_KEYS key present locally to its raw
  JSON string. There is no field-level merge.
- initialize(): fetch the remote snapshot, then
  - remote has no data (absent, null or an empty object): push local (if any)
    and stamp local updatedAt = now, so an empty remote never wipes local data;
  - local empty, no local updatedAt, or local updatedAt <= remote updatedAt:
    overwrite local from remote (tracked keys absent remotely are deleted) and
    adopt the remote updatedAt when it has one;
  - otherwise (local strictly newer): push local and stamp now.
- tick(): until one initialize() has reached the remote, retry initialize() and
  never push. After that, every SYNC_INTERVAL_SECONDS, push when the serialized
  local snapshot differs from the last one pushed (or pulled).
- One push at a time: a tick finding a push in flight does nothing; the next tick
  picks up the latest state.
- Network failures are logged and the cycle is abandoned. No retry queue, no backoff.
- Responses arriving after stop() are ignored.

IMPORTANT:
- Network calls run OUTSIDE the store's mutation lock; the decision "pull or push"
  and the pull itself run inside one store transaction.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

import requests

from . import audit
from .store import LocalStore, serialize_snapshot
from .utils import Clock, parse_timestamp, to_iso, utcnow

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class RemoteError(RuntimeError):
    """Remote snapshot store answered with a non-success status or a bad payload."""


@dataclass
class RemoteSnapshot:
    data: Optional[Dict[str, str]]
    updated_at: Optional[str]

    @property
    def has_data(self) -> bool:
        return bool(self.data)


class RemoteSnapshotClient:
    """Bearer-authenticated client of GET/PUT {base_url}/app-data."""

    def __init__(self, base_url: str, token: str, *, timeout: float = 10, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
        }

    def fetch(self) -> RemoteSnapshot:
        resp = self.session.get(f"{self.base_url}/app-data", headers=self._headers(), timeout=self.timeout)
        if resp.status_code != 200:
            raise RemoteError(f"GET /app-data failed: {resp.status_code} {resp.text}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise RemoteError("GET /app-data returned invalid JSON") from exc

        payload = payload if isinstance(payload, dict) else {}
        data = payload.get("data")
        if data is not None and not isinstance(data, dict):
            raise RemoteError("GET /app-data returned a non-object data field")
        return RemoteSnapshot(data=data, updated_at=payload.get("updatedAt"))

    def push(self, data: Dict[str, str]) -> Optional[str]:
        """Store a snapshot remotely; returns the server's updatedAt stamp."""
        resp = self.session.put(
            f"{self.base_url}/app-data",
            json={"data": data},
            headers=self._headers(),
            timeout=self.timeout,
        )
        if not 200 <= resp.status_code < 300:
            raise RemoteError(f"PUT /app-data failed: {resp.status_code} {resp.text}")
        try:
            body = resp.json()
        except ValueError:
            return None
        return body.get("updatedAt") if isinstance(body, dict) else None


class SyncOutcome(str, Enum):
    PULLED = "pulled"
    PUSHED = "pushed"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


class SnapshotReconciler:
    def __init__(self, store: LocalStore, client: RemoteSnapshotClient, *, clock: Clock | None = None):
        self.store = store
        self.client = client
        self.clock = clock or utcnow
        self._in_flight = threading.Lock()
        self._stopped = threading.Event()
        self._last_synced: Optional[str] = None
        self._initialized = False

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def stop(self) -> None:
        self._stopped.set()

    # -----------------------------------------------------------------
    # Session start
    # -----------------------------------------------------------------
    def initialize(self) -> SyncOutcome:
        try:
            remote = self.client.fetch()
        except (requests.RequestException, RemoteError) as exc:
            logger.warning("Initial snapshot fetch failed: %s", exc)
            return SyncOutcome.FAILED

        if self.stopped:
            logger.info("Reconciler stopped; ignoring fetched snapshot")
            return SyncOutcome.SKIPPED

        with self.store.transaction():
            local = self.store.snapshot()
            self._initialized = True
            if not remote.has_data:
                if not local:
                    return SyncOutcome.UNCHANGED
                pull = False
            else:
                pull = self._remote_wins(local, remote)

            if pull:
                self.store.apply_snapshot(remote.data)
                if remote.updated_at:
                    self.store.set_updated_at(remote.updated_at)
                self._last_synced = serialize_snapshot(self.store.snapshot())
                audit.log_document_change("appData", None, audit.ACTION_SYNC, after={"updatedAt": remote.updated_at})

        if pull:
            logger.info("Pulled remote snapshot (updatedAt=%s, keys=%d)", remote.updated_at, len(remote.data))
            return SyncOutcome.PULLED

        return self._push(local)

    def _remote_wins(self, local: Dict[str, str], remote: RemoteSnapshot) -> bool:
        if not local:
            return True
        local_at = parse_timestamp(self.store.updated_at())
        if local_at is None:
            return True
        remote_at = parse_timestamp(remote.updated_at) or EPOCH
        return local_at <= remote_at

    # -----------------------------------------------------------------
    # Timer
    # -----------------------------------------------------------------
    def tick(self) -> SyncOutcome:
        if self.stopped:
            return SyncOutcome.SKIPPED
        if not self._initialized:
            return self.initialize()
        snapshot = self.store.snapshot()
        if serialize_snapshot(snapshot) == self._last_synced:
            return SyncOutcome.UNCHANGED
        return self._push(snapshot)

    def _push(self, snapshot: Dict[str, str]) -> SyncOutcome:
        if not self._in_flight.acquire(blocking=False):
            logger.debug("Snapshot push already in flight; skipping")
            return SyncOutcome.SKIPPED
        try:
            serialized = serialize_snapshot(snapshot)
            self.store.set_updated_at(to_iso(self.clock()))
            try:
                server_at = self.client.push(snapshot)
            except (requests.RequestException, RemoteError) as exc:
                logger.warning("Snapshot push failed: %s", exc)
                return SyncOutcome.FAILED
            if self.stopped:
                logger.info("Reconciler stopped; ignoring push response")
                return SyncOutcome.SKIPPED
            self._last_synced = serialized
            logger.info("Pushed local snapshot (keys=%d, server updatedAt=%s)", len(snapshot), server_at)
            return SyncOutcome.PUSHED
        finally:
            self._in_flight.release()


def reconciler_from_config(app, store: LocalStore | None = None) -> Optional[SnapshotReconciler]:
    """None when REMOTE_API_URL is not configured."""
    base_url = app.config.get("REMOTE_API_URL")
    if not base_url:
        return None
    client = RemoteSnapshotClient(
        base_url,
        app.config.get("REMOTE_API_TOKEN", ""),
        timeout=app.config.get("REMOTE_TIMEOUT_SECONDS", 10),
    )
    return SnapshotReconciler(store or LocalStore(), client)


