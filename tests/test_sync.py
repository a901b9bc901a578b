"""Tests for snapshot reconciliation with the remote store."""

import json
from datetime import datetime, timezone
from unittest import mock

import pytest
import requests

from backoffice.store import CUSTOMERS, PROJECTS, PROPOSALS
from backoffice.sync import (
    RemoteError,
    RemoteSnapshotClient,
    SnapshotReconciler,
    SyncOutcome,
    reconciler_from_config,
)
from conftest import FakeRemote

LOCAL_CUSTOMERS = json.dumps([{"id": "c1", "name": "Local"}])
REMOTE_CUSTOMERS = json.dumps([{"id": "c1", "name": "Remote"}])


def _reconciler(store, remote, clock):
    return SnapshotReconciler(store, remote, clock=clock)


class TestInitialize:
    def test_empty_remote_receives_local(self, store, clock):
        store.set_raw(CUSTOMERS, LOCAL_CUSTOMERS)
        remote = FakeRemote(data=None)

        outcome = _reconciler(store, remote, clock).initialize()

        assert outcome is SyncOutcome.PUSHED
        assert remote.pushes == [{CUSTOMERS: LOCAL_CUSTOMERS}]
        assert store.updated_at() == "2025-03-14T10:30:00.000Z"

    def test_empty_object_counts_as_no_data(self, store, clock):
        store.set_raw(CUSTOMERS, LOCAL_CUSTOMERS)
        remote = FakeRemote(data={}, updated_at="2099-01-01T00:00:00.000Z")

        assert _reconciler(store, remote, clock).initialize() is SyncOutcome.PUSHED
        assert store.get_raw(CUSTOMERS) == LOCAL_CUSTOMERS
        assert remote.pushes == [{CUSTOMERS: LOCAL_CUSTOMERS}]

    def test_both_empty(self, store, clock):
        remote = FakeRemote(data=None)
        assert _reconciler(store, remote, clock).initialize() is SyncOutcome.UNCHANGED
        assert remote.pushes == []

    def test_empty_local_pulls(self, store, clock):
        remote = FakeRemote(data={CUSTOMERS: REMOTE_CUSTOMERS}, updated_at="2025-01-01T00:00:00.000Z")

        outcome = _reconciler(store, remote, clock).initialize()

        assert outcome is SyncOutcome.PULLED
        assert store.get_raw(CUSTOMERS) == REMOTE_CUSTOMERS
        assert store.updated_at() == "2025-01-01T00:00:00.000Z"
        assert remote.pushes == []

    def test_local_without_timestamp_pulls(self, store, clock):
        store.set_raw(CUSTOMERS, LOCAL_CUSTOMERS)
        store.set_raw(PROJECTS, "[]")
        remote = FakeRemote(data={CUSTOMERS: REMOTE_CUSTOMERS}, updated_at="2020-01-01T00:00:00.000Z")

        assert _reconciler(store, remote, clock).initialize() is SyncOutcome.PULLED
        assert store.get_raw(CUSTOMERS) == REMOTE_CUSTOMERS
        assert store.get_raw(PROJECTS) is None

    def test_equal_timestamps_pull(self, store, clock):
        store.set_raw(CUSTOMERS, LOCAL_CUSTOMERS)
        store.set_updated_at("2025-02-01T00:00:00.000Z")
        remote = FakeRemote(data={CUSTOMERS: REMOTE_CUSTOMERS}, updated_at="2025-02-01T00:00:00.000Z")

        assert _reconciler(store, remote, clock).initialize() is SyncOutcome.PULLED

    def test_newer_local_pushes(self, store, clock):
        store.set_raw(CUSTOMERS, LOCAL_CUSTOMERS)
        store.set_updated_at("2025-03-01T00:00:00.000Z")
        remote = FakeRemote(data={CUSTOMERS: REMOTE_CUSTOMERS}, updated_at="2025-02-01T00:00:00.000Z")

        outcome = _reconciler(store, remote, clock).initialize()

        assert outcome is SyncOutcome.PUSHED
        assert store.get_raw(CUSTOMERS) == LOCAL_CUSTOMERS
        assert remote.data == {CUSTOMERS: LOCAL_CUSTOMERS}

    def test_remote_without_timestamp_loses_to_stamped_local(self, store, clock):
        store.set_raw(CUSTOMERS, LOCAL_CUSTOMERS)
        store.set_updated_at("2025-03-01T00:00:00.000Z")
        remote = FakeRemote(data={CUSTOMERS: REMOTE_CUSTOMERS}, updated_at=None)

        assert _reconciler(store, remote, clock).initialize() is SyncOutcome.PUSHED

    def test_pull_without_remote_timestamp_keeps_local_stamp(self, store, clock):
        store.set_raw(CUSTOMERS, LOCAL_CUSTOMERS)
        store.set_updated_at("not-a-date")
        remote = FakeRemote(data={CUSTOMERS: REMOTE_CUSTOMERS}, updated_at=None)

        assert _reconciler(store, remote, clock).initialize() is SyncOutcome.PULLED
        assert store.get_raw(CUSTOMERS) == REMOTE_CUSTOMERS
        assert store.updated_at() == "not-a-date"

    def test_fetch_failure_changes_nothing(self, store, clock):
        store.set_raw(CUSTOMERS, LOCAL_CUSTOMERS)
        remote = FakeRemote(data={CUSTOMERS: REMOTE_CUSTOMERS})
        remote.fail_fetch = requests.ConnectionError("offline")

        assert _reconciler(store, remote, clock).initialize() is SyncOutcome.FAILED
        assert store.get_raw(CUSTOMERS) == LOCAL_CUSTOMERS
        assert store.updated_at() is None

    def test_stopped_ignores_response(self, store, clock):
        remote = FakeRemote(data={CUSTOMERS: REMOTE_CUSTOMERS}, updated_at="2025-01-01T00:00:00.000Z")
        reconciler = _reconciler(store, remote, clock)
        reconciler.stop()

        assert reconciler.initialize() is SyncOutcome.SKIPPED
        assert store.get_raw(CUSTOMERS) is None


class TestTick:
    def test_push_only_on_change(self, store, clock):
        remote = FakeRemote(data={CUSTOMERS: REMOTE_CUSTOMERS}, updated_at="2025-01-01T00:00:00.000Z")
        reconciler = _reconciler(store, remote, clock)
        reconciler.initialize()

        assert reconciler.tick() is SyncOutcome.UNCHANGED

        store.set_raw(PROPOSALS, "[]")
        assert reconciler.tick() is SyncOutcome.PUSHED
        assert remote.pushes[-1] == {CUSTOMERS: REMOTE_CUSTOMERS, PROPOSALS: "[]"}
        assert reconciler.tick() is SyncOutcome.UNCHANGED
        assert len(remote.pushes) == 1

    def test_no_push_until_initialize_reaches_remote(self, store, clock):
        store.set_raw(CUSTOMERS, LOCAL_CUSTOMERS)
        store.set_updated_at("2020-01-01T00:00:00.000Z")
        remote = FakeRemote(data={CUSTOMERS: REMOTE_CUSTOMERS}, updated_at="2025-01-01T00:00:00.000Z")
        remote.fail_fetch = requests.ConnectionError("offline")
        reconciler = _reconciler(store, remote, clock)

        assert reconciler.initialize() is SyncOutcome.FAILED
        assert reconciler.tick() is SyncOutcome.FAILED
        assert remote.pushes == []

        remote.fail_fetch = None
        assert reconciler.tick() is SyncOutcome.PULLED
        assert remote.pushes == []
        assert store.get_raw(CUSTOMERS) == REMOTE_CUSTOMERS
        assert reconciler.tick() is SyncOutcome.UNCHANGED

    def test_failed_push_retries_next_tick(self, store, clock):
        remote = FakeRemote(data=None)
        reconciler = _reconciler(store, remote, clock)
        store.set_raw(CUSTOMERS, LOCAL_CUSTOMERS)
        remote.fail_push = RemoteError("PUT /app-data failed: 500")

        assert reconciler.tick() is SyncOutcome.FAILED

        remote.fail_push = None
        assert reconciler.tick() is SyncOutcome.PUSHED
        assert remote.pushes == [{CUSTOMERS: LOCAL_CUSTOMERS}]

    def test_push_in_flight_skips(self, store, clock):
        remote = FakeRemote(data=None)
        reconciler = _reconciler(store, remote, clock)
        store.set_raw(CUSTOMERS, LOCAL_CUSTOMERS)

        reconciler._in_flight.acquire()
        try:
            assert reconciler.tick() is SyncOutcome.SKIPPED
        finally:
            reconciler._in_flight.release()

        assert remote.pushes == []
        assert reconciler.tick() is SyncOutcome.PUSHED

    def test_push_stamps_local_updated_at(self, store):
        remote = FakeRemote(data=None)
        moment = datetime(2025, 5, 1, 8, 0, 0, 123000, tzinfo=timezone.utc)
        reconciler = SnapshotReconciler(store, remote, clock=lambda: moment)
        store.set_raw(CUSTOMERS, LOCAL_CUSTOMERS)

        reconciler.tick()

        assert store.updated_at() == "2025-05-01T08:00:00.123Z"

    def test_stopped_does_nothing(self, store, clock):
        remote = FakeRemote(data=None)
        reconciler = _reconciler(store, remote, clock)
        store.set_raw(CUSTOMERS, LOCAL_CUSTOMERS)
        reconciler.stop()

        assert reconciler.tick() is SyncOutcome.SKIPPED
        assert remote.pushes == []


def _response(status_code, payload=None):
    resp = mock.Mock(status_code=status_code, text="body")
    if payload is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = payload
    return resp


class TestRemoteSnapshotClient:
    def test_fetch(self):
        session = mock.Mock()
        session.get.return_value = _response(200, {"data": {CUSTOMERS: "[]"}, "updatedAt": "2025-01-01T00:00:00.000Z"})
        client = RemoteSnapshotClient("https://remote.example.com/api/", "tok", timeout=3, session=session)

        snapshot = client.fetch()

        assert snapshot.data == {CUSTOMERS: "[]"}
        assert snapshot.updated_at == "2025-01-01T00:00:00.000Z"
        session.get.assert_called_once_with(
            "https://remote.example.com/api/app-data",
            headers={"Authorization": "Bearer tok", "Accept": "application/json"},
            timeout=3,
        )

    def test_fetch_without_data(self):
        session = mock.Mock()
        session.get.return_value = _response(200, {"data": None, "updatedAt": None})
        snapshot = RemoteSnapshotClient("https://r", "tok", session=session).fetch()
        assert snapshot.has_data is False

    @pytest.mark.parametrize("status", [401, 404, 500])
    def test_fetch_error_status(self, status):
        session = mock.Mock()
        session.get.return_value = _response(status, {})
        with pytest.raises(RemoteError):
            RemoteSnapshotClient("https://r", "tok", session=session).fetch()

    def test_fetch_invalid_json(self):
        session = mock.Mock()
        session.get.return_value = _response(200)
        with pytest.raises(RemoteError):
            RemoteSnapshotClient("https://r", "tok", session=session).fetch()

    def test_push(self):
        session = mock.Mock()
        session.put.return_value = _response(200, {"ok": True, "updatedAt": "2025-03-14T10:30:00.000Z"})
        client = RemoteSnapshotClient("https://r", "tok", session=session)

        assert client.push({CUSTOMERS: "[]"}) == "2025-03-14T10:30:00.000Z"
        assert session.put.call_args.kwargs["json"] == {"data": {CUSTOMERS: "[]"}}

    def test_push_error_status(self):
        session = mock.Mock()
        session.put.return_value = _response(503, {})
        with pytest.raises(RemoteError):
            RemoteSnapshotClient("https://r", "tok", session=session).push({})


class TestFromConfig:
    def test_disabled_without_url(self, app):
        assert reconciler_from_config(app) is None

    def test_configured(self, app):
        app.config.update(REMOTE_API_URL="https://remote.example.com/api", REMOTE_API_TOKEN="tok")
        with app.app_context():
            reconciler = reconciler_from_config(app)
        assert reconciler.client.base_url == "https://remote.example.com/api"
        assert reconciler.client.token == "tok"
