from datetime import datetime, timedelta, timezone
from decimal import Decimal

from subtracker.schemas.subscription import Subscription
from subtracker.services.offline_sync import SyncQueue

FUTURE = datetime.now(timezone.utc) + timedelta(days=10)


def _sub(sub_id: str, **overrides) -> Subscription:
    data = {
        "id": sub_id,
        "name": f"Service {sub_id}",
        "cost": Decimal("9.99"),
        "user_id": "42",
        "next_billing_date": FUTURE,
    }
    data.update(overrides)
    return Subscription(**data)


def _payload(sub: Subscription) -> dict:
    return sub.model_dump(mode="json")


def test_enqueue_offline_keeps_call_order(sync_queue, connectivity, fake_api):
    """Operations queued offline should all be pending, in call order."""
    connectivity.go_offline()
    sync_queue.enqueue("CREATE", "subscription", _payload(_sub("temp-1")), "temp-1")
    sync_queue.enqueue("UPDATE", "subscription", _payload(_sub("a")), "a")
    sync_queue.enqueue("DELETE", "subscription", None, "b")

    pending = sync_queue.pending_operations()
    assert sync_queue.pending_count == 3
    assert [op.kind for op in pending] == ["CREATE", "UPDATE", "DELETE"]
    assert [op.target_id for op in pending] == ["temp-1", "a", "b"]
    assert all(op.attempts == 0 for op in pending)
    assert fake_api.requests == []


def test_reconnect_replays_create_and_adopts_server_id(sync_queue, connectivity, store, fake_api):
    connectivity.go_offline()
    temp = _sub("temp-1", sync_status="pending_sync")
    store.insert_subscription(temp)
    sync_queue.enqueue("CREATE", "subscription", _payload(temp), "temp-1")

    connectivity.go_online()

    assert sync_queue.pending_count == 0
    assert store.get_subscription("temp-1") is None
    records = store.get_user_subscriptions("42")
    assert [s.id for s in records] == ["srv-1"]
    assert records[0].sync_status == "confirmed"
    assert sync_queue.resolve_id("temp-1") == "srv-1"
    assert sync_queue.last_sync_at is not None
    sent = fake_api.calls("POST", "/subscriptions")[0]
    assert b"temp-1" not in sent.content


def test_delete_replay_treats_404_as_applied(sync_queue, connectivity, store):
    connectivity.go_offline()
    store.insert_subscription(_sub("x"))
    sync_queue.enqueue("DELETE", "subscription", None, "x")

    report = sync_queue.flush()  # offline: nothing happens
    assert report.skipped is True

    connectivity.go_online()
    assert sync_queue.pending_count == 0
    assert store.get_subscription("x") is None


def test_failed_operation_is_retained(sync_queue, connectivity, store, fake_api):
    fake_api.subscriptions["a"] = {"id": "a"}
    store.insert_subscription(_sub("a", sync_status="pending_sync"))
    connectivity.go_offline()
    sync_queue.enqueue("UPDATE", "subscription", _payload(_sub("a", name="Edited")), "a")

    fake_api.force_status = 500
    connectivity.go_online()

    pending = sync_queue.pending_operations()
    assert len(pending) == 1
    assert pending[0].attempts == 1
    assert "forced failure" in pending[0].last_error
    assert sync_queue.last_sync_at is None

    fake_api.force_status = None
    report = sync_queue.flush()
    assert report.applied == 1
    assert sync_queue.pending_count == 0
    assert store.get_subscription("a").name == "Edited"
    assert store.get_subscription("a").sync_status == "confirmed"


def test_failure_does_not_block_other_records(sync_queue, connectivity, fake_api):
    fake_api.subscriptions["b"] = {"id": "b"}
    fake_api.fail_paths["/subscriptions/a"] = 503
    connectivity.go_offline()
    sync_queue.enqueue("UPDATE", "subscription", _payload(_sub("a")), "a")
    sync_queue.enqueue("DELETE", "subscription", None, "b")

    connectivity.go_online()

    assert [op.target_id for op in sync_queue.pending_operations()] == ["a"]
    assert "b" not in fake_api.subscriptions


def test_later_operations_on_a_failed_record_are_deferred(sync_queue, connectivity, fake_api):
    fake_api.fail_paths["/subscriptions/a"] = 500
    connectivity.go_offline()
    sync_queue.enqueue("UPDATE", "subscription", _payload(_sub("a")), "a")
    sync_queue.enqueue("DELETE", "subscription", None, "a")

    connectivity.go_online()

    pending = sync_queue.pending_operations()
    assert [op.kind for op in pending] == ["UPDATE", "DELETE"]
    assert pending[0].attempts == 1
    assert pending[1].attempts == 0
    assert len(fake_api.calls("DELETE")) == 0


def test_network_down_keeps_everything_queued(sync_queue, connectivity, fake_api):
    connectivity.go_offline()
    sync_queue.enqueue("DELETE", "subscription", None, "a")
    fake_api.network_down = True
    connectivity.go_online()
    assert sync_queue.pending_count == 1


def test_concurrent_flush_is_skipped(sync_queue, connectivity):
    connectivity.go_offline()
    sync_queue.enqueue("DELETE", "subscription", None, "a")
    sync_queue._flush_lock.acquire()
    try:
        connectivity.go_online()
        assert sync_queue.is_syncing is True
        assert sync_queue.flush().skipped is True
        assert sync_queue.pending_count == 1
    finally:
        sync_queue._flush_lock.release()
    assert sync_queue.flush().applied == 1


def test_enqueue_online_flushes_immediately(sync_queue, store, fake_api):
    fake_api.subscriptions["a"] = {"id": "a"}
    store.insert_subscription(_sub("a"))
    sync_queue.enqueue("DELETE", "subscription", None, "a")
    assert sync_queue.pending_count == 0
    assert store.get_subscription("a") is None


def test_discard_pending_create(sync_queue, connectivity):
    connectivity.go_offline()
    sync_queue.enqueue("CREATE", "subscription", _payload(_sub("temp-1")), "temp-1")
    sync_queue.enqueue("DELETE", "subscription", None, "other")
    assert sync_queue.discard_pending_create("temp-1") is True
    assert [op.target_id for op in sync_queue.pending_operations()] == ["other"]
    assert sync_queue.discard_pending_create("temp-1") is False


def test_amend_pending_create(sync_queue, connectivity):
    connectivity.go_offline()
    sync_queue.enqueue("CREATE", "subscription", _payload(_sub("temp-1")), "temp-1")
    assert sync_queue.amend_pending_create("temp-1", _payload(_sub("temp-1", name="Renamed"))) is True
    assert sync_queue.find_pending_create("temp-1").payload["name"] == "Renamed"


def test_payment_operations_replay_to_payments(sync_queue, connectivity, fake_api):
    connectivity.go_offline()
    sync_queue.enqueue("CREATE", "payment", {"subscription_id": "a", "amount": "9.99"})
    connectivity.go_online()
    assert sync_queue.pending_count == 0
    assert len(fake_api.calls("POST", "/payments")) == 1


def test_queued_operations_follow_the_server_id(sync_queue, connectivity, store, fake_api):
    connectivity.go_offline()
    temp = _sub("temp-1", sync_status="pending_sync")
    store.insert_subscription(temp)
    sync_queue.enqueue("CREATE", "subscription", _payload(temp), "temp-1")
    sync_queue.enqueue("UPDATE", "subscription", _payload(_sub("temp-1", name="Edited")), "temp-1")

    connectivity.go_online()

    assert sync_queue.pending_count == 0
    assert [r.url.path for r in fake_api.calls("PUT")] == ["/api/subscriptions/srv-1"]
    assert fake_api.subscriptions["srv-1"]["name"] == "Edited"
    assert store.get_subscription("srv-1").name == "Edited"


def test_update_for_a_record_gone_from_server_is_dropped(sync_queue, connectivity, store, fake_api):
    store.insert_subscription(_sub("a", sync_status="pending_sync"))
    connectivity.go_offline()
    sync_queue.enqueue("UPDATE", "subscription", _payload(_sub("a", name="Edited")), "a")
    sync_queue.enqueue("DELETE", "subscription", None, "a")

    connectivity.go_online()

    assert sync_queue.pending_count == 0
    assert store.get_subscription("a") is None
    assert sync_queue.last_sync_at is not None
    assert sync_queue.flush().total == 0


def test_dropped_updates_are_reported(store, api, connectivity):
    queue = SyncQueue(store, api, connectivity, flush_on_enqueue=False)
    store.insert_subscription(_sub("a", sync_status="pending_sync"))
    queue.enqueue("UPDATE", "subscription", _payload(_sub("a")), "a")

    report = queue.flush()

    assert (report.applied, report.failed, report.dropped) == (0, 0, 1)
    assert queue.pending_count == 0


def test_pending_target_ids(sync_queue, connectivity):
    connectivity.go_offline()
    sync_queue.enqueue("UPDATE", "subscription", _payload(_sub("a")), "a")
    sync_queue.enqueue("DELETE", "subscription", None, "b")
    sync_queue.enqueue("CREATE", "payment", {"amount": "1.00"}, "p1")

    assert sync_queue.pending_target_ids() == {"a", "b"}
    assert sync_queue.pending_target_ids("DELETE") == {"b"}
    assert sync_queue.has_pending("a") is True
    assert sync_queue.has_pending("c") is False
