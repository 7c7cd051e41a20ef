from datetime import datetime, timedelta, timezone
from decimal import Decimal

from subtracker.schemas.subscription import Subscription
from subtracker.services.connectivity import ConnectivityMonitor
from subtracker.services.notifications import NotificationService

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _sub(sub_id: str = "s1", days: int = 3, **overrides) -> Subscription:
    data = {
        "id": sub_id,
        "name": "Netflix",
        "cost": Decimal("1299.5"),
        "user_id": "42",
        "next_billing_date": NOW + timedelta(days=days),
    }
    data.update(overrides)
    return Subscription(**data)


class TestPaymentReminders:
    def setup_method(self):
        self.sent = []
        self.service = NotificationService(sinks=[self.sent.append], reminder_days=7)

    def test_reminder_inside_window(self):
        notification = self.service.payment_reminder(_sub(), now=NOW)
        assert notification.title == "Upcoming Payment Reminder"
        assert notification.body == "Netflix payment of $1,299.50 is due in 3 days"
        assert notification.tag == "payment-Netflix"
        assert self.sent == [notification]

    def test_reminder_sent_once_per_subscription(self):
        self.service.payment_reminder(_sub(), now=NOW)
        assert self.service.payment_reminder(_sub(), now=NOW) is None
        assert len(self.sent) == 1

    def test_outside_window_or_inactive_is_ignored(self):
        assert self.service.payment_reminder(_sub(days=30), now=NOW) is None
        assert self.service.payment_reminder(_sub("s2", status="CANCELLED"), now=NOW) is None
        assert self.sent == []

    def test_remind_upcoming(self):
        subs = [_sub("a", days=1), _sub("b", days=20), _sub("c", days=7)]
        sent = self.service.remind_upcoming(subs, now=NOW)
        assert len(sent) == 2


def test_failing_sink_does_not_stop_others():
    received = []

    def broken(notification):
        raise RuntimeError("sink down")

    service = NotificationService(sinks=[broken, received.append])
    service.sync_status_changed(False)
    assert [n.title for n in received] == ["Offline Mode"]


class TestConnectivityMonitor:
    def test_listeners_fire_on_transitions_only(self):
        monitor = ConnectivityMonitor(online=True)
        seen = []
        monitor.add_listener(seen.append)

        monitor.go_online()
        monitor.go_offline()
        monitor.go_offline()
        monitor.go_online()

        assert seen == [False, True]
        assert monitor.is_online

    def test_failing_listener_is_isolated(self):
        monitor = ConnectivityMonitor(online=False)
        seen = []

        def broken(online):
            raise RuntimeError("boom")

        monitor.add_listener(broken)
        monitor.add_listener(seen.append)
        monitor.go_online()
        assert seen == [True]

    def test_remove_listener(self):
        monitor = ConnectivityMonitor()
        seen = []
        monitor.add_listener(seen.append)
        monitor.remove_listener(seen.append)
        monitor.go_offline()
        assert seen == []

    def test_banners_follow_connectivity(self):
        received = []
        service = NotificationService(sinks=[received.append])
        monitor = ConnectivityMonitor()
        monitor.add_listener(service.sync_status_changed)
        monitor.go_offline()
        monitor.go_online()
        assert [n.title for n in received] == ["Offline Mode", "Back Online"]
        assert all(n.tag == "sync" for n in received)
