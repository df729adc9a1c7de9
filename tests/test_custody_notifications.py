import logging

import pytest

from app.custody.client.ledger_view import OptimisticLedgerView
from app.custody.services.notifications import ChangeBus


class FakeTimer:
    created = []

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function()


@pytest.fixture()
def bus():
    FakeTimer.created = []
    return ChangeBus(debounce_ms=250, timer_factory=FakeTimer)


def test_publishes_are_coalesced_into_one_batch(bus):
    batches = []
    bus.subscribe(batches.append)

    bus.publish("ledger", "agent-1")
    bus.publish("ledger", "agent-1")
    bus.publish("ledger", "leader-1")
    bus.publish("orders", "order-9")

    assert len(FakeTimer.created) == 1
    timer = FakeTimer.created[0]
    assert timer.started is True
    assert timer.interval == 0.25
    assert batches == []
    assert bus.pending() == {"ledger": {"agent-1", "leader-1"}, "orders": {"order-9"}}

    timer.fire()
    (batch,) = batches
    assert batch.keys("ledger") == frozenset({"agent-1", "leader-1"})
    assert batch.keys("orders") == frozenset({"order-9"})
    assert batch.keys("remittances") == frozenset()
    assert bus.pending() == {}


def test_a_new_window_starts_after_flush(bus):
    bus.publish("requests", "r1")
    bus.flush()
    bus.publish("requests", "r2")
    assert len(FakeTimer.created) == 2
    assert FakeTimer.created[0].cancelled is True


def test_zero_debounce_delivers_immediately():
    batches = []
    bus = ChangeBus(debounce_ms=0, timer_factory=FakeTimer)
    bus.subscribe(batches.append)
    bus.publish("remittances", "rem-1")
    assert [batch.keys("remittances") for batch in batches] == [frozenset({"rem-1"})]


def test_failing_subscriber_does_not_block_others(bus, caplog):
    received = []

    def broken(batch):
        raise RuntimeError("subscriber down")

    bus.subscribe(broken)
    bus.subscribe(received.append)
    bus.publish("ledger", "x")

    with caplog.at_level(logging.ERROR, logger="app.custody.services.notifications"):
        batch = bus.flush()

    assert received == [batch]
    assert "Change subscriber failed" in caplog.text


def test_unsubscribe_and_unknown_topic(bus):
    batches = []
    unsubscribe = bus.subscribe(batches.append)
    unsubscribe()
    bus.publish("ledger", "x")
    bus.flush()
    assert batches == []
    assert bus.flush() is None

    with pytest.raises(ValueError):
        bus.publish("catalog", "x")


def test_close_drops_pending_changes(bus):
    bus.publish("orders", "o1")
    bus.close()
    assert bus.pending() == {}
    assert FakeTimer.created[0].cancelled is True


def test_optimistic_deltas_sit_on_top_of_confirmed_values():
    view = OptimisticLedgerView({("agent", "v1"): 10})
    assert view.apply_optimistic("agent", "v1", -4) == 6
    assert view.confirmed("agent", "v1") == 10
    assert view.has_pending() is True

    assert view.apply_optimistic("agent", "v1", -20) == 0


def test_reconcile_replaces_deltas_for_covered_keys():
    view = OptimisticLedgerView({("agent", "v1"): 10, ("agent", "v2"): 5})
    view.apply_optimistic("agent", "v1", -4)
    view.apply_optimistic("agent", "v2", 3)

    view.reconcile({("agent", "v1"): 7})
    assert view.quantity("agent", "v1") == 7
    assert view.quantity("agent", "v2") == 8

    view.reconcile({("agent", "v3"): 1}, full=True)
    assert view.quantity("agent", "v2") == 0
    assert view.quantity("agent", "v3") == 1
    assert view.has_pending() is False


def test_discard_drops_a_rejected_delta():
    view = OptimisticLedgerView()
    view.apply_optimistic("leader", "v1", 5)
    view.discard("leader", "v1")
    assert view.quantity("leader", "v1") == 0
    assert view.has_pending() is False
