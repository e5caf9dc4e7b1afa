import logging

from batchroute.models.domain import BatchStatus
from batchroute.models.events import AssignDriver, BatchStatusChanged, StartDelivery
from batchroute.services.events import EventBus


def test_handlers_run_in_subscription_order():
    bus = EventBus()
    calls: list[str] = []
    bus.subscribe(StartDelivery, lambda event: calls.append(f"first:{event.batch_id}"))
    bus.subscribe(StartDelivery, lambda event: calls.append(f"second:{event.batch_id}"))

    bus.publish(StartDelivery("B1"))
    bus.publish(StartDelivery("B2"))

    assert calls == ["first:B1", "second:B1", "first:B2", "second:B2"]


def test_events_only_reach_their_own_subscribers():
    bus = EventBus()
    seen: list[object] = []
    bus.subscribe(AssignDriver, seen.append)

    bus.publish(StartDelivery("B1"))
    bus.publish(BatchStatusChanged("B1", BatchStatus.PENDING, BatchStatus.READY))
    bus.publish(AssignDriver("B1", "driver-1"))

    assert seen == [AssignDriver("B1", "driver-1")]


def test_failing_handler_does_not_block_others(caplog):
    bus = EventBus()
    seen: list[str] = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(StartDelivery, broken)
    bus.subscribe(StartDelivery, lambda event: seen.append(event.batch_id))

    with caplog.at_level(logging.ERROR, logger="batchroute.services.events"):
        bus.publish(StartDelivery("B1"))

    assert seen == ["B1"]
    assert "broken" in caplog.text
    assert "boom" in caplog.text


def test_publish_without_subscribers_is_a_no_op():
    EventBus().publish(StartDelivery("B1"))
