import asyncio

from ble_csv_recorder.events import EventQueue


def test_events_after_stop_are_dropped_not_dispatched():
    dropped = []
    queue = EventQueue(on_drop=dropped.append)
    seen = []

    queue.post("a")
    queue.stop()
    queue.post("b")
    asyncio.run(queue.run(seen.append))

    assert seen == ["a"]
    assert dropped == ["b"]
    assert queue.closed
    queue.post("c")
    assert dropped == ["b", "c"]
    assert queue.pending() == 0


def test_stop_after_close_is_noop():
    queue = EventQueue()
    queue.stop()
    asyncio.run(queue.run(lambda ev: None))
    queue.stop()
    assert queue.pending() == 0
