import asyncio
import threading

from bedrock_manager.core.broadcast import BroadcastEvent, BroadcastHub


def _drain(observer):
    events = []
    while True:
        event = observer.get_nowait()
        if event is None:
            return events
        events.append(event)


def test_every_observer_receives_event():
    async def scenario():
        hub = BroadcastHub(coalesce_window=0)
        first, second = hub.subscribe(), hub.subscribe()
        hub.publish("server/bedrock-1", {"status": "started"})
        return await first.get(), await second.get()

    first, second = asyncio.run(scenario())

    assert first.topic == second.topic == "server/bedrock-1"
    assert first.payload == {"status": "started"}


def test_no_replay_for_late_subscribers():
    async def scenario():
        hub = BroadcastHub(coalesce_window=0)
        hub.publish("server/bedrock-1", {"status": "started"})
        return hub.subscribe()

    observer = asyncio.run(scenario())

    assert observer.pending == 0


def test_unsubscribed_observer_stops_receiving():
    async def scenario():
        hub = BroadcastHub(coalesce_window=0)
        observer = hub.subscribe()
        hub.unsubscribe(observer)
        hub.publish("server/bedrock-1", {})
        return hub, observer, await observer.get()

    hub, observer, event = asyncio.run(scenario())

    assert event is None
    assert observer.closed
    assert hub.observer_count == 0


def test_same_topic_within_window_is_coalesced():
    async def scenario():
        hub = BroadcastHub(coalesce_window=0.05)
        observer = hub.subscribe()
        hub.publish("server/bedrock-1", {"status": "created"})
        hub.publish("server/bedrock-1", {"status": "started"})
        hub.publish("server/bedrock-2", {"status": "stopped"})
        hub.publish("server/bedrock-1", {"status": "stopped"})
        assert observer.pending == 0
        await asyncio.sleep(0.2)
        return hub, _drain(observer)

    hub, events = asyncio.run(scenario())

    by_topic = {event.topic: event.payload for event in events}
    assert len(events) == 2
    assert by_topic == {
        "server/bedrock-1": {"status": "stopped"},
        "server/bedrock-2": {"status": "stopped"},
    }
    assert hub.coalesced == 2


def test_flush_delivers_held_events():
    async def scenario():
        hub = BroadcastHub(coalesce_window=60)
        observer = hub.subscribe()
        hub.publish("reconcile", {"created": ["bedrock-1"]})
        hub.flush()
        return _drain(observer)

    events = asyncio.run(scenario())

    assert [event.topic for event in events] == ["reconcile"]


def test_full_queue_drops_oldest():
    async def scenario():
        hub = BroadcastHub(coalesce_window=0, max_queue=3)
        observer = hub.subscribe()
        for n in range(5):
            hub.publish(f"server/bedrock-{n}", {"n": n})
        return observer, _drain(observer)

    observer, events = asyncio.run(scenario())

    assert [event.payload["n"] for event in events] == [2, 3, 4]
    assert observer.dropped == 2


def test_per_topic_order_is_preserved():
    async def scenario():
        hub = BroadcastHub(coalesce_window=0)
        observer = hub.subscribe()
        for status in ("created", "started", "stopped"):
            hub.publish("server/bedrock-1", {"status": status})
        return _drain(observer)

    events = asyncio.run(scenario())

    assert [event.payload["status"] for event in events] == ["created", "started", "stopped"]


def test_publish_from_worker_thread():
    async def scenario():
        hub = BroadcastHub(coalesce_window=0)
        observer = hub.subscribe()
        thread = threading.Thread(target=hub.publish, args=("server/bedrock-1", {"status": "started"}))
        thread.start()
        thread.join()
        return await asyncio.wait_for(observer.get(), timeout=1)

    event = asyncio.run(scenario())

    assert event.payload == {"status": "started"}


def test_close_detaches_everyone():
    async def scenario():
        hub = BroadcastHub(coalesce_window=0)
        observer = hub.subscribe()
        received = []

        async def consume():
            async for event in observer:
                received.append(event.topic)

        task = asyncio.create_task(consume())
        hub.publish("server/bedrock-1", {})
        await asyncio.sleep(0)
        hub.close()
        await asyncio.wait_for(task, timeout=1)
        return hub, received

    hub, received = asyncio.run(scenario())

    assert received == ["server/bedrock-1"]
    assert hub.observer_count == 0


def test_event_to_dict():
    event = BroadcastEvent(topic="server/bedrock-1", payload={"status": "started"}, timestamp=1.5)

    assert event.to_dict() == {"topic": "server/bedrock-1", "payload": {"status": "started"}, "timestamp": 1.5}
