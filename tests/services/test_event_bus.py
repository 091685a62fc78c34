from workflow_services.event_bus import WILDCARD, Event, EventBus


def test_publish_delivers_in_subscription_order():
    bus = EventBus()
    seen = []
    bus.subscribe("a", lambda e: seen.append(("first", e.data["n"])))
    bus.subscribe("a", lambda e: seen.append(("second", e.data["n"])))
    bus.subscribe("b", lambda e: seen.append(("other", e.data["n"])))

    event = bus.publish("a", {"n": 1})

    assert event == Event(type="a", data={"n": 1})
    assert seen == [("first", 1), ("second", 1)]


def test_wildcard_sees_everything():
    bus = EventBus()
    seen = []
    bus.subscribe(WILDCARD, lambda e: seen.append(e.type))
    bus.publish("x")
    bus.publish("y", {})
    assert seen == ["x", "y"]


def test_unsubscribe():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe("a", seen.append)
    assert bus.handler_count("a") == 1

    unsubscribe()
    unsubscribe()
    bus.publish("a")

    assert seen == []
    assert bus.handler_count("a") == 0


def test_failing_handler_is_isolated(captured_logs):
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("handler bug")

    bus.subscribe("a", broken)
    bus.subscribe("a", seen.append)

    bus.publish("a", {"k": "v"})

    assert len(seen) == 1
    failure = next(r for r in captured_logs() if r["message"] == "event_handler_failed")
    assert failure["event_type"] == "a"
    assert failure["exc_type"] == "RuntimeError"


def test_payload_is_copied():
    bus = EventBus()
    payload = {"n": 1}
    event = bus.publish("a", payload)
    payload["n"] = 2
    assert event.data == {"n": 1}
    assert event.to_dict() == {"type": "a", "data": {"n": 1}}


def test_handler_may_publish_reentrantly():
    bus = EventBus()
    seen = []
    bus.subscribe("first", lambda e: bus.publish("second", e.data))
    bus.subscribe("second", lambda e: seen.append(e.data))
    bus.publish("first", {"n": 1})
    assert seen == [{"n": 1}]
