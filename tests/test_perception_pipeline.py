import pytest

from quarry_core.perception import (
    ChannelRouter,
    PerceptionContext,
    PerceptionPipeline,
    SaliencySpec,
    SaliencyStore,
    SignalSpec,
    SourceBinding,
    define_perception_event,
    occurrence_count,
    windowed_count,
)
from quarry_core.signals import CONSCIOUS, REFLEX, SYSTEM


class DummyWorld:
    def __init__(self):
        self.handlers = {}

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def off(self, event, handler):
        self.handlers[event].remove(handler)

    def emit(self, event, *args):
        for handler in list(self.handlers.get(event, [])):
            handler(*args)


def _context():
    return PerceptionContext(
        self_id="me",
        is_self=lambda entity: entity.get("username") == "me",
        distance_to_pos=lambda pos: 1.0,
    )


def _chat_event(id="chat_heard", routes=(CONSCIOUS,), saliency=None, filter=None, extract=None):
    return define_perception_event(
        id=id,
        modality="heard",
        kind="chat",
        source=SourceBinding(
            event="chat",
            filter=filter,
            extract=extract or (lambda ctx, user, text: {"user": user, "text": text}),
        ),
        saliency=saliency,
        signal=SignalSpec(type="chat_message", description=lambda p: f"{p['user']} said {p['text']}"),
        routes=routes,
    )


def _pipeline(*definitions):
    pipeline = PerceptionPipeline(context=_context(), clock=lambda: 123.0)
    pipeline.register_all(definitions)
    return pipeline


def test_matching_event_produces_signal_on_each_route():
    pipeline = _pipeline(_chat_event(routes=(CONSCIOUS, REFLEX)))
    conscious, reflex, system = [], [], []
    pipeline.subscribe(CONSCIOUS, conscious.append)
    pipeline.subscribe(REFLEX, reflex.append)
    pipeline.subscribe(SYSTEM, system.append)

    signals = pipeline.handle("chat", "alex", "hi")

    assert len(signals) == 1
    signal = signals[0]
    assert signal.source_event_id == "chat_heard"
    assert signal.type == "chat_message"
    assert signal.description == "alex said hi"
    assert signal.metadata == {"user": "alex", "text": "hi"}
    assert signal.timestamp == 123.0
    assert conscious == [signal]
    assert reflex == [signal]
    assert system == []


def test_consumers_cannot_change_what_other_channels_receive():
    pipeline = _pipeline(_chat_event(routes=(CONSCIOUS, REFLEX)))
    seen = []

    def meddle(signal):
        signal.metadata["text"] = "mutated"

    pipeline.subscribe(CONSCIOUS, meddle)
    pipeline.subscribe(REFLEX, lambda signal: seen.append(dict(signal.metadata)))

    pipeline.handle("chat", "alex", "hi")

    assert seen == [{"user": "alex", "text": "hi"}]
    assert pipeline.router.delivery_failures == 1


def test_unknown_event_is_ignored():
    pipeline = _pipeline(_chat_event())
    assert pipeline.handle("blockUpdate", object()) == []
    assert pipeline.stats.received == 0


def test_always_false_filter_never_signals():
    pipeline = _pipeline(_chat_event(filter=lambda ctx, user, text: False))
    received = []
    pipeline.subscribe(CONSCIOUS, received.append)

    for _ in range(5):
        pipeline.handle("chat", "alex", "hi")

    assert received == []
    assert pipeline.stats.filtered == 5


def test_threshold_one_on_constant_key_signals_once():
    pipeline = _pipeline(_chat_event(saliency=SaliencySpec(threshold=1, key="chat:any")))
    received = []
    pipeline.subscribe(CONSCIOUS, received.append)

    for _ in range(4):
        pipeline.handle("chat", "alex", "hi")

    assert len(received) == 1
    assert pipeline.stats.suppressed == 3


def test_keys_derived_from_payload_are_independent():
    saliency = SaliencySpec(threshold=1, key=lambda payload: f"chat:{payload['user']}")
    pipeline = _pipeline(_chat_event(saliency=saliency))

    assert pipeline.handle("chat", "alex", "hi")
    assert pipeline.handle("chat", "sam", "hi")
    assert pipeline.handle("chat", "alex", "again") == []


def test_occurrence_count_escalates_every_nth_occurrence():
    saliency = SaliencySpec(threshold=3, key="chat:burst", measure=occurrence_count)
    pipeline = _pipeline(_chat_event(saliency=saliency))

    emitted = [bool(pipeline.handle("chat", "alex", str(i))) for i in range(7)]

    assert emitted == [False, False, True, False, False, True, False]


def test_reset_clears_saliency_state():
    pipeline = _pipeline(_chat_event(saliency=SaliencySpec(threshold=1, key="chat:any")))
    assert pipeline.handle("chat", "alex", "hi")
    assert pipeline.handle("chat", "alex", "hi") == []

    pipeline.saliency.reset("chat:any")

    assert pipeline.handle("chat", "alex", "hi")


def test_multiple_definitions_on_one_event_are_independent():
    loud = _chat_event(id="loud", extract=lambda ctx, user, text: {"user": user, "text": text.upper()})
    quiet = _chat_event(id="quiet", filter=lambda ctx, user, text: user == "sam")
    pipeline = _pipeline(loud, quiet)

    signals = pipeline.handle("chat", "alex", "hi")

    assert [signal.source_event_id for signal in signals] == ["loud"]
    assert pipeline.definitions() == [loud, quiet]
    assert pipeline.events() == ["chat"]


def test_failing_extractor_only_drops_its_own_definition():
    def _boom(ctx, user, text):
        raise KeyError("missing")

    pipeline = _pipeline(_chat_event(id="broken", extract=_boom), _chat_event(id="ok"))

    signals = pipeline.handle("chat", "alex", "hi")

    assert [signal.source_event_id for signal in signals] == ["ok"]
    assert pipeline.stats.dropped == 1


def test_failing_consumer_does_not_block_others():
    pipeline = _pipeline(_chat_event())
    received = []

    def _bad(signal):
        raise RuntimeError("consumer down")

    pipeline.subscribe(CONSCIOUS, _bad)
    pipeline.subscribe(CONSCIOUS, received.append)

    pipeline.handle("chat", "alex", "hi")

    assert len(received) == 1
    assert pipeline.router.delivery_failures == 1


def test_empty_routes_still_return_signal_without_delivery():
    pipeline = _pipeline(_chat_event(routes=()))
    received = []
    pipeline.subscribe(CONSCIOUS, received.append)

    assert len(pipeline.handle("chat", "alex", "hi")) == 1
    assert received == []


def test_unsubscribe_stops_delivery():
    pipeline = _pipeline(_chat_event())
    received = []
    unsubscribe = pipeline.subscribe(CONSCIOUS, received.append)
    unsubscribe()

    pipeline.handle("chat", "alex", "hi")

    assert received == []


def test_attach_and_detach_follow_world_callbacks():
    pipeline = PerceptionPipeline()
    pipeline.register(_chat_event())
    world = DummyWorld()
    received = []
    pipeline.subscribe(CONSCIOUS, received.append)

    pipeline.attach(world, _context())
    world.emit("chat", "alex", "hi")
    assert len(received) == 1

    pipeline.detach()
    assert world.handlers["chat"] == []
    world.emit("chat", "alex", "hi")
    assert len(received) == 1


def test_definitions_registered_after_attach_are_listened_to():
    pipeline = PerceptionPipeline()
    world = DummyWorld()
    pipeline.attach(world, _context())

    pipeline.register(_chat_event())

    assert len(world.handlers["chat"]) == 1


def test_no_context_means_no_signals():
    pipeline = PerceptionPipeline()
    pipeline.register(_chat_event())
    assert pipeline.handle("chat", "alex", "hi") == []


def test_separate_pipelines_do_not_share_saliency():
    saliency = SaliencySpec(threshold=1, key="chat:any")
    first = _pipeline(_chat_event(saliency=saliency))
    second = _pipeline(_chat_event(saliency=saliency))

    assert first.handle("chat", "alex", "hi")
    assert second.handle("chat", "alex", "hi")


def test_duplicate_and_invalid_definitions_are_rejected():
    pipeline = _pipeline(_chat_event())
    with pytest.raises(ValueError):
        pipeline.register(_chat_event())
    with pytest.raises(ValueError):
        _chat_event(routes=("telepathy",))
    with pytest.raises(ValueError):
        _chat_event(id="")
    with pytest.raises(ValueError):
        _chat_event(saliency=SaliencySpec(threshold=-1, key="k"))


def test_router_rejects_unknown_channel():
    with pytest.raises(ValueError):
        ChannelRouter().subscribe("telepathy", lambda signal: None)


def test_saliency_store_snapshot_and_reset_all():
    store = SaliencyStore(clock=lambda: 5.0)
    assert store.observe("a", None, 1)
    assert not store.observe("a", None, 1)
    store.observe("b", None, 1)

    snapshot = store.snapshot()
    assert snapshot["a"]["occurrences"] == 2
    assert snapshot["a"]["fired"] == 1
    assert snapshot["a"]["suppressed"] == 1
    assert snapshot["a"]["last_fired"] == 5.0
    assert len(store) == 2

    store.reset()
    assert store.keys() == []


def test_windowed_count_only_counts_recent_occurrences():
    now = {"t": 0.0}
    store = SaliencyStore(clock=lambda: now["t"])
    measure = windowed_count(2000)

    def observe(at):
        now["t"] = at
        return store.observe("felt:pickup", None, 3, measure)

    # Spread out: the window never holds three at once.
    assert [observe(t) for t in (0.0, 3.0, 6.0, 9.0)] == [False, False, False, False]
    # Burst: the third inside two seconds escalates, then the count starts over.
    assert [observe(t) for t in (9.5, 10.0, 10.5, 11.0)] == [False, True, False, False]
    assert observe(11.2)
    assert store.snapshot()["felt:pickup"]["fired"] == 2
