import anyio

from renderer.app.events import (
    MemoryQueueEventEmitter,
    NullEventEmitter,
    RenderEvent,
    RenderEventType,
)
from renderer.app.events.emitter import emit_safely


def test_memory_emitter_streams_until_terminal_event():
    emitter = MemoryQueueEventEmitter()

    async def main():
        await emitter.emit(RenderEvent(render_id="r1", event_type=RenderEventType.RENDER_STARTED))
        await emitter.emit(
            RenderEvent(render_id="r1", event_type=RenderEventType.REMOTE_JOB_POLLING)
        )
        await emitter.emit(
            RenderEvent(render_id="r1", event_type=RenderEventType.RENDER_COMPLETED)
        )
        # ignored once closed
        await emitter.emit(RenderEvent(render_id="r1", event_type=RenderEventType.RENDER_FAILED))
        return [event.event_type async for event in emitter.stream()]

    assert anyio.run(main) == [
        RenderEventType.RENDER_STARTED,
        RenderEventType.REMOTE_JOB_POLLING,
        RenderEventType.RENDER_COMPLETED,
    ]


def test_emit_safely_drops_emitter_failures():
    class Exploding:
        calls = 0

        async def emit(self, event):
            Exploding.calls += 1
            raise ConnectionError("listener went away")

    async def main():
        await emit_safely(Exploding(), "r1", RenderEventType.RENDER_STARTED, {"a": 1})
        await emit_safely(None, "r1", RenderEventType.RENDER_STARTED)
        await emit_safely(NullEventEmitter(), "r1", RenderEventType.RENDER_STARTED)

    anyio.run(main)

    assert Exploding.calls == 1


def test_event_carries_details_and_a_utc_timestamp():
    event = RenderEvent(
        render_id="r1",
        event_type=RenderEventType.FALLBACK_USED,
        details={"primary_error": "boom"},
    )

    assert event.details == {"primary_error": "boom"}
    assert event.timestamp.tzinfo is not None
