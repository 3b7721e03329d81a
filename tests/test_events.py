"""Tests for the event outbox, event log, audit sink and notifier."""

import asyncio
import json
import threading

import httpx
import pytest

from fairline.app.core.security import user_hash
from fairline.app.services.admission import QueueEntry
from fairline.app.services.audit import AuditSink
from fairline.app.services.events import EventLogWriter, EventOutbox, EventSink, QueueEvent
from fairline.app.services.notifier import AdmissionNotifier


class RecordingSink(EventSink):
    def __init__(self):
        self.batches = []
        self.started = False
        self.closed = False

    async def handle(self, events):
        self.batches.append(list(events))

    async def start(self):
        self.started = True

    async def close(self):
        self.closed = True

    @property
    def events(self):
        return [e for batch in self.batches for e in batch]


class FailingSink(EventSink):
    async def handle(self, events):
        raise RuntimeError("sink down")


class SlowSink(EventSink):
    def __init__(self, delay: float = 0.2):
        self.delay = delay
        self.handling = asyncio.Event()
        self.events = []

    async def handle(self, events):
        self.handling.set()
        await asyncio.sleep(self.delay)
        self.events.extend(events)


def join_event(i: int) -> QueueEvent:
    return QueueEvent(
        type="join",
        queue_id=f"q-{i}",
        traffic_class="general",
        region="IN",
        joined_at=1000 + i,
        position=i + 1,
    )


class TestQueueEvent:
    def test_record_skips_missing_fields(self):
        record = QueueEvent(type="throttle", at=5, data={"admitPerMinute": 30}).to_record()
        assert record == {"type": "throttle", "t": 5, "admitPerMinute": 30}

    def test_record_for_join(self):
        record = join_event(0).to_record()
        assert record["qid"] == "q-0"
        assert record["bucket"] == "general"
        assert record["position"] == 1


class TestEventOutbox:
    @pytest.mark.asyncio
    async def test_delivers_published_events(self):
        sink = RecordingSink()
        outbox = EventOutbox(sinks=[sink])
        await outbox.start()
        assert sink.started

        for i in range(3):
            outbox.publish(join_event(i))
        await asyncio.sleep(0.05)
        await outbox.stop()

        assert [e.queue_id for e in sink.events] == ["q-0", "q-1", "q-2"]
        assert outbox.published == 3
        assert sink.closed

    @pytest.mark.asyncio
    async def test_stop_drains_pending_events(self):
        sink = RecordingSink()
        outbox = EventOutbox(sinks=[sink])
        await outbox.start()

        outbox.publish(join_event(0))
        await outbox.stop()

        assert len(sink.events) == 1

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_batch(self):
        sink = SlowSink()
        outbox = EventOutbox(sinks=[sink])
        await outbox.start()

        outbox.publish(join_event(0))
        await asyncio.wait_for(sink.handling.wait(), timeout=1)
        await outbox.stop()

        assert [e.queue_id for e in sink.events] == ["q-0"]
        assert outbox.published == 1

    @pytest.mark.asyncio
    async def test_publish_during_stop_is_dropped(self):
        sink = SlowSink()
        outbox = EventOutbox(sinks=[sink])
        await outbox.start()

        outbox.publish(join_event(0))
        await asyncio.wait_for(sink.handling.wait(), timeout=1)
        stopping = asyncio.create_task(outbox.stop())
        await asyncio.sleep(0)

        outbox.publish(join_event(1))
        await stopping

        assert [e.queue_id for e in sink.events] == ["q-0"]
        assert outbox.published == 1
        assert outbox.dropped == 1

    def test_publish_when_stopped_is_dropped(self):
        outbox = EventOutbox(sinks=[RecordingSink()])
        outbox.publish(join_event(0))
        assert outbox.dropped == 1
        assert outbox.running is False

    @pytest.mark.asyncio
    async def test_full_outbox_drops(self):
        outbox = EventOutbox(sinks=[], max_size=2)
        await outbox.start()
        # Block the dispatcher by never yielding between publishes
        outbox._put(join_event(0))
        outbox._put(join_event(1))
        outbox._put(join_event(2))
        assert outbox.dropped == 1
        await outbox.stop()

    @pytest.mark.asyncio
    async def test_publish_from_another_thread(self):
        sink = RecordingSink()
        outbox = EventOutbox(sinks=[sink])
        await outbox.start()

        thread = threading.Thread(target=outbox.publish, args=(join_event(7),))
        thread.start()
        thread.join()
        await asyncio.sleep(0.05)
        await outbox.stop()

        assert [e.queue_id for e in sink.events] == ["q-7"]

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_block_others(self):
        sink = RecordingSink()
        outbox = EventOutbox(sinks=[FailingSink(), sink])
        await outbox.start()

        outbox.publish(join_event(0))
        await asyncio.sleep(0.05)
        await outbox.stop()

        assert len(sink.events) == 1


class TestEventLogWriter:
    @pytest.mark.asyncio
    async def test_appends_json_lines(self, tmp_path):
        path = tmp_path / "nested" / "events.jsonl"
        writer = EventLogWriter(path)

        await writer.handle([join_event(0)])
        await writer.handle([join_event(1), QueueEvent(type="pow_ok", at=1)])

        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 3
        assert json.loads(lines[0])["qid"] == "q-0"
        assert json.loads(lines[2]) == {"type": "pow_ok", "t": 1}


class TestAuditSink:
    @staticmethod
    def make_sink(tmp_path, handler, **kwargs):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        defaults = dict(
            url="https://ledger.test/events",
            token="ledger-token",
            buffer_size=2,
            flush_interval=60.0,
            max_retries=2,
            retry_delay=0,
            dead_letter_path=tmp_path / "dead.jsonl",
            client=client,
        )
        defaults.update(kwargs)
        return AuditSink(**defaults)

    @pytest.mark.asyncio
    async def test_disabled_without_url(self, tmp_path):
        sink = AuditSink(url="", dead_letter_path=tmp_path / "dead.jsonl")
        await sink.start()
        await sink.handle([join_event(0)])
        await sink.close()

        assert sink.enabled is False
        assert sink.status()["pending"] == 0

    @pytest.mark.asyncio
    async def test_posts_hashed_records_at_buffer_size(self, tmp_path):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        sink = self.make_sink(tmp_path, handler)
        await sink.start()
        try:
            admit = QueueEvent(
                type="admit", queue_id="q-1", traffic_class="general", joined_at=1001, position=0
            )
            await sink.handle([join_event(0), QueueEvent(type="pow_ok")])
            assert requests == []
            await sink.handle([admit])
        finally:
            await sink.close()

        assert len(requests) == 1
        assert requests[0].headers["Authorization"] == "Bearer ledger-token"
        records = json.loads(requests[0].content)["records"]
        assert [r["evType"] for r in records] == [1, 2]
        assert records[0]["userHash"] == user_hash("q-0", 1000)
        assert records[0]["position"] == 1
        assert "q-0" not in requests[0].content.decode()
        assert sink.status()["sent"] == 2

    @pytest.mark.asyncio
    async def test_close_flushes_partial_buffer(self, tmp_path):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200)

        sink = self.make_sink(tmp_path, handler, buffer_size=100)
        await sink.start()
        await sink.handle([join_event(0)])
        await sink.close()

        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_retries_then_dead_letters(self, tmp_path):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(503)

        sink = self.make_sink(tmp_path, handler, buffer_size=1, max_retries=3)
        await sink.start()
        await sink.handle([join_event(0)])
        await sink.close()

        assert len(attempts) == 3
        assert sink.status()["failed"] == 1
        lines = (tmp_path / "dead.jsonl").read_text().splitlines()
        assert len(lines) == 1
        dead = json.loads(lines[0])
        assert dead["evType"] == 1
        assert "failedAt" in dead

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, tmp_path):
        responses = iter([httpx.Response(500), httpx.Response(200)])

        def handler(request):
            return next(responses)

        sink = self.make_sink(tmp_path, handler, buffer_size=1)
        await sink.start()
        await sink.handle([join_event(0)])
        await sink.close()

        assert sink.status()["sent"] == 1
        assert not (tmp_path / "dead.jsonl").exists()


class TestAdmissionNotifier:
    @staticmethod
    def entry(key="q-1"):
        return QueueEntry(queue_id=key, traffic_class="vip", joined_at=1000, credential_key=key)

    @pytest.mark.asyncio
    async def test_subscriber_receives_admit(self):
        notifier = AdmissionNotifier()
        sub = notifier.subscribe("q-1")
        other = notifier.subscribe("q-2")

        notifier.on_admit(self.entry("q-1"))
        message = await asyncio.wait_for(sub.messages.get(), timeout=1)

        assert message["type"] == "admit"
        assert other.messages.empty()

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        notifier = AdmissionNotifier()
        sub = notifier.subscribe("q-1")
        assert notifier.subscriber_count("q-1") == 1

        notifier.unsubscribe(sub)
        notifier.unsubscribe(sub)

        assert notifier.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_admit_is_published_for_audit(self):
        sink = RecordingSink()
        outbox = EventOutbox(sinks=[sink])
        await outbox.start()
        notifier = AdmissionNotifier(outbox)

        notifier.on_admit(self.entry())
        await asyncio.sleep(0.05)
        await outbox.stop()

        (event,) = sink.events
        assert event.type == "admit"
        assert event.position == 0
        assert event.joined_at == 1000
