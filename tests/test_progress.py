from __future__ import annotations

from video_ladder.progress import ProgressEvent, ProgressReporter, QueueProgressSink


def test_reporter_never_goes_backwards() -> None:
    events: list[ProgressEvent] = []
    reporter = ProgressReporter("job", sink=events.append)

    reporter.emit(10, "metadata")
    reporter.emit(40, "360p")
    reporter.emit(25, "late thumbnail")
    reporter.note("thumbnail 1/5")
    reporter.emit(150, "done")

    assert [(e.percent, e.message) for e in events] == [
        (10, "metadata"),
        (40, "360p"),
        (40, "late thumbnail"),
        (40, "thumbnail 1/5"),
        (100, "done"),
    ]
    assert reporter.last_percent == 100


def test_fail_emits_minus_one_regardless_of_last_percent() -> None:
    events: list[ProgressEvent] = []
    reporter = ProgressReporter("job", sink=events.append)

    reporter.emit(60, "720p")
    reporter.fail("处理失败: boom")

    assert events[-1].percent == -1
    assert events[-1].message == "处理失败: boom"
    assert events[-1].timestamp.endswith("+00:00")


def test_broken_sink_does_not_stop_the_producer() -> None:
    logs: list[str] = []

    def sink(event: ProgressEvent) -> None:
        raise ConnectionError("socket closed")

    reporter = ProgressReporter("job", sink=sink, log_cb=logs.append)
    reporter.emit(10, "metadata")
    reporter.emit(20, "360p")

    assert reporter.last_percent == 20
    assert len(logs) == 2
    assert "socket closed" in logs[0]


def test_reporter_without_sink_is_silent() -> None:
    reporter = ProgressReporter("job")
    reporter.emit(50, "half")
    reporter.fail("boom")

    assert reporter.last_percent == 50


def test_queue_sink_drops_when_full() -> None:
    sink = QueueProgressSink(maxsize=2)
    reporter = ProgressReporter("job", sink=sink)

    for percent in (10, 20, 30, 40):
        reporter.emit(percent, f"step {percent}")

    drained = sink.drain()
    assert [event.percent for event in drained] == [10, 20]
    assert sink.dropped == 2
    assert sink.drain() == []
