from __future__ import annotations

from conftest import FakeClock

from setu.transcription.sentence_queue import SentenceQueue


def test_fragments_accumulate_until_finalize(clock: FakeClock) -> None:
    queue = SentenceQueue(pause_threshold_ms=1500, clock=clock)
    assert queue.add_fragment("meri gali") is None
    clock.advance(400)
    assert queue.add_fragment("mein andhera") is None
    assert queue.buffer == "meri gali mein andhera"
    assert queue.finalize() == "meri gali mein andhera"
    assert queue.finalize() is None


def test_long_pause_finalizes_previous_buffer(clock: FakeClock) -> None:
    queue = SentenceQueue(pause_threshold_ms=1500, clock=clock)
    assert queue.add_fragment("naam") is None
    clock.advance(2000)
    assert queue.add_fragment("badalna") == "naam"
    assert queue.buffer == "badalna"
    assert queue.fragment_count == 1


def test_pause_equal_to_threshold_keeps_accumulating(clock: FakeClock) -> None:
    queue = SentenceQueue(pause_threshold_ms=1500, clock=clock)
    queue.add_fragment("naam")
    clock.advance(1500)
    assert queue.add_fragment("badalna") is None
    assert queue.buffer == "naam badalna"


def test_terminator_finalizes_including_fragment(clock: FakeClock) -> None:
    queue = SentenceQueue(pause_threshold_ms=1500, clock=clock)
    queue.add_fragment("बिजली")
    assert queue.add_fragment("बिल भरना है।") == "बिजली बिल भरना है।"
    assert not queue
    assert queue.add_fragment("kya?") == "kya?"


def test_first_fragment_never_triggers_pause(clock: FakeClock) -> None:
    queue = SentenceQueue(pause_threshold_ms=1500, clock=clock)
    clock.advance(60_000)
    assert queue.add_fragment("gas") is None


def test_reset_clears_buffer(clock: FakeClock) -> None:
    queue = SentenceQueue(pause_threshold_ms=1500, clock=clock)
    queue.add_fragment("gas")
    queue.reset()
    assert queue.buffer == ""
    assert queue.state.last_fragment_ms is None
    assert queue.finalize() is None
