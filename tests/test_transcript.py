from __future__ import annotations

import pytest

from calls.models import AudioFrame, Turn, slice_frames
from speech.transcriber import TranscriptionResult, TranscriptionSegment
from speech.transcript import (
    LiveTextBuffer,
    SegmentFilter,
    TranscriptAssembler,
    allocate_proportional,
    clean_text,
    cleaned_transcription,
    collapse_repeats,
    distribute_sentences,
    render_transcript,
    split_sentences,
)


@pytest.mark.parametrize(
    "total,weights",
    [
        (2, [24000, 16000]),
        (7, [1, 1, 1]),
        (5, [10, 0, 3]),
        (0, [5, 5]),
        (3, [0, 0]),
        (11, [8000, 16000, 2400, 160]),
    ],
)
def test_proportional_allocation_sums_to_total(total, weights) -> None:
    counts = allocate_proportional(total, weights)
    assert len(counts) == len(weights)
    assert sum(counts) == total
    assert all(c >= 0 for c in counts)


def test_largest_remainder_gets_the_leftover() -> None:
    # Quotas 1.2 and 0.8: the 0.8 remainder wins the second sentence.
    assert allocate_proportional(2, [24000, 16000]) == [1, 1]
    assert allocate_proportional(3, [0, 0]) == [2, 1]


def test_distribute_sentences_keeps_order() -> None:
    groups = distribute_sentences(["a", "b", "c"], None, 2)
    assert groups == [["a", "b"], ["c"]]

    groups = distribute_sentences(["a", "b", "c", "d"], [1, 3], 2)
    assert groups == [["a"], ["b", "c", "d"]]


def test_split_sentences_on_punctuation_and_newlines() -> None:
    assert split_sentences("Hi there. How are you?\nFine!  ") == ["Hi there.", "How are you?", "Fine!"]
    assert split_sentences("") == []


def test_cleanup_collapses_repeats_and_boilerplate() -> None:
    assert collapse_repeats("I I think I think so") == "I think so"
    assert clean_text("Thanks for watching! See you   soon.", ["thanks for watching"]) == "See you soon."


def test_segment_filter_thresholds() -> None:
    keep = SegmentFilter().keep
    assert keep(TranscriptionSegment(0.0, 2.0, "See you at noon."))
    assert not keep(TranscriptionSegment(0.0, 2.0, "Thanks.", no_speech_prob=0.9))
    assert not keep(TranscriptionSegment(0.0, 2.0, "mumble", avg_logprob=-1.5))
    assert not keep(TranscriptionSegment(0.0, 0.3, "Yes."))
    assert keep(TranscriptionSegment(0.0, 0.3, "Yes sure."))
    assert not keep(TranscriptionSegment(0.0, 2.0, "   "))


def test_no_speech_segment_is_excluded_from_cleaned_text() -> None:
    result = TranscriptionResult(
        text="Thanks. I'll be there at noon.",
        segments=[
            TranscriptionSegment(0.0, 1.0, "Thanks.", avg_logprob=-0.2, no_speech_prob=0.9),
            TranscriptionSegment(1.0, 3.0, "I'll be there at noon.", avg_logprob=-0.2, no_speech_prob=0.05),
        ],
    )
    assert cleaned_transcription(result, SegmentFilter()) == "I'll be there at noon."


def test_live_text_buffer_flushes_on_sentence_end_and_length() -> None:
    buffer = LiveTextBuffer(max_chars=20)
    assert buffer.feed("Hello") is None
    assert buffer.feed(" there.") == "Hello there."
    assert buffer.feed("a" * 25) == "a" * 25
    assert buffer.feed("tail") is None
    assert buffer.flush() == "tail"
    assert buffer.flush() is None


def _turns() -> list[Turn]:
    return [
        Turn("agent", 0, text="Hi, this is Oscar's assistant."),
        Turn("caller", 1, start=0, end=24000),
        Turn("agent", 2, text="Okay."),
        Turn("caller", 3, start=24000, end=40000),
    ]


def test_reconciliation_distributes_sentences_by_byte_share() -> None:
    entries = TranscriptAssembler().from_reconciliation(_turns(), "Hello there. Goodbye now.")
    assert render_transcript(entries) == (
        "Agent: Hi, this is Oscar's assistant.\n"
        "Caller: Hello there.\n"
        "Agent: Okay.\n"
        "Caller: Goodbye now."
    )


def test_reconciliation_without_caller_turns_follows_agent_turns() -> None:
    turns = [Turn("agent", 0, text="Hello."), Turn("agent", 1, text="Are you there?")]
    entries = TranscriptAssembler().from_reconciliation(turns, "Yes. I am.")
    assert [e.as_line() for e in entries] == [
        "Agent: Hello.",
        "Caller: Yes.",
        "Agent: Are you there?",
        "Caller: I am.",
    ]

    entries = TranscriptAssembler().from_reconciliation([], "Just me.")
    assert [e.as_line() for e in entries] == ["Caller: Just me."]


def test_live_assembly_orders_by_ordinal_not_completion() -> None:
    turns = _turns()
    turns[3].text = "Goodbye now."
    turns[1].text = "Hello there."
    # Turn 1 resolved after turn 3, the transcript still follows turn order.
    entries = TranscriptAssembler().from_live(reversed(turns))
    assert [e.ordinal for e in entries] == [0, 1, 2, 3]

    turns[1].text = None
    assert len(TranscriptAssembler().from_live(turns)) == 3


def test_slice_frames_returns_exact_byte_range() -> None:
    frames = [AudioFrame(0, b"aaaa"), AudioFrame(4, b"bbbb"), AudioFrame(8, b"cccc")]
    assert slice_frames(frames, 2, 10) == b"aabbbbcc"
    assert slice_frames(frames, 4, 8) == b"bbbb"
    assert slice_frames(frames, 12, 20) == b""
