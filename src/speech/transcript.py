"""Transcript assembly: cleanup of speech-to-text output and turn interleaving.

Two text sources feed the final transcript:

- live: agent text deltas per open turn plus one batch transcription per
  materialized caller turn;
- post-call: one batch transcription of all caller audio whose sentences are
  distributed over the caller turns in proportion to their audio bytes.

Ordering is always by turn ordinal, then position inside the turn, then a
creation sequence number. Completion time of async work never matters.
"""

from __future__ import annotations

import itertools
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from calls.models import Speaker, TranscriptEntry, Turn
from speech.transcriber import TranscriptionResult, TranscriptionSegment

SENTENCE_END = (".", "!", "?")

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+|\n+")
_WHITESPACE_RE = re.compile(r"\s+")
_TOKEN_STRIP = ".,!?;:\"'()[]-"


@dataclass(frozen=True, slots=True)
class SegmentFilter:
    """Thresholds separating genuine speech from recognizer noise."""

    no_speech_threshold: float = 0.6
    logprob_floor: float = -1.0
    min_segment_seconds: float = 0.45

    def keep(self, segment: TranscriptionSegment) -> bool:
        text = segment.text.strip()
        if not text:
            return False
        if segment.no_speech_prob is not None and segment.no_speech_prob > self.no_speech_threshold:
            return False
        if segment.avg_logprob is not None and segment.avg_logprob < self.logprob_floor:
            return False
        duration = segment.end - segment.start
        if duration < self.min_segment_seconds and len(text.split()) <= 1:
            return False
        return True


def split_sentences(text: str) -> list[str]:
    """Split on sentence-terminal punctuation and newlines."""

    return [part.strip() for part in _SENTENCE_SPLIT_RE.split(text or "") if part and part.strip()]


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def _norm_token(token: str) -> str:
    return token.strip(_TOKEN_STRIP).lower()


def collapse_repeats(text: str, max_ngram: int = 3) -> str:
    """Drop immediate repetitions of 1..max_ngram token phrases ("I I think I think")."""

    out: list[str] = []
    for token in text.split():
        out.append(token)
        for n in range(1, max_ngram + 1):
            if len(out) < 2 * n:
                break
            previous = [_norm_token(t) for t in out[-2 * n : -n]]
            current = [_norm_token(t) for t in out[-n:]]
            if any(previous) and previous == current:
                del out[-n:]
                break
    return " ".join(out)


def strip_boilerplate(text: str, phrases: Iterable[str]) -> str:
    for phrase in phrases:
        if not phrase:
            continue
        pattern = re.compile(re.escape(phrase) + r"[.!]?", re.IGNORECASE)
        text = pattern.sub(" ", text)
    return text


def clean_text(text: str, boilerplate: Iterable[str] = ()) -> str:
    text = strip_boilerplate(text or "", boilerplate)
    text = collapse_whitespace(text)
    return collapse_repeats(text)


def cleaned_transcription(
    result: TranscriptionResult,
    segment_filter: SegmentFilter,
    boilerplate: Iterable[str] = (),
) -> str:
    """Apply the segment filter (when segment metadata exists) and text cleanup."""

    if result.segments:
        text = " ".join(seg.text.strip() for seg in result.segments if segment_filter.keep(seg))
    else:
        text = result.text
    return clean_text(text, boilerplate)


def allocate_proportional(total: int, weights: Sequence[int]) -> list[int]:
    """Largest-remainder allocation of `total` items over `weights`.

    The result always sums to `total`. Zero total weight falls back to
    round-robin counts.
    """

    if not weights:
        return []
    weight_sum = sum(weights)
    if weight_sum <= 0:
        return allocate_round_robin(total, len(weights))

    quotas = [total * w / weight_sum for w in weights]
    counts = [int(q) for q in quotas]
    remaining = total - sum(counts)
    by_remainder = sorted(range(len(weights)), key=lambda i: (-(quotas[i] - counts[i]), i))
    for i in by_remainder[:remaining]:
        counts[i] += 1
    return counts


def allocate_round_robin(total: int, buckets: int) -> list[int]:
    if buckets <= 0:
        return []
    base, extra = divmod(total, buckets)
    return [base + (1 if i < extra else 0) for i in range(buckets)]


def distribute_sentences(
    sentences: Sequence[str],
    weights: Sequence[int] | None,
    buckets: int,
) -> list[list[str]]:
    """Split `sentences` into `buckets` consecutive groups.

    With `weights` (bytes per caller turn) the group sizes follow the
    proportional allocation; without them sentences are spread evenly.
    """

    if weights is not None:
        counts = allocate_proportional(len(sentences), weights)
    else:
        counts = allocate_round_robin(len(sentences), buckets)

    groups: list[list[str]] = []
    cursor = 0
    for count in counts:
        groups.append(list(sentences[cursor : cursor + count]))
        cursor += count
    return groups


class LiveTextBuffer:
    """Accumulates agent text deltas and releases them in readable chunks."""

    def __init__(self, max_chars: int = 200) -> None:
        self._max_chars = max_chars
        self._buf = ""

    def feed(self, delta: str) -> str | None:
        self._buf += delta
        stripped = self._buf.strip()
        if stripped.endswith(SENTENCE_END) or len(self._buf) >= self._max_chars:
            self._buf = ""
            return stripped or None
        return None

    def flush(self) -> str | None:
        chunk = self._buf.strip()
        self._buf = ""
        return chunk or None


class TranscriptAssembler:
    """Builds ordered transcript entries for one call."""

    def __init__(self) -> None:
        self._sequence = itertools.count()

    def _entry(self, speaker: Speaker, text: str, ordinal: int, position: int) -> TranscriptEntry:
        return TranscriptEntry(
            speaker=speaker,
            text=text,
            ordinal=ordinal,
            position=position,
            sequence=next(self._sequence),
        )

    def from_live(self, turns: Iterable[Turn]) -> list[TranscriptEntry]:
        """Entries from per-turn text; unresolved turns are skipped."""

        entries = [
            self._entry(turn.speaker, turn.text.strip(), turn.ordinal, 0)
            for turn in turns
            if turn.text and turn.text.strip()
        ]
        return sorted(entries, key=lambda e: e.sort_key)

    def from_reconciliation(self, turns: Sequence[Turn], caller_text: str) -> list[TranscriptEntry]:
        """Agent turns keep their own text; the full-call caller transcript is
        split into sentences and spread over caller turns by byte share."""

        sentences = split_sentences(caller_text)
        entries: list[TranscriptEntry] = []

        for turn in turns:
            if turn.speaker == "agent" and turn.text and turn.text.strip():
                entries.append(self._entry("agent", turn.text.strip(), turn.ordinal, 0))

        caller_turns = [turn for turn in turns if turn.speaker == "caller"]
        if caller_turns:
            has_ranges = all(turn.start is not None and turn.end is not None for turn in caller_turns)
            weights = [turn.byte_count for turn in caller_turns] if has_ranges else None
            groups = distribute_sentences(sentences, weights, len(caller_turns))
            slots = [(turn.ordinal, 1) for turn in caller_turns]
        else:
            # No boundaries were detected: interleave after each agent turn,
            # or append at the end when the agent never spoke either.
            agent_ordinals = [turn.ordinal for turn in turns if turn.speaker == "agent"] or [len(turns)]
            groups = distribute_sentences(sentences, None, len(agent_ordinals))
            slots = [(ordinal, 1) for ordinal in agent_ordinals]

        for (ordinal, offset), group in zip(slots, groups):
            for index, sentence in enumerate(group):
                entries.append(self._entry("caller", sentence, ordinal, offset + index))

        return sorted(entries, key=lambda e: e.sort_key)


def render_transcript(entries: Iterable[TranscriptEntry]) -> str:
    return "\n".join(entry.as_line() for entry in entries)
