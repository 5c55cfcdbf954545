from __future__ import annotations

from typing import Any, Sequence

from asr_worker.interfaces import Tokenizer
from asr_worker.models import RawChunk
from common.schemas import Segment

# Share of one stride used as the length of a segment the engine left open.
OPEN_END_STRIDE_FACTOR = 0.9


def to_segment(entry: dict[str, Any], index: int, stride_length_s: float) -> Segment:
    """Convert one reconciled entry to a whole-second segment."""
    raw_start, raw_end = entry["timestamp"]
    start = max(0, round(raw_start))
    if raw_end is None:
        end = round(raw_start + OPEN_END_STRIDE_FACTOR * stride_length_s)
    else:
        end = round(raw_end)
    return Segment(index=index, text=entry["text"].strip(), start=start, end=max(start, end))


def stitch(
    chunks: Sequence[RawChunk],
    tokenizer: Tokenizer,
    time_precision: float,
    stride_length_s: float,
) -> list[Segment]:
    """Derive the full segment list from every chunk received so far."""
    if not chunks:
        return []
    _, optional = tokenizer.decode_streaming_asr(
        chunks,
        time_precision=time_precision,
        return_timestamps=True,
        force_full_sequence=False,
    )
    return [
        to_segment(entry, index, stride_length_s)
        for index, entry in enumerate(optional.get("chunks", []))
    ]


class ChunkStitcher:
    """Accumulates raw chunks and re-derives the transcript after each one.

    Earlier segments may change as later chunks bring more context, so the
    segment list is always rebuilt from the whole chunk sequence.
    """

    def __init__(self, tokenizer: Tokenizer, time_precision: float, stride_length_s: float) -> None:
        self.tokenizer = tokenizer
        self.time_precision = time_precision
        self.stride_length_s = stride_length_s
        self.chunks: list[RawChunk] = []
        self.segments: list[Segment] = []

    def add_chunk(self, chunk: RawChunk) -> list[Segment]:
        self.chunks.append(chunk)
        self.segments = stitch(self.chunks, self.tokenizer, self.time_precision, self.stride_length_s)
        return self.segments

    @property
    def completed_until(self) -> int:
        """End of the last committed segment, 0 before any."""
        if not self.segments:
            return 0
        return self.segments[-1].end
