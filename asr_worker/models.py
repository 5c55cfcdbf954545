"""Internal models passed between the engine and the transcription session."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union


@dataclass
class Beam:
    """One ranked candidate at a decoding step."""

    output_token_ids: list[int]


@dataclass
class RawSegment:
    # Window-relative positions, in units of time_precision.
    start_position: int
    end_position: int
    tokens: list[int] = field(default_factory=list)


@dataclass
class RawChunk:
    """Engine output for one audio window, kept as-is by the stitcher."""

    offset: float
    chunk_len: float
    stride_left: float
    stride_right: float
    segments: list[RawSegment] = field(default_factory=list)
    is_last: bool = False


@dataclass
class DecodeStep:
    beams: list[Beam]


@dataclass
class ChunkComplete:
    chunk: RawChunk


InferenceEvent = Union[DecodeStep, ChunkComplete]
