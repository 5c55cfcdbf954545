"""
Contracts of the inference engine consumed by the worker.

The engine itself (model loading, feature extraction, decoding) lives outside
this package; the worker only sees these three shapes, so tests can swap in
fakes.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol, Sequence

import numpy as np

from asr_worker.models import Beam, RawChunk

ProgressCallback = Callable[[dict[str, Any]], None]
DecodeStepCallback = Callable[[list[Beam]], None]
ChunkCallback = Callable[[RawChunk], None]


class Tokenizer(Protocol):
    def decode(self, token_ids: Sequence[int], skip_special_tokens: bool = False) -> str:
        ...

    def decode_streaming_asr(
        self,
        chunks: Sequence[RawChunk],
        time_precision: float,
        return_timestamps: bool = True,
        force_full_sequence: bool = False,
    ) -> tuple[str, dict[str, Any]]:
        """
        Reconcile overlapping chunk outputs into one timestamped sequence.

        :returns:
            ``(text, {"chunks": [{"text": str, "timestamp": (start, end | None)}]})``
            with timestamps in seconds from the start of the audio.
        """
        ...


class Engine(Protocol):
    tokenizer: Tokenizer
    time_precision: float

    def run(
        self,
        audio: np.ndarray,
        *,
        top_k: int,
        do_sample: bool,
        chunk_length: int,
        stride_length_s: int,
        return_timestamps: bool,
        callback_function: Optional[DecodeStepCallback] = None,
        chunk_callback: Optional[ChunkCallback] = None,
    ) -> None:
        ...


Instantiate = Callable[[str, str, Optional[ProgressCallback]], Engine]
