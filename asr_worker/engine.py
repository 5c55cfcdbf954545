"""faster-whisper implementation of the engine contracts."""

from __future__ import annotations

import fnmatch
import logging
import os
from typing import Any, Optional, Sequence

import numpy as np
from faster_whisper import WhisperModel
from faster_whisper.tokenizer import Tokenizer as WhisperTokenizer
from huggingface_hub import hf_hub_download, list_repo_files, snapshot_download

from asr_worker.interfaces import ChunkCallback, DecodeStepCallback, ProgressCallback
from asr_worker.models import Beam, RawChunk, RawSegment
from common.config import WorkerSettings

logger = logging.getLogger(__name__)

SUPPORTED_TASK = "automatic-speech-recognition"

# Files a CTranslate2 Whisper conversion needs.
MODEL_FILE_PATTERNS = [
    "config.json",
    "preprocessor_config.json",
    "model.bin",
    "tokenizer.json",
    "vocabulary.*",
]


class FasterWhisperTokenizer:
    def __init__(self, hf_tokenizer: Any, timestamp_begin: int) -> None:
        self._hf = hf_tokenizer
        self._timestamp_begin = timestamp_begin

    @classmethod
    def from_model(cls, model: WhisperModel) -> FasterWhisperTokenizer:
        whisper = WhisperTokenizer(model.hf_tokenizer, model.model.is_multilingual)
        return cls(model.hf_tokenizer, whisper.timestamp_begin)

    def decode(self, token_ids: Sequence[int], skip_special_tokens: bool = False) -> str:
        ids = [t for t in token_ids if t < self._timestamp_begin]
        return self._hf.decode(ids, skip_special_tokens=skip_special_tokens)

    def decode_streaming_asr(
        self,
        chunks: Sequence[RawChunk],
        time_precision: float,
        return_timestamps: bool = True,
        force_full_sequence: bool = False,
    ) -> tuple[str, dict[str, Any]]:
        """
        Keep from every chunk the segments that start inside the region it
        owns, i.e. outside its strides. Neighbouring chunks' owned regions
        tile the audio, so each stretch of speech is reported once.

        Unless ``force_full_sequence`` is set, the trailing segment of a
        chunk that runs into the right stride is still being heard by the
        next chunk and is returned with an open end.
        """
        entries: list[dict[str, Any]] = []
        for chunk in chunks:
            lower = chunk.stride_left
            upper = chunk.chunk_len - chunk.stride_right
            kept = [
                seg
                for seg in chunk.segments
                if lower <= seg.start_position * time_precision
                and (chunk.is_last or seg.start_position * time_precision < upper)
            ]
            for i, seg in enumerate(kept):
                start = seg.start_position * time_precision
                end: Optional[float] = seg.end_position * time_precision
                trailing = i == len(kept) - 1
                if not force_full_sequence and not chunk.is_last and trailing and end > upper:
                    end = None
                entries.append(
                    {
                        "text": self.decode(seg.tokens, skip_special_tokens=True),
                        "timestamp": (
                            chunk.offset + start,
                            None if end is None else chunk.offset + end,
                        ),
                    }
                )

        text = "".join(entry["text"] for entry in entries)
        if not return_timestamps:
            return text, {}
        return text, {"chunks": entries}


class FasterWhisperEngine:
    def __init__(
        self,
        model: WhisperModel,
        tokenizer: Optional[FasterWhisperTokenizer] = None,
        sample_rate: int = 16000,
    ) -> None:
        self.model = model
        self.sample_rate = sample_rate
        self.tokenizer = tokenizer or FasterWhisperTokenizer.from_model(model)
        extractor = model.feature_extractor
        max_source_positions = extractor.nb_max_frames // model.input_stride
        self.time_precision = extractor.chunk_length / max_source_positions

    def _windows(self, total: int, chunk_length: int, stride_length_s: int):
        chunk_len = int(chunk_length * self.sample_rate)
        stride = int(stride_length_s * self.sample_rate)
        step = chunk_len - 2 * stride
        if step <= 0:
            raise ValueError(
                f"chunk_length ({chunk_length}s) must exceed twice stride_length_s ({stride_length_s}s)"
            )
        for start in range(0, total, step):
            end = min(start + chunk_len, total)
            stride_left = 0 if start == 0 else stride
            is_last = start + chunk_len >= total
            stride_right = 0 if is_last else stride
            if end - start > stride_left:
                yield start, end, stride_left, stride_right, is_last
            if is_last:
                break

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
        audio = np.asarray(audio, dtype=np.float32)
        sr = self.sample_rate
        for start, end, stride_left, stride_right, is_last in self._windows(
            len(audio), chunk_length, stride_length_s
        ):
            logger.debug("Transcribing window %.1fs-%.1fs", start / sr, end / sr)
            segments, _ = self.model.transcribe(
                audio[start:end],
                beam_size=1,
                best_of=max(1, top_k),
                temperature=1.0 if do_sample else 0.0,
                without_timestamps=not return_timestamps,
                condition_on_previous_text=False,
            )
            raw_segments: list[RawSegment] = []
            running: list[int] = []
            for seg in segments:
                for token in seg.tokens:
                    running.append(token)
                    if callback_function is not None:
                        callback_function([Beam(output_token_ids=list(running))])
                raw_segments.append(
                    RawSegment(
                        start_position=round(seg.start / self.time_precision),
                        end_position=round(seg.end / self.time_precision),
                        tokens=list(seg.tokens),
                    )
                )
            if chunk_callback is not None:
                chunk_callback(
                    RawChunk(
                        offset=start / sr,
                        chunk_len=(end - start) / sr,
                        stride_left=stride_left / sr,
                        stride_right=stride_right / sr,
                        segments=raw_segments,
                        is_last=is_last,
                    )
                )


def download_model(
    model_id: str,
    progress_callback: Optional[ProgressCallback] = None,
    cache_dir: Optional[str] = None,
    local_files_only: bool = False,
) -> str:
    """Fetch the model files one by one, reporting each to ``progress_callback``."""
    if os.path.isdir(model_id):
        return model_id
    if local_files_only:
        return snapshot_download(
            model_id,
            allow_patterns=MODEL_FILE_PATTERNS,
            cache_dir=cache_dir,
            local_files_only=True,
        )

    files = [
        name
        for name in list_repo_files(model_id)
        if any(fnmatch.fnmatch(name, pattern) for pattern in MODEL_FILE_PATTERNS)
    ]
    if not files:
        raise ValueError(f"No model files found in {model_id}")

    def report(**data: Any) -> None:
        if progress_callback is not None:
            progress_callback(data)

    path = ""
    for name in files:
        report(status="initiate", name=model_id, file=name)
        path = hf_hub_download(model_id, name, cache_dir=cache_dir)
        size = os.path.getsize(path)
        report(status="progress", name=model_id, file=name, progress=100.0, loaded=size, total=size)
        report(status="done", name=model_id, file=name)
    return os.path.dirname(path)


def instantiate(
    task: str,
    model_id: str,
    progress_callback: Optional[ProgressCallback] = None,
    settings: WorkerSettings | None = None,
) -> FasterWhisperEngine:
    if task != SUPPORTED_TASK:
        raise ValueError(f"Unsupported task: {task}")
    settings = settings or WorkerSettings()
    model_dir = download_model(
        model_id,
        progress_callback,
        cache_dir=settings.download_root,
        local_files_only=settings.local_files_only,
    )
    logger.info("Loading faster-whisper model from %s", model_dir)
    model = WhisperModel(
        model_dir,
        device=settings.device,
        compute_type=settings.compute_type,
    )
    return FasterWhisperEngine(model, sample_rate=settings.sample_rate)
