from types import SimpleNamespace

import numpy as np

from asr_worker.engine import FasterWhisperEngine, FasterWhisperTokenizer
from asr_worker.models import RawChunk, RawSegment

TIMESTAMP_BEGIN = 1000
TP = 0.02


class FakeHFTokenizer:
    def decode(self, ids, skip_special_tokens=False):
        return "".join(f" w{i}" for i in ids)


def _tokenizer():
    return FasterWhisperTokenizer(FakeHFTokenizer(), TIMESTAMP_BEGIN)


def _seg(start_s, end_s, *tokens):
    return RawSegment(
        start_position=round(start_s / TP),
        end_position=round(end_s / TP),
        tokens=list(tokens),
    )


class FakeModel:
    def __init__(self, segments_per_window):
        self.feature_extractor = SimpleNamespace(chunk_length=30, nb_max_frames=3000)
        self.input_stride = 2
        self.segments_per_window = segments_per_window
        self.windows = []

    def transcribe(self, audio, **kwargs):
        self.windows.append((len(audio), kwargs))
        return iter(self.segments_per_window), None


class TestFasterWhisperTokenizer:
    def test_decode_drops_timestamp_tokens(self):
        assert _tokenizer().decode([1000, 5, 1010, 6]) == " w5 w6"

    def test_keeps_segments_owned_by_each_chunk(self):
        first = RawChunk(
            offset=0.0,
            chunk_len=30.0,
            stride_left=0.0,
            stride_right=5.0,
            segments=[_seg(0, 10, 1), _seg(10, 24, 2), _seg(24, 29, 3)],
        )
        second = RawChunk(
            offset=20.0,
            chunk_len=15.0,
            stride_left=5.0,
            stride_right=0.0,
            segments=[_seg(0, 4, 2), _seg(4, 9, 3), _seg(9, 15, 4)],
            is_last=True,
        )
        text, optional = _tokenizer().decode_streaming_asr(
            [first, second], time_precision=TP, force_full_sequence=False
        )
        stamps = [(e["text"], e["timestamp"]) for e in optional["chunks"]]
        assert stamps[0] == (" w1", (0.0, 10.0))
        assert stamps[1] == (" w2", (10.0, 24.0))
        # Starts before the right stride but ends inside it: left open.
        assert stamps[2] == (" w3", (24.0, None))
        # Segments starting in the second chunk's left stride were already reported.
        assert stamps[3] == (" w4", (29.0, 35.0))
        assert len(stamps) == 4
        assert text == " w1 w2 w3 w4"

    def test_open_end_applies_to_last_kept_segment(self):
        chunk = RawChunk(
            offset=0.0,
            chunk_len=30.0,
            stride_left=0.0,
            stride_right=5.0,
            segments=[_seg(10, 27, 2), _seg(27, 29, 3)],
        )
        _, optional = _tokenizer().decode_streaming_asr([chunk], time_precision=TP)
        assert [e["timestamp"] for e in optional["chunks"]] == [(10.0, None)]

    def test_full_sequence_closes_trailing_segment(self):
        chunk = RawChunk(
            offset=0.0,
            chunk_len=30.0,
            stride_left=0.0,
            stride_right=5.0,
            segments=[_seg(20, 28, 7)],
        )
        _, optional = _tokenizer().decode_streaming_asr([chunk], time_precision=TP, force_full_sequence=True)
        assert optional["chunks"][0]["timestamp"] == (20.0, 28.0)


class TestFasterWhisperEngine:
    def test_time_precision(self):
        engine = FasterWhisperEngine(FakeModel([]), tokenizer=_tokenizer())
        assert engine.time_precision == 30 / 1500

    def test_overlapping_windows_and_callbacks(self):
        segments = [SimpleNamespace(start=0.0, end=2.0, text=" hi", tokens=[1000, 5, 6, 1100])]
        model = FakeModel(segments)
        engine = FasterWhisperEngine(model, tokenizer=_tokenizer(), sample_rate=100)
        chunks, steps = [], []

        engine.run(
            np.zeros(100 * 50, dtype=np.float32),
            top_k=0,
            do_sample=False,
            chunk_length=30,
            stride_length_s=5,
            return_timestamps=True,
            callback_function=steps.append,
            chunk_callback=chunks.append,
        )

        # 50s of audio: windows at 0s and 20s, the second runs to the end.
        assert [c.offset for c in chunks] == [0.0, 20.0]
        assert [c.chunk_len for c in chunks] == [30.0, 30.0]
        assert [(c.stride_left, c.stride_right) for c in chunks] == [(0.0, 5.0), (5.0, 0.0)]
        assert [c.is_last for c in chunks] == [False, True]
        assert chunks[0].segments[0].end_position == 100

        assert len(steps) == 8
        assert steps[3][0].output_token_ids == [1000, 5, 6, 1100]

        kwargs = model.windows[0][1]
        assert kwargs["beam_size"] == 1
        assert kwargs["temperature"] == 0.0
        assert kwargs["without_timestamps"] is False

    def test_empty_audio_runs_nothing(self):
        model = FakeModel([])
        engine = FasterWhisperEngine(model, tokenizer=_tokenizer())
        chunks = []
        engine.run(
            np.array([], dtype=np.float32),
            top_k=0,
            do_sample=False,
            chunk_length=30,
            stride_length_s=5,
            return_timestamps=True,
            chunk_callback=chunks.append,
        )
        assert chunks == []
        assert model.windows == []
