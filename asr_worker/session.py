from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import numpy as np
from pydantic import BaseModel

from asr_worker.interfaces import Engine, ProgressCallback
from asr_worker.models import ChunkComplete, DecodeStep, InferenceEvent
from asr_worker.pipeline import InstantiationError, TranscriptionPipeline
from asr_worker.stitcher import ChunkStitcher
from asr_worker.throttle import PartialUpdateThrottle
from common.config import WorkerSettings
from common.schemas import (
    DownloadingMessage,
    InferenceDoneMessage,
    InferenceRequest,
    LoadingMessage,
    LoadingStatus,
    PartialResultMessage,
    ResultMessage,
)

logger = logging.getLogger(__name__)

PostMessage = Callable[[BaseModel], None]

# Fixed decoding parameters: greedy, no sampling, timestamps on.
TOP_K = 0
DO_SAMPLE = False
RETURN_TIMESTAMPS = True

_END = None


class InferenceError(RuntimeError):
    """The engine failed part-way through a transcription."""


class TranscriptionSession:
    """State for one transcription request.

    The engine runs in a worker thread and pushes decode-step and
    chunk-complete events onto a queue; the session consumes them on the
    event loop in the order they were produced.
    """

    def __init__(
        self,
        engine: Engine,
        post_message: PostMessage,
        chunk_length_s: int = 30,
        stride_length_s: int = 5,
        partial_every: int = 10,
    ) -> None:
        self.engine = engine
        self.post_message = post_message
        self.chunk_length_s = chunk_length_s
        self.stride_length_s = stride_length_s
        self.stitcher = ChunkStitcher(engine.tokenizer, engine.time_precision, stride_length_s)
        self.throttle = PartialUpdateThrottle(engine.tokenizer, partial_every)

    def on_decode_step(self, event: DecodeStep) -> None:
        partial = self.throttle.on_decode_step(event.beams, self.stitcher.completed_until)
        if partial is not None:
            self.post_message(PartialResultMessage(result=partial))

    def on_chunk_complete(self, event: ChunkComplete) -> None:
        segments = self.stitcher.add_chunk(event.chunk)
        self.post_message(
            ResultMessage(
                results=segments,
                is_done=False,
                completed_until_timestamp=self.stitcher.completed_until,
            )
        )

    async def run(self, audio: np.ndarray) -> None:
        loop = asyncio.get_running_loop()
        events: asyncio.Queue[InferenceEvent | None] = asyncio.Queue()

        def push(event: InferenceEvent | None) -> None:
            loop.call_soon_threadsafe(events.put_nowait, event)

        def infer() -> None:
            try:
                self.engine.run(
                    audio,
                    top_k=TOP_K,
                    do_sample=DO_SAMPLE,
                    chunk_length=self.chunk_length_s,
                    stride_length_s=self.stride_length_s,
                    return_timestamps=RETURN_TIMESTAMPS,
                    callback_function=lambda beams: push(DecodeStep(beams)),
                    chunk_callback=lambda chunk: push(ChunkComplete(chunk)),
                )
            finally:
                push(_END)

        job = asyncio.create_task(asyncio.to_thread(infer))
        failure: Exception | None = None
        while True:
            event = await events.get()
            if event is _END:
                break
            # After a failure, drain until the engine stops; post nothing more.
            if failure is not None:
                continue
            try:
                if isinstance(event, DecodeStep):
                    self.on_decode_step(event)
                else:
                    self.on_chunk_complete(event)
            except Exception as exc:
                failure = exc
        try:
            await job
        except Exception as exc:
            failure = failure or exc
        if failure is not None:
            raise InferenceError(str(failure)) from failure


class TranscriptionWorker:
    """Dispatches host requests and reports progress through ``post_message``.

    Requests are handled one at a time; the shared pipeline outlives them.
    """

    def __init__(
        self,
        pipeline: TranscriptionPipeline,
        post_message: PostMessage,
        settings: WorkerSettings | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.post_message = post_message
        self.settings = settings or WorkerSettings()

    async def dispatch(self, message: Any) -> None:
        if isinstance(message, InferenceRequest):
            await self.handle(message.audio)
        else:
            logger.debug("Ignoring message: %r", message)

    def _progress_callback(self) -> ProgressCallback:
        loop = asyncio.get_running_loop()

        def on_progress(data: dict[str, Any]) -> None:
            if data.get("status") != "progress":
                return
            message = DownloadingMessage(
                file=data["file"],
                progress=data["progress"],
                loaded=data["loaded"],
                total=data["total"],
            )
            loop.call_soon_threadsafe(self.post_message, message)

        return on_progress

    async def handle(self, audio: np.ndarray | None) -> None:
        self.post_message(LoadingMessage(status=LoadingStatus.loading))
        try:
            engine = await self.pipeline.get_instance(self._progress_callback())
        except InstantiationError as exc:
            logger.exception("Pipeline creation error: %s", exc)
            self.post_message(LoadingMessage(status=LoadingStatus.error))
            return
        self.post_message(LoadingMessage(status=LoadingStatus.success))

        if audio is None:
            audio = np.array([], dtype=np.float32)
        session = TranscriptionSession(
            engine,
            self.post_message,
            chunk_length_s=self.settings.chunk_length_s,
            stride_length_s=self.settings.stride_length_s,
            partial_every=self.settings.partial_every,
        )
        try:
            await session.run(audio)
        except InferenceError as exc:
            logger.exception("Transcription error: %s", exc)
        self.post_message(InferenceDoneMessage())
