from __future__ import annotations

import asyncio
import functools
import json
import logging

import numpy as np
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from asr_worker.engine import instantiate
from asr_worker.pipeline import TranscriptionPipeline
from asr_worker.session import TranscriptionWorker
from common.config import WorkerSettings
from common.schemas import parse_inbound

logger = logging.getLogger(__name__)

settings = WorkerSettings()
app = FastAPI(title="ASR Worker")
pipeline = TranscriptionPipeline(
    functools.partial(instantiate, settings=settings),
    settings.model_id,
)


def decode_audio(data: bytes, encoding: str) -> np.ndarray:
    """Decode mono PCM into float32 samples in [-1, 1]."""
    if encoding == "pcm_f32le":
        return np.frombuffer(data, dtype="<f4").astype(np.float32)
    return np.frombuffer(data, dtype="<i2").astype(np.float32) / 32768.0


@app.get("/health")
async def health():
    return {"status": "ok", "model_loaded": pipeline.loaded}


async def _send_outbound(ws: WebSocket, outbox: asyncio.Queue[BaseModel]) -> None:
    """Forward worker messages to the host until the connection goes away."""
    try:
        while True:
            message = await outbox.get()
            await ws.send_text(message.model_dump_json(by_alias=True))
    except WebSocketDisconnect:
        logger.info("Host gone; dropping outbound messages")
    except Exception:
        logger.exception("Sending to host failed")


@app.websocket("/transcribe")
async def transcribe_endpoint(ws: WebSocket):
    await ws.accept()
    outbox: asyncio.Queue[BaseModel] = asyncio.Queue()
    worker = TranscriptionWorker(pipeline, outbox.put_nowait, settings)
    sender = asyncio.create_task(_send_outbound(ws, outbox))
    logger.info("Host connected")

    request = None
    try:
        while True:
            message = await ws.receive()
            if message.get("type") == "websocket.disconnect":
                logger.info("Host disconnected")
                break

            if message.get("text") is not None:
                try:
                    request = parse_inbound(json.loads(message["text"]))
                except json.JSONDecodeError:
                    request = None
                if request is None:
                    logger.debug("Ignoring unrecognised message: %.80s", message["text"])

            # The audio follows its request header as one binary frame.
            elif message.get("bytes") is not None and request is not None:
                request.audio = decode_audio(message["bytes"], request.encoding)
                logger.info(
                    "Inference request: %.1fs of audio", len(request.audio) / settings.sample_rate
                )
                await worker.dispatch(request)
                request = None

    except WebSocketDisconnect:
        logger.info("Host disconnected")
    except Exception as exc:
        logger.exception("Worker connection error: %s", exc)
    finally:
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level)
