from __future__ import annotations

import asyncio
import logging
from typing import Optional

from asr_worker.interfaces import Engine, Instantiate, ProgressCallback

logger = logging.getLogger(__name__)


class InstantiationError(RuntimeError):
    """The inference engine could not be created."""


class TranscriptionPipeline:
    """Creates the engine on first use and keeps it for the process lifetime.

    Concurrent callers share one in-flight instantiation. A failed
    instantiation leaves nothing cached, so the next call retries.
    """

    task = "automatic-speech-recognition"

    def __init__(self, instantiate: Instantiate, model_id: str) -> None:
        self.model_id = model_id
        self._instantiate = instantiate
        self._instance: Engine | None = None
        self._pending: asyncio.Task | None = None

    @property
    def loaded(self) -> bool:
        return self._instance is not None

    async def get_instance(self, progress_callback: Optional[ProgressCallback] = None) -> Engine:
        if self._instance is not None:
            return self._instance
        if self._pending is None:
            self._pending = asyncio.create_task(self._load(progress_callback))
        # Instantiation is not cancellable; a cancelled caller leaves it running.
        return await asyncio.shield(self._pending)

    async def _load(self, progress_callback: Optional[ProgressCallback]) -> Engine:
        logger.info("Loading %s pipeline: %s", self.task, self.model_id)
        try:
            instance = await asyncio.to_thread(
                self._instantiate, self.task, self.model_id, progress_callback
            )
        except Exception as exc:
            logger.exception("Failed to create pipeline instance: %s", exc)
            raise InstantiationError(str(exc)) from exc
        finally:
            self._pending = None
        self._instance = instance
        logger.info("Pipeline loaded")
        return instance
