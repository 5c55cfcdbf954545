from __future__ import annotations

import logging

from asr_worker.interfaces import Tokenizer
from asr_worker.models import Beam
from common.schemas import PartialResult

logger = logging.getLogger(__name__)


class PartialUpdateThrottle:
    """Turns every ``every``-th decoding step into a provisional result."""

    def __init__(self, tokenizer: Tokenizer, every: int = 10) -> None:
        self.tokenizer = tokenizer
        self.every = every
        self.steps = 0

    def on_decode_step(self, beams: list[Beam], start: int) -> PartialResult | None:
        self.steps += 1
        if self.steps % self.every != 0:
            return None
        if not beams:
            logger.debug("Decode step %d had no candidates", self.steps)
            return None
        text = self.tokenizer.decode(beams[0].output_token_ids, skip_special_tokens=True)
        return PartialResult(text=text, start=start)
