from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel


# --- Worker messages: host ↔ worker ---

class MessageType(str, Enum):
    inference_request = "inference_request"
    loading = "loading"
    downloading = "downloading"
    result_partial = "result_partial"
    result = "result"
    inference_done = "inference_done"


class LoadingStatus(str, Enum):
    loading = "loading"
    success = "success"
    error = "error"


class Message(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InferenceRequest(Message):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    type: Literal[MessageType.inference_request] = MessageType.inference_request
    audio: Optional[np.ndarray] = Field(default=None, exclude=True)
    encoding: str = "pcm_s16le"


class Segment(Message):
    index: int = Field(ge=0)
    text: str
    start: int = Field(ge=0)
    end: int = Field(ge=0)


class PartialResult(Message):
    text: str
    start: int
    end: None = None


class LoadingMessage(Message):
    type: Literal[MessageType.loading] = MessageType.loading
    status: LoadingStatus


class DownloadingMessage(Message):
    type: Literal[MessageType.downloading] = MessageType.downloading
    file: str
    progress: float
    loaded: int
    total: int


class PartialResultMessage(Message):
    type: Literal[MessageType.result_partial] = MessageType.result_partial
    result: PartialResult


class ResultMessage(Message):
    type: Literal[MessageType.result] = MessageType.result
    results: list[Segment]
    is_done: bool = False
    completed_until_timestamp: int = 0


class InferenceDoneMessage(Message):
    type: Literal[MessageType.inference_done] = MessageType.inference_done


# Single variant today; becomes a discriminated union once the host sends more.
InboundMessage = InferenceRequest

OutboundMessage = Annotated[
    Union[
        LoadingMessage,
        DownloadingMessage,
        PartialResultMessage,
        ResultMessage,
        InferenceDoneMessage,
    ],
    Field(discriminator="type"),
]

_inbound = TypeAdapter(InboundMessage)
_outbound = TypeAdapter(OutboundMessage)


def parse_inbound(data: Any) -> InferenceRequest | None:
    """Validate a decoded host message; anything unrecognised yields None."""
    if not isinstance(data, dict) or "type" not in data:
        return None
    try:
        return _inbound.validate_python(data)
    except ValidationError:
        return None


def parse_outbound(data: Any) -> BaseModel:
    return _outbound.validate_python(data)
