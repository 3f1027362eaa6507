"""Line-delimited JSON protocol between a session and its worker process.

parent -> worker: WorkerConfig, then ScriptMessage
worker -> parent: ReadyMessage, zero or more HeapLimitMessage, then ResultMessage
"""

from typing import Annotated, Literal, TextIO

from pydantic import BaseModel, Field, TypeAdapter


class WorkerConfig(BaseModel):
    max_heap_bytes: int = Field(gt=0)
    hard_heap_bytes: int = Field(gt=0)
    poll_interval: float = Field(default=0.005, gt=0)


class ScriptMessage(BaseModel):
    script: str


class ReadyMessage(BaseModel):
    event: Literal["ready"] = "ready"
    pid: int


class HeapLimitMessage(BaseModel):
    event: Literal["heap_limit"] = "heap_limit"
    soft_limit_bytes: int
    hard_limit_reached: bool = False


class ResultMessage(BaseModel):
    event: Literal["result"] = "result"
    kind: Literal["value", "compile_error", "thrown", "unknown"]
    text: str = ""


WorkerMessage = Annotated[
    ReadyMessage | HeapLimitMessage | ResultMessage,
    Field(discriminator="event"),
]

worker_message_adapter: TypeAdapter[ReadyMessage | HeapLimitMessage | ResultMessage] = TypeAdapter(
    WorkerMessage
)


def parse_worker_message(line: str) -> ReadyMessage | HeapLimitMessage | ResultMessage:
    """Decode one line sent by a worker. Raises pydantic.ValidationError."""
    return worker_message_adapter.validate_json(line)


def write_message(stream: TextIO, message: BaseModel) -> None:
    stream.write(message.model_dump_json() + "\n")
    stream.flush()
