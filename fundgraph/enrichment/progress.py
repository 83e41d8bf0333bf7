"""
Progress events emitted while enriching one entity.

A sink is any callable taking a ProgressEvent; it may be sync or async.
The SSE route streams events to the browser, background jobs use
noop_sink.
"""

import inspect
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Union

logger = logging.getLogger(__name__)


class ProgressStage(str, Enum):
    ARTICLES = "articles"
    WEBSITE = "website"
    LLM = "llm"
    SAVE = "save"
    DONE = "done"
    ERROR = "error"


TERMINAL_STAGES = {ProgressStage.DONE, ProgressStage.ERROR}


@dataclass
class ProgressEvent:
    stage: ProgressStage
    message: str
    detail: Optional[str] = None
    fields_updated: Optional[List[str]] = field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    def to_dict(self) -> dict:
        data = {"stage": self.stage.value, "message": self.message}
        if self.detail is not None:
            data["detail"] = self.detail
        if self.fields_updated is not None:
            data["fieldsUpdated"] = list(self.fields_updated)
        return data

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_dict())}\n\n"


ProgressSink = Callable[[ProgressEvent], Union[Awaitable[None], None]]


def noop_sink(event: ProgressEvent) -> None:
    logger.debug(f"[{event.stage.value}] {event.message}")


async def emit(
    sink: Optional[ProgressSink],
    stage: ProgressStage,
    message: str,
    detail: Optional[str] = None,
    fields_updated: Optional[List[str]] = None,
) -> ProgressEvent:
    """Build an event and deliver it to `sink`, awaiting it when needed."""
    event = ProgressEvent(stage=stage, message=message, detail=detail, fields_updated=fields_updated)
    result = (sink or noop_sink)(event)
    if inspect.isawaitable(result):
        await result
    return event


def plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"
