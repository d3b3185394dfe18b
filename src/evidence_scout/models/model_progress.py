"""Progress events pushed to the client while a request runs."""

from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Stage(str, Enum):
    FORMULATE = "formulate"
    STRATEGIZE = "strategize"
    SEARCH = "search"
    ANALYZE = "analyze"
    SYNTHESIZE = "synthesize"
    DONE = "done"
    FAILED = "failed"


STAGE_ORDER: dict[Stage, int] = {stage: i for i, stage in enumerate(Stage)}
TERMINAL_STAGES: set[Stage] = {Stage.DONE, Stage.FAILED}


class ProgressEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    request_id: str
    stage: Stage
    index: int | None = None
    total: int | None = None
    detail: str | None = None
    terminal: bool = False

    @classmethod
    def done(cls, request_id: str, detail: str | None = None) -> "ProgressEvent":
        return cls(request_id=request_id, stage=Stage.DONE, detail=detail, terminal=True)

    @classmethod
    def failed(cls, request_id: str, detail: str) -> "ProgressEvent":
        return cls(request_id=request_id, stage=Stage.FAILED, detail=detail, terminal=True)
