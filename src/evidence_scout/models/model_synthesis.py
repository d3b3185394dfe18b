"""Synthesis output."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SynthesisResult(BaseModel):
    """Citation-linked synthesis HTML and the evidence rating of the analyzed set."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    html: str
    evidence_rating: int = Field(ge=1, le=5)
    referenced: list[str] = []  # PMIDs in citation order
