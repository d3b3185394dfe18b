"""
Pydantic models for literature records.

These are the data contracts between the literature gateway, the analysis
pipeline and the HTTP layer. Field names are snake_case in Python and
camelCase on the wire.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from evidence_scout.helpers.author_helpers import normalize_authors


class Author(BaseModel):
    """A single author in citation order."""

    name: str
    authtype: str = "author"


class ICiteMetrics(BaseModel):
    """NIH iCite citation metrics for one PMID. Every field is optional upstream."""

    model_config = ConfigDict(extra="ignore")

    relative_citation_ratio: float | None = None
    nih_percentile: float | None = None
    citation_count: int | None = None
    citations_per_year: float | None = None
    expected_citations_per_year: float | None = None
    field_citation_rate: float | None = None
    apt: float | None = None  # approximate potential to translate
    is_clinical: bool | None = None
    year: int | None = None


class Article(BaseModel):
    """A PubMed record plus the annotations added along the pipeline."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    pmid: str
    title: str = ""
    abstract: str = ""
    authors: list[Author] = []
    publication_date: str = ""  # ISO date when complete, else PubMed free text
    doi: str | None = None
    source: str | None = None  # journal
    mesh_terms: list[str] = []
    publication_types: list[str] = []
    priority_score: float | None = Field(default=None, ge=0, le=100)
    icite_metrics: ICiteMetrics | None = Field(default=None, alias="iCiteMetrics")
    secondary_analysis: str | None = None
    analysis_error: bool | None = None
    fully_analyzed: bool | None = None

    @model_validator(mode="before")
    @classmethod
    def coerce_nones(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        for field_name in ("title", "abstract", "publication_date", "publicationDate"):
            if field_name in values and values[field_name] is None:
                values[field_name] = ""
        for field_name in ("mesh_terms", "meshTerms", "publication_types", "publicationTypes"):
            if field_name in values and values[field_name] is None:
                values[field_name] = []
        pmid = values.get("pmid")
        if isinstance(pmid, int):
            values["pmid"] = str(pmid)
        return values

    @field_validator("authors", mode="before")
    @classmethod
    def normalize_author_shapes(cls, value: Any) -> list[dict[str, str]]:
        return normalize_authors(value)

    @model_validator(mode="after")
    def check_analysis_exclusive(self) -> "Article":
        if self.secondary_analysis and self.analysis_error:
            raise ValueError("article cannot carry both an analysis and an analysis error")
        return self

    # -- Annotation helpers ----------------------------------------------------

    def with_analysis(self, html: str) -> "Article":
        return self.model_copy(
            update={
                "secondary_analysis": html,
                "analysis_error": None,
                "fully_analyzed": True,
            }
        )

    def with_analysis_error(self) -> "Article":
        return self.model_copy(
            update={
                "secondary_analysis": None,
                "analysis_error": True,
                "fully_analyzed": False,
            }
        )

    @property
    def is_analyzed(self) -> bool:
        return bool(self.secondary_analysis) or bool(self.analysis_error)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
