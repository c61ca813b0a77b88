"""Query decomposition and routing models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PriorTurn(BaseModel):
    """A previous question/answer pair supplied as conversation context."""

    query: str
    response: str


class SubQuery(BaseModel):
    """One atomic factual question decomposed from the user query.

    ``confidence`` never decreases within a run; see :meth:`apply_check`.
    """

    question: str
    search_query: str
    answered: bool = False
    answer: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    sources: list[str] = Field(default_factory=list)

    def is_unanswered(self, min_confidence: float) -> bool:
        return not self.answered or self.confidence < min_confidence

    def apply_check(
        self,
        *,
        confidence: float,
        answer: str | None,
        sources: list[str],
        min_confidence: float,
    ) -> SubQuery:
        """Return a copy updated with a coverage result.

        The result is ignored unless it is strictly more confident than what is already known.
        """

        if confidence <= self.confidence:
            return self
        merged = list(self.sources)
        for url in sources:
            if url not in merged:
                merged.append(url)
        return self.model_copy(
            update={
                "answered": confidence >= min_confidence,
                "answer": answer,
                "confidence": confidence,
                "sources": merged,
            }
        )


class QueryClassification(BaseModel):
    """Routing decision for a search query."""

    provider: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reason: str = ""
    suggested_mode: str = "search"
