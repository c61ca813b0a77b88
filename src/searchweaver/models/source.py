"""Source models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class EvidenceClass(str, Enum):
    """Ranked evidence categories, strongest first."""

    PRIMARY = "primary"
    META = "meta"
    PEER = "peer"
    EXPERT = "expert"
    GRAY = "gray"
    ANECDOTAL = "anecdotal"


EVIDENCE_WEIGHTS: dict[EvidenceClass, float] = {
    EvidenceClass.PRIMARY: 1.0,
    EvidenceClass.META: 0.95,
    EvidenceClass.PEER: 0.85,
    EvidenceClass.EXPERT: 0.7,
    EvidenceClass.GRAY: 0.5,
    EvidenceClass.ANECDOTAL: 0.3,
}


class ConsensusLevel(str, Enum):
    STRONG = "strong"
    MODERATE = "moderate"
    CONFLICTING = "conflicting"
    SOLE = "sole"


class Source(BaseModel):
    """A retrieved web page or document.

    ``url`` is the identity of a source within a run.
    """

    url: str
    title: str = ""
    content: str | None = None
    summary: str | None = None
    quality: float = Field(default=0.0, ge=0.0, le=1.0)


class EnhancedSource(Source):
    """Source with evidence metadata attached by the classifier."""

    evidence_class: EvidenceClass = EvidenceClass.GRAY
    evidence_weight: float = 0.5
    authority_score: float = Field(default=0.5, ge=0.0, le=1.0)
    publication_date: str | None = None
    peer_reviewed: bool = False
    open_access: bool = False
    conflicts_of_interest: list[str] = Field(default_factory=list)
    doi: str | None = None
    retraction_status: str = "none"
    consensus_level: ConsensusLevel = ConsensusLevel.SOLE
    corroborated_by: list[str] = Field(default_factory=list)
    contradicted_by: list[str] = Field(default_factory=list)
