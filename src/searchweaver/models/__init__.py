"""Pydantic models used across the project."""

from __future__ import annotations

from searchweaver.models.document import ParsedDocument
from searchweaver.models.query import PriorTurn, QueryClassification, SubQuery
from searchweaver.models.run import ErrorKind, Phase, SourceStage
from searchweaver.models.source import (
    EVIDENCE_WEIGHTS,
    ConsensusLevel,
    EnhancedSource,
    EvidenceClass,
    Source,
)

__all__ = [
    "EVIDENCE_WEIGHTS",
    "ConsensusLevel",
    "EnhancedSource",
    "ErrorKind",
    "EvidenceClass",
    "ParsedDocument",
    "Phase",
    "PriorTurn",
    "QueryClassification",
    "Source",
    "SourceStage",
    "SubQuery",
]
