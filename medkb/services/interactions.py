"""Local drug-interaction screening over catalog records.

Used only when the remote ``check_drug_interactions`` function is not
reachable.  Detection is a case-insensitive substring test between one
record's ``drug_interactions`` terms and the other record's generic name,
checked in both directions for every unordered pair.
"""
from __future__ import annotations

from collections.abc import Sequence
from enum import Enum

from pydantic import BaseModel, Field

from medkb.models.medicine import MedicineRecord

# Class pairs treated as high risk; each term is matched as a substring
HIGH_RISK_CLASS_PAIRS: tuple[tuple[str, str], ...] = (
    ("anticoagulant", "nsaid"),
    ("beta blocker", "calcium channel blocker"),
    ("antibiotic", "anticoagulant"),
)


class InteractionSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DrugInteraction(BaseModel):
    medicine1: str
    medicine2: str
    severity: InteractionSeverity
    description: str

    model_config = {"frozen": True}


class InteractionReport(BaseModel):
    has_interactions: bool
    interactions: list[DrugInteraction] = Field(default_factory=list)
    medicine_count: int = 0
    message: str | None = None


def interaction_severity(class_a: str, class_b: str) -> InteractionSeverity:
    pair = (class_a.lower(), class_b.lower())
    for first, second in HIGH_RISK_CLASS_PAIRS:
        if (first in pair[0] and second in pair[1]) or (second in pair[0] and first in pair[1]):
            return InteractionSeverity.HIGH
    if pair[0] != pair[1]:
        return InteractionSeverity.MEDIUM
    return InteractionSeverity.LOW


def _declares_interaction(record: MedicineRecord, other: MedicineRecord) -> bool:
    target = other.generic_name.lower()
    for term in record.drug_interactions:
        term = term.lower().strip()
        if term and (target in term or term in target):
            return True
    return False


def check_interactions(records: Sequence[MedicineRecord]) -> InteractionReport:
    if len(records) < 2:
        return InteractionReport(
            has_interactions=False,
            medicine_count=len(records),
            message="At least 2 medicines required for interaction check",
        )

    found: list[DrugInteraction] = []
    for i, first in enumerate(records):
        for second in records[i + 1:]:
            if not (_declares_interaction(first, second) or _declares_interaction(second, first)):
                continue
            found.append(
                DrugInteraction(
                    medicine1=first.brand_name,
                    medicine2=second.brand_name,
                    severity=interaction_severity(first.therapeutic_class, second.therapeutic_class),
                    description=f"Potential interaction between {first.generic_name} and {second.generic_name}",
                )
            )

    return InteractionReport(has_interactions=bool(found), interactions=found, medicine_count=len(records))
