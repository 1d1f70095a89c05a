from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy import Boolean, Column, DateTime, Numeric, String
from sqlalchemy.dialects.postgresql import ARRAY
from sqlmodel import Field as SQLField
from sqlmodel import SQLModel

REMOTE_TABLE_NAME = "medicine_knowledge_base"
REMOTE_CURRENCY = "BDT"

# List-typed fields; never None once validated
LIST_FIELDS: tuple[str, ...] = (
    "indication",
    "indication_bn",
    "alternatives",
    "side_effects",
    "side_effects_bn",
    "contraindications",
    "contraindications_bn",
    "drug_interactions",
    "drug_interactions_bn",
    "warnings_precautions",
    "warnings_precautions_bn",
    "product_images",
    "keywords_bn",
)


class PregnancyCategory(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    X = "X"


class SyncState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PriceRange(BaseModel):
    min: float = Field(default=0.0, ge=0)
    max: float = Field(default=0.0, ge=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def check_bounds(self) -> "PriceRange":
        if self.min > self.max:
            raise ValueError(f"price_range.min ({self.min}) is greater than price_range.max ({self.max})")
        return self


class PregnancyLactation(BaseModel):
    pregnancy_category: Optional[PregnancyCategory] = None
    pregnancy_info: str = ""
    lactation_info: str = ""
    pregnancy_info_bn: Optional[str] = None
    lactation_info_bn: Optional[str] = None

    model_config = {"frozen": True}


class MedicineRecord(BaseModel):
    """
    One entry of the medicine catalog.

    ``*_bn`` fields hold the Bengali variants.  Every list-typed field is a
    tuple that defaults to empty, so consumers never need a null check and
    records cannot be mutated once the catalog is loaded.
    """

    id: str = Field(min_length=1)
    generic_name: str
    brand_name: str
    generic_name_bn: Optional[str] = None
    brand_name_bn: Optional[str] = None
    manufacturer: str = ""
    manufacturer_bn: Optional[str] = None
    strength: str = ""
    form: str = ""
    form_bn: Optional[str] = None
    therapeutic_class: str = ""
    therapeutic_class_bn: Optional[str] = None
    indication: tuple[str, ...] = ()
    indication_bn: tuple[str, ...] = ()
    alternatives: tuple[str, ...] = ()
    price_range: PriceRange = Field(default_factory=PriceRange)
    prescription_required: bool = False
    common_dosage: str = ""
    common_dosage_bn: Optional[str] = None
    side_effects: tuple[str, ...] = ()
    side_effects_bn: tuple[str, ...] = ()
    contraindications: tuple[str, ...] = ()
    contraindications_bn: tuple[str, ...] = ()
    drug_interactions: tuple[str, ...] = ()
    drug_interactions_bn: tuple[str, ...] = ()
    storage_instructions: str = ""
    storage_instructions_bn: Optional[str] = None
    warnings_precautions: tuple[str, ...] = ()
    warnings_precautions_bn: tuple[str, ...] = ()
    pregnancy_lactation: PregnancyLactation = Field(default_factory=PregnancyLactation)
    product_images: tuple[str, ...] = ()
    keywords_bn: tuple[str, ...] = ()

    model_config = {"frozen": True}

    @field_validator(*LIST_FIELDS, mode="before")
    @classmethod
    def none_as_empty(cls, value: Any) -> Any:
        return () if value is None else value

    @field_validator("common_dosage", "storage_instructions", "manufacturer", "strength", "form", "therapeutic_class", mode="before")
    @classmethod
    def none_as_blank(cls, value: Any) -> Any:
        return "" if value is None else value


class MedicineKnowledgeBase(SQLModel, table=True):
    """
    Remote ``medicine_knowledge_base`` row: the wire shape of a record.

    ``price_range`` is flattened into ``price_min``/``price_max``,
    ``pregnancy_lactation`` into plain columns, and the audit fields
    (``created_at``/``updated_at``) are stamped at transform time.
    """

    __tablename__ = REMOTE_TABLE_NAME

    id: str = SQLField(sa_column=Column(String, primary_key=True))
    generic_name: str = SQLField(sa_column=Column(String, nullable=False, index=True))
    brand_name: str = SQLField(sa_column=Column(String, nullable=False, index=True))
    generic_name_bn: str | None = SQLField(default=None, sa_column=Column(String, nullable=True))
    brand_name_bn: str | None = SQLField(default=None, sa_column=Column(String, nullable=True))
    manufacturer: str = SQLField(sa_column=Column(String, nullable=False))
    manufacturer_bn: str | None = SQLField(default=None, sa_column=Column(String, nullable=True))
    strength: str = SQLField(sa_column=Column(String, nullable=False))
    form: str = SQLField(sa_column=Column(String, nullable=False))
    form_bn: str | None = SQLField(default=None, sa_column=Column(String, nullable=True))
    therapeutic_class: str = SQLField(sa_column=Column(String, nullable=False, index=True))
    therapeutic_class_bn: str | None = SQLField(default=None, sa_column=Column(String, nullable=True))
    indication: list[str] = SQLField(default_factory=list, sa_column=Column(ARRAY(String), nullable=False))
    indication_bn: list[str] = SQLField(default_factory=list, sa_column=Column(ARRAY(String), nullable=True))
    alternatives: list[str] = SQLField(default_factory=list, sa_column=Column(ARRAY(String), nullable=False))
    price_min: Decimal | None = SQLField(default=None, sa_column=Column(Numeric(10, 2), nullable=True))
    price_max: Decimal | None = SQLField(default=None, sa_column=Column(Numeric(10, 2), nullable=True))
    currency: str = SQLField(default=REMOTE_CURRENCY, sa_column=Column(String, nullable=False))
    prescription_required: bool = SQLField(default=False, sa_column=Column(Boolean, nullable=False))
    common_dosage: str | None = SQLField(default=None, sa_column=Column(String, nullable=True))
    common_dosage_bn: str | None = SQLField(default=None, sa_column=Column(String, nullable=True))
    side_effects: list[str] = SQLField(default_factory=list, sa_column=Column(ARRAY(String), nullable=True))
    side_effects_bn: list[str] = SQLField(default_factory=list, sa_column=Column(ARRAY(String), nullable=True))
    contraindications: list[str] = SQLField(default_factory=list, sa_column=Column(ARRAY(String), nullable=True))
    contraindications_bn: list[str] = SQLField(default_factory=list, sa_column=Column(ARRAY(String), nullable=True))
    drug_interactions: list[str] = SQLField(default_factory=list, sa_column=Column(ARRAY(String), nullable=True))
    drug_interactions_bn: list[str] = SQLField(default_factory=list, sa_column=Column(ARRAY(String), nullable=True))
    storage_instructions: str | None = SQLField(default=None, sa_column=Column(String, nullable=True))
    storage_instructions_bn: str | None = SQLField(default=None, sa_column=Column(String, nullable=True))
    warnings_precautions: list[str] = SQLField(default_factory=list, sa_column=Column(ARRAY(String), nullable=True))
    warnings_precautions_bn: list[str] = SQLField(default_factory=list, sa_column=Column(ARRAY(String), nullable=True))
    pregnancy_category: str | None = SQLField(default=None, sa_column=Column(String(1), nullable=True, index=True))
    pregnancy_info: str | None = SQLField(default=None, sa_column=Column(String, nullable=True))
    pregnancy_info_bn: str | None = SQLField(default=None, sa_column=Column(String, nullable=True))
    lactation_info: str | None = SQLField(default=None, sa_column=Column(String, nullable=True))
    lactation_info_bn: str | None = SQLField(default=None, sa_column=Column(String, nullable=True))
    product_images: list[str] = SQLField(default_factory=list, sa_column=Column(ARRAY(String), nullable=True))
    keywords_bn: list[str] = SQLField(default_factory=list, sa_column=Column(ARRAY(String), nullable=True))
    is_active: bool = SQLField(default=True, sa_column=Column(Boolean, nullable=False, server_default="true"))
    created_at: datetime | None = SQLField(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    updated_at: datetime | None = SQLField(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))


# ---------------------------------------------------------------------------
# Sync outcome models
# ---------------------------------------------------------------------------


class SyncErrorDetail(BaseModel):
    id: Optional[str] = None
    error: str
    context: str = "Batch processing failed"


class SyncResult(BaseModel):
    """Outcome of one synchronization run; built fresh per run, never persisted."""

    success: bool
    total_processed: int = 0
    inserted: int = 0
    updated: int = 0
    errors: int = 0
    error_details: Optional[list[SyncErrorDetail]] = None
    duration_ms: int = 0
    cancelled: bool = False


class SyncProgress(BaseModel):
    current: int
    total: int
    percentage: int
    status: str

    model_config = {"frozen": True}
