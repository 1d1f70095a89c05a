from __future__ import annotations

import json
from typing import Optional

import strawberry

from medkb.core.dependencies import get_lookup_service, get_remote_client
from medkb.models.medicine import MedicineRecord
from medkb.services.catalog_stats import get_sync_status, summarize_records
from medkb.services.lookup import LookupResult
from medkb.worker.tasks import task_sync_catalog


@strawberry.type
class PriceRangeNode:
    min: float
    max: float


@strawberry.type
class MedicineNode:
    id: strawberry.ID
    generic_name: str
    brand_name: str
    generic_name_bn: Optional[str]
    brand_name_bn: Optional[str]
    manufacturer: str
    strength: str
    form: str
    therapeutic_class: str
    indication: list[str]
    alternatives: list[str]
    price_range: PriceRangeNode
    prescription_required: bool
    common_dosage: str
    side_effects: list[str]
    contraindications: list[str]
    drug_interactions: list[str]
    storage_instructions: str
    warnings_precautions: list[str]
    pregnancy_category: Optional[str] = None
    pregnancy_info: str = ""
    lactation_info: str = ""


@strawberry.type
class LookupResultNode:
    source: str  # REMOTE | LOCAL | EMPTY
    medicines: list[MedicineNode]


@strawberry.type
class InteractionResultNode:
    source: str
    report: str  # JSON-encoded interaction report


@strawberry.type
class ClassCountNode:
    therapeutic_class: str
    count: int


@strawberry.type
class CatalogSummaryNode:
    total: int
    therapeutic_classes: int
    manufacturers: int
    prescription_required: int
    otc: int
    by_class: list[ClassCountNode]


@strawberry.type
class SyncStatusNode:
    local_total: int
    remote_total: int
    remote_therapeutic_classes: int
    remote_manufacturers: int
    last_updated: Optional[str]
    is_synced: bool
    error: Optional[str]


@strawberry.type
class SchemaValidationNode:
    valid: bool
    issues: list[str]
    error: Optional[str]


@strawberry.type
class ClearResultNode:
    success: bool
    deleted_count: int
    error: Optional[str]


@strawberry.type
class SyncJobNode:
    task_id: strawberry.ID
    status: str


def _medicine_node(record: MedicineRecord) -> MedicineNode:
    pregnancy = record.pregnancy_lactation
    return MedicineNode(
        id=strawberry.ID(record.id),
        generic_name=record.generic_name,
        brand_name=record.brand_name,
        generic_name_bn=record.generic_name_bn,
        brand_name_bn=record.brand_name_bn,
        manufacturer=record.manufacturer,
        strength=record.strength,
        form=record.form,
        therapeutic_class=record.therapeutic_class,
        indication=list(record.indication),
        alternatives=list(record.alternatives),
        price_range=PriceRangeNode(min=record.price_range.min, max=record.price_range.max),
        prescription_required=record.prescription_required,
        common_dosage=record.common_dosage,
        side_effects=list(record.side_effects),
        contraindications=list(record.contraindications),
        drug_interactions=list(record.drug_interactions),
        storage_instructions=record.storage_instructions,
        warnings_precautions=list(record.warnings_precautions),
        pregnancy_category=pregnancy.pregnancy_category.value if pregnancy.pregnancy_category else None,
        pregnancy_info=pregnancy.pregnancy_info,
        lactation_info=pregnancy.lactation_info,
    )


def _lookup_node(result: LookupResult) -> LookupResultNode:
    return LookupResultNode(
        source=result.source.value,
        medicines=[_medicine_node(record) for record in result.records],
    )


@strawberry.type
class Query:
    @strawberry.field
    async def lookup_medicines(self, query: str, limit: int = 10) -> LookupResultNode:
        return _lookup_node(await get_lookup_service().lookup(query, limit))

    @strawberry.field
    async def alternatives(self, generic_name: str) -> LookupResultNode:
        return _lookup_node(await get_lookup_service().alternatives(generic_name))

    @strawberry.field
    async def medicine_by_id(self, id: strawberry.ID) -> Optional[MedicineNode]:
        record = (await get_lookup_service().by_id(str(id))).first
        return _medicine_node(record) if record is not None else None

    @strawberry.field
    async def medicines_by_indication(self, indication: str) -> LookupResultNode:
        return _lookup_node(await get_lookup_service().by_indication(indication))

    @strawberry.field
    async def check_interactions(self, medicine_ids: list[strawberry.ID]) -> InteractionResultNode:
        result = await get_lookup_service().check_interactions([str(medicine_id) for medicine_id in medicine_ids])
        return InteractionResultNode(source=result.source.value, report=json.dumps(result.report, ensure_ascii=False))

    @strawberry.field
    def popular_medicines(self, limit: int = 10) -> LookupResultNode:
        return _lookup_node(get_lookup_service().popular(limit))

    @strawberry.field
    def catalog_summary(self) -> CatalogSummaryNode:
        summary = summarize_records(get_lookup_service().store)
        return CatalogSummaryNode(
            total=summary.total,
            therapeutic_classes=summary.therapeutic_classes,
            manufacturers=summary.manufacturers,
            prescription_required=summary.prescription_required,
            otc=summary.otc,
            by_class=[ClassCountNode(therapeutic_class=row.therapeutic_class, count=row.count) for row in summary.by_class],
        )

    @strawberry.field
    async def sync_status(self) -> SyncStatusNode:
        report = await get_sync_status(get_remote_client(), get_lookup_service().store)
        return SyncStatusNode(
            local_total=report.local_total,
            remote_total=report.remote_total,
            remote_therapeutic_classes=report.remote_therapeutic_classes,
            remote_manufacturers=report.remote_manufacturers,
            last_updated=report.last_updated.isoformat() if report.last_updated else None,
            is_synced=report.is_synced,
            error=report.error,
        )

    @strawberry.field
    async def schema_validation(self) -> SchemaValidationNode:
        result = await get_remote_client().validate_schema()
        if not result.ok or result.data is None:
            return SchemaValidationNode(valid=False, issues=[], error=result.error)
        return SchemaValidationNode(valid=result.data.valid, issues=list(result.data.issues), error=None)


@strawberry.type
class Mutation:
    @strawberry.mutation
    def sync_catalog(self) -> SyncJobNode:
        async_result = task_sync_catalog.delay()
        return SyncJobNode(task_id=strawberry.ID(str(async_result.id)), status="QUEUED")

    @strawberry.mutation
    async def clear_remote_catalog(self) -> ClearResultNode:
        result = await get_remote_client().clear()
        if not result.ok:
            return ClearResultNode(success=False, deleted_count=0, error=result.error)
        return ClearResultNode(success=True, deleted_count=result.data or 0, error=None)


schema = strawberry.Schema(query=Query, mutation=Mutation)
