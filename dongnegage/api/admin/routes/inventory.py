# dongnegage/api/admin/routes/inventory.py
import logging
from typing import List, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from fastapi.responses import Response

from dongnegage.api.schemas.inventory import (
    ImportJobDetail,
    ImportJobOut,
    ImportResult,
    InventoryItemCreate,
    InventoryItemOut,
    InventoryItemUpdate,
)
from dongnegage.api.services import inventory_import_service, inventory_service
from dongnegage.api.services.inventory_import_service import InventoryImportError, ImportOutcome
from dongnegage.api.services.inventory_service import InventoryInputError
from dongnegage.core.database import GetDBDep
from dongnegage.core.dependencies import GetShopDep, GetWritableShopDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inventory", tags=["Inventory"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


async def _read_upload(file: Optional[UploadFile]) -> Optional[tuple[str, bytes]]:
    if file is None or not file.filename:
        return None
    return file.filename, await file.read()


def _result(outcome: ImportOutcome) -> ImportResult:
    return ImportResult(
        job_id=outcome.job.id,
        message=outcome.message(),
        total_rows=outcome.total_rows,
        success_rows=outcome.success_rows,
        failed_rows=outcome.failed_rows,
    )


# ═══════════════════════════════════════════════════════════
# ITEMS
# ═══════════════════════════════════════════════════════════

@router.get("", response_model=List[InventoryItemOut])
def list_inventory(db: GetDBDep, shop: GetShopDep):
    return inventory_service.list_inventory(db, shop.id)


@router.post("", response_model=InventoryItemOut, status_code=201)
def register_inventory_item(payload: InventoryItemCreate, db: GetDBDep, shop: GetWritableShopDep):
    try:
        item = inventory_service.register_inventory_item(db, shop.id, payload)
    except InventoryInputError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return InventoryItemOut.model_validate(item)


@router.patch("/{item_id}", response_model=InventoryItemOut)
def update_inventory_item(item_id: int, payload: InventoryItemUpdate, db: GetDBDep, shop: GetWritableShopDep):
    item = inventory_service.get_inventory_item(db, shop.id, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="재고 항목을 찾을 수 없습니다")

    try:
        item = inventory_service.update_inventory_item(db, item, payload)
    except InventoryInputError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return InventoryItemOut.model_validate(item)


# ═══════════════════════════════════════════════════════════
# IMPORTS
# ═══════════════════════════════════════════════════════════

@router.post("/import/workbook", response_model=ImportResult)
async def import_workbook(
        db: GetDBDep,
        shop: GetWritableShopDep,
        workbook_file: UploadFile | None = File(None, alias="workbookFile"),
        inventory_csv_file: UploadFile | None = File(None, alias="inventoryCsvFile"),
        mapping_csv_file: UploadFile | None = File(None, alias="mappingCsvFile"),
        dry_run: bool = Form(False, alias="dryRun"),
):
    """``InventoryItems`` + ``ProductMappings`` workbook, or the same as two CSV files."""
    try:
        source_type, inventory_rows, mapping_rows = inventory_import_service.parse_workbook_upload(
            workbook=await _read_upload(workbook_file),
            inventory_csv=await _read_upload(inventory_csv_file),
            mapping_csv=await _read_upload(mapping_csv_file),
        )
        outcome = inventory_import_service.import_workbook(
            db, shop.id, source_type, inventory_rows, mapping_rows, dry_run=dry_run
        )
    except InventoryImportError as e:
        raise HTTPException(status_code=400, detail=e.message)

    return _result(outcome)


@router.post("/import/sheet", response_model=ImportResult)
async def import_sheet(
        db: GetDBDep,
        shop: GetWritableShopDep,
        file: UploadFile = File(..., alias="file"),
        dry_run: bool = Form(False, alias="dryRun"),
):
    """Single sheet with Korean or English headers."""
    try:
        rows = inventory_import_service.parse_sheet_upload(file.filename, await file.read())
        outcome = inventory_import_service.import_sheet(db, shop.id, rows, dry_run=dry_run)
    except InventoryImportError as e:
        raise HTTPException(status_code=400, detail=e.message)

    return _result(outcome)


@router.get("/import/jobs", response_model=List[ImportJobOut])
def list_import_jobs(db: GetDBDep, shop: GetShopDep):
    return inventory_import_service.list_import_jobs(db, shop.id)


@router.get("/import/jobs/{job_id}", response_model=ImportJobDetail)
def get_import_job(job_id: int, db: GetDBDep, shop: GetShopDep):
    job = inventory_import_service.get_import_job(db, shop.id, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="업로드 작업을 찾을 수 없습니다")
    return job


@router.get("/template")
def download_template(shop: GetShopDep):
    return Response(
        content=inventory_import_service.build_template_workbook(),
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": 'attachment; filename="inventory-template.xlsx"',
            "Cache-Control": "no-store",
        },
    )
