"""
Inventory Import Service
========================

Two upload flows feed the inventory:

- **Workbook**: one ``.xlsx`` with ``InventoryItems`` and ``ProductMappings``
  sheets, or the same two tables as two CSV files.
- **Single sheet**: one ``.xlsx`` / ``.xls`` / ``.csv`` with loose Korean or
  English headers.

Every row is validated and written on its own; a failing row is recorded on
the job and the rest keep going.
"""

import io
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Optional

import pandas as pd
from openpyxl import Workbook
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dongnegage.api.services.inventory_service import generate_sku, set_product_link
from dongnegage.core import models
from dongnegage.core.utils.enums import ImportJobStatus, ImportRowType, ImportSourceType
from dongnegage.core.utils.kst import utcnow
from dongnegage.core.utils.validators import cell_text, parse_bool, parse_non_negative_int, parse_positive_int

logger = logging.getLogger(__name__)

INVENTORY_SHEET = "InventoryItems"
MAPPING_SHEET = "ProductMappings"

INVENTORY_COLUMNS = ["sku", "name", "unit", "current_quantity", "minimum_quantity", "is_active"]
MAPPING_COLUMNS = ["product_id_or_title", "inventory_sku", "consume_per_sale", "is_enabled"]

# Header aliases for the single-sheet upload, compared after _normalize_header
HEADER_ALIASES = {
    "sku": ["sku", "품목코드", "상품코드", "코드", "code", "itemcode"],
    "name": ["name", "품목명", "품명", "상품명", "이름", "itemname"],
    "unit": ["unit", "단위"],
    "current_quantity": ["currentquantity", "현재수량", "수량", "재고", "재고수량", "qty", "quantity", "stock"],
    "minimum_quantity": ["minimumquantity", "최소수량", "안전재고", "min", "minquantity"],
    "is_active": ["isactive", "사용여부", "활성", "활성화", "active", "use"],
}

_HEADER_NOISE = re.compile(r"[\s_\-()]+")


class InventoryImportError(Exception):
    """The upload could not be parsed; no job is created"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


@dataclass
class InventoryRow:
    row_number: int
    sku: str
    name: str
    unit: Optional[str]
    current_quantity: int
    minimum_quantity: int
    is_active: bool


@dataclass
class MappingRow:
    row_number: int
    product_identifier: str
    inventory_sku: str
    consume_per_sale: int
    is_enabled: bool


@dataclass
class ImportOutcome:
    job: models.InventoryImportJob
    success_rows: int = 0
    failed_rows: int = 0
    errors: list = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return self.job.total_rows

    def fail(self, row_type: ImportRowType, row, message: str):
        self.failed_rows += 1
        self.errors.append(models.InventoryImportRow(
            row_type=row_type,
            row_number=row.row_number,
            raw_data=asdict(row),
            error_message=message,
        ))

    def message(self) -> str:
        prefix = "검증 완료" if self.job.dry_run else "업로드 완료"
        return f"{prefix}: 성공 {self.success_rows}건, 실패 {self.failed_rows}건"


# ═══════════════════════════════════════════════════════════
# PARSING
# ═══════════════════════════════════════════════════════════

def _extension(filename: Optional[str]) -> str:
    return (filename or "").rsplit(".", 1)[-1].lower() if "." in (filename or "") else ""


def _records(frame: pd.DataFrame) -> list[dict]:
    """Rows as dicts keyed by lower-cased header, fully blank rows dropped"""
    frame = frame.rename(columns=lambda c: cell_text(c).lower())
    records = []
    for record in frame.to_dict("records"):
        if any(cell_text(v) for v in record.values()):
            records.append(record)
    return records


def parse_inventory_rows(records: list[dict]) -> list[InventoryRow]:
    return [
        InventoryRow(
            row_number=index + 2,
            sku=cell_text(row.get("sku")),
            name=cell_text(row.get("name")),
            unit=cell_text(row.get("unit")) or None,
            current_quantity=parse_non_negative_int(row.get("current_quantity"), 0),
            minimum_quantity=parse_non_negative_int(row.get("minimum_quantity"), 0),
            is_active=parse_bool(row.get("is_active"), True),
        )
        for index, row in enumerate(records)
    ]


def parse_mapping_rows(records: list[dict]) -> list[MappingRow]:
    return [
        MappingRow(
            row_number=index + 2,
            product_identifier=cell_text(row.get("product_id_or_title")),
            inventory_sku=cell_text(row.get("inventory_sku")),
            consume_per_sale=parse_positive_int(row.get("consume_per_sale"), 1),
            is_enabled=parse_bool(row.get("is_enabled"), True),
        )
        for index, row in enumerate(records)
    ]


def _read_csv(content: bytes, header: Optional[int] = 0) -> pd.DataFrame:
    return pd.read_csv(io.BytesIO(content), dtype=str, keep_default_na=False,
                       header=header, encoding="utf-8-sig")


def parse_workbook_upload(
        workbook: Optional[tuple[str, bytes]] = None,
        inventory_csv: Optional[tuple[str, bytes]] = None,
        mapping_csv: Optional[tuple[str, bytes]] = None,
) -> tuple[ImportSourceType, list[InventoryRow], list[MappingRow]]:
    """
    Each upload is ``(filename, content)``; empty uploads count as missing.

    Raises:
        InventoryImportError: unreadable files or missing sheets
    """
    if workbook and workbook[1]:
        filename, content = workbook
        if _extension(filename) != "xlsx":
            raise InventoryImportError("엑셀 업로드는 .xlsx 파일만 가능합니다")

        try:
            sheets = pd.read_excel(io.BytesIO(content), sheet_name=None, dtype=str, engine="openpyxl")
        except Exception as e:
            logger.warning(f"⚠️ Workbook parse failed: {e}")
            raise InventoryImportError("파일 파싱에 실패했습니다")

        if INVENTORY_SHEET not in sheets or MAPPING_SHEET not in sheets:
            raise InventoryImportError("엑셀 파일에 InventoryItems / ProductMappings 시트가 모두 필요합니다")

        return (
            ImportSourceType.XLSX,
            parse_inventory_rows(_records(sheets[INVENTORY_SHEET])),
            parse_mapping_rows(_records(sheets[MAPPING_SHEET])),
        )

    if inventory_csv and inventory_csv[1] and mapping_csv and mapping_csv[1]:
        try:
            inventory_frame = _read_csv(inventory_csv[1])
            mapping_frame = _read_csv(mapping_csv[1])
        except (ValueError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            logger.warning(f"⚠️ CSV parse failed: {e}")
            raise InventoryImportError("CSV 파일을 읽을 수 없습니다")

        return (
            ImportSourceType.CSV,
            parse_inventory_rows(_records(inventory_frame)),
            parse_mapping_rows(_records(mapping_frame)),
        )

    raise InventoryImportError("업로드 파일을 선택해주세요 (.xlsx 또는 재고/매핑 CSV 2개)")


def _normalize_header(value) -> str:
    return _HEADER_NOISE.sub("", cell_text(value).lower())


def resolve_header_map(header_row: list) -> dict[str, int]:
    """Canonical field -> column index for every recognised header cell"""
    lookup = {alias: canonical for canonical, aliases in HEADER_ALIASES.items() for alias in aliases}
    mapping: dict[str, int] = {}
    for index, cell in enumerate(header_row):
        canonical = lookup.get(_normalize_header(cell))
        if canonical and canonical not in mapping:
            mapping[canonical] = index
    return mapping


def parse_sheet_upload(filename: Optional[str], content: bytes) -> list[InventoryRow]:
    """
    Single-sheet upload. The first row is a header when any of its cells
    matches an alias; otherwise columns are taken positionally as
    ``sku, name, unit, current_quantity, minimum_quantity, is_active`` and
    every row is data.
    """
    if not content:
        raise InventoryImportError("업로드 파일을 선택해주세요")

    extension = _extension(filename)
    try:
        if extension == "csv":
            frame = _read_csv(content, header=None)
        elif extension in ("xlsx", "xls"):
            engine = "openpyxl" if extension == "xlsx" else None
            frame = pd.read_excel(io.BytesIO(content), sheet_name=0, header=None, dtype=str, engine=engine)
        else:
            raise InventoryImportError("엑셀(.xlsx, .xls) 또는 CSV 파일만 업로드할 수 있습니다")
    except InventoryImportError:
        raise
    except Exception as e:
        logger.warning(f"⚠️ Sheet parse failed: {e}")
        raise InventoryImportError("파일 파싱에 실패했습니다")

    matrix = [list(row) for row in frame.itertuples(index=False, name=None)]
    if not matrix:
        return []

    header_map = resolve_header_map(matrix[0])
    if header_map:
        data_rows, first_number = matrix[1:], 2
    else:
        header_map = {name: index for index, name in enumerate(INVENTORY_COLUMNS)}
        data_rows, first_number = matrix, 1

    def pick(row: list, key: str):
        index = header_map.get(key)
        return row[index] if index is not None and index < len(row) else None

    rows = []
    for offset, row in enumerate(data_rows):
        if not any(cell_text(v) for v in row):
            continue
        rows.append(InventoryRow(
            row_number=first_number + offset,
            sku=cell_text(pick(row, "sku")),
            name=cell_text(pick(row, "name")),
            unit=cell_text(pick(row, "unit")) or None,
            current_quantity=parse_non_negative_int(pick(row, "current_quantity"), 0),
            minimum_quantity=parse_non_negative_int(pick(row, "minimum_quantity"), 0),
            is_active=parse_bool(pick(row, "is_active"), True),
        ))
    return rows


# ═══════════════════════════════════════════════════════════
# JOB BOOKKEEPING
# ═══════════════════════════════════════════════════════════

def _start_job(db: Session, shop_id: int, source_type: ImportSourceType,
               dry_run: bool, total_rows: int) -> models.InventoryImportJob:
    job = models.InventoryImportJob(
        shop_id=shop_id,
        source_type=source_type,
        dry_run=dry_run,
        status=ImportJobStatus.PROCESSING,
        total_rows=total_rows,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def _finish_job(db: Session, outcome: ImportOutcome, error_message: Optional[str] = None):
    job = outcome.job
    for row in outcome.errors:
        row.job_id = job.id
        db.add(row)

    failed = error_message is not None or (outcome.failed_rows > 0 and outcome.success_rows == 0)
    job.status = ImportJobStatus.FAILED if failed else ImportJobStatus.COMPLETED
    job.success_rows = outcome.success_rows
    job.failed_rows = outcome.failed_rows
    job.error_message = error_message
    job.completed_at = utcnow()
    db.commit()

    logger.info(
        f"📥 Import job {job.id} {job.status.value}: "
        f"{outcome.success_rows} ok, {outcome.failed_rows} failed (dry_run={job.dry_run})"
    )


def _upsert_item(db: Session, shop_id: int, row: InventoryRow, existing: Optional[models.InventoryItem]):
    item = existing or models.InventoryItem(shop_id=shop_id, sku=row.sku, option_groups=[], option_stocks={})
    item.name = row.name
    item.unit = row.unit or "ea"
    if item.option_stocks:
        # Per-option buckets stay authoritative
        item.current_quantity = sum(item.option_stocks.values())
    else:
        item.current_quantity = row.current_quantity
    item.minimum_quantity = row.minimum_quantity
    item.is_active = row.is_active
    if existing is None:
        db.add(item)
    db.commit()
    return item


def _run(db: Session, outcome: ImportOutcome, steps) -> ImportOutcome:
    try:
        steps()
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Import job {outcome.job.id} aborted: {e}", exc_info=True)
        _finish_job(db, outcome, error_message=str(e) or "처리 중 오류가 발생했습니다")
        raise InventoryImportError("업로드 처리에 실패했습니다")

    _finish_job(db, outcome)
    return outcome


# ═══════════════════════════════════════════════════════════
# PIPELINES
# ═══════════════════════════════════════════════════════════

def import_workbook(
        db: Session,
        shop_id: int,
        source_type: ImportSourceType,
        inventory_rows: list[InventoryRow],
        mapping_rows: list[MappingRow],
        dry_run: bool = False,
) -> ImportOutcome:
    """Inventory rows first, then product mappings against the updated inventory"""
    job = _start_job(db, shop_id, source_type, dry_run, len(inventory_rows) + len(mapping_rows))
    outcome = ImportOutcome(job=job)

    def steps():
        incoming_skus = set()
        items_by_sku = {
            item.sku: item
            for item in db.query(models.InventoryItem).filter(models.InventoryItem.shop_id == shop_id).all()
        }

        for row in inventory_rows:
            if not row.sku:
                outcome.fail(ImportRowType.INVENTORY_ITEM, row, "sku가 비어 있습니다")
                continue
            if not row.name:
                outcome.fail(ImportRowType.INVENTORY_ITEM, row, "name이 비어 있습니다")
                continue

            incoming_skus.add(row.sku)

            if not dry_run:
                try:
                    items_by_sku[row.sku] = _upsert_item(db, shop_id, row, items_by_sku.get(row.sku))
                except SQLAlchemyError as e:
                    db.rollback()
                    logger.warning(f"⚠️ Inventory row {row.row_number} upsert failed: {e}")
                    outcome.fail(ImportRowType.INVENTORY_ITEM, row, "재고 항목 업서트 실패")
                    continue

            outcome.success_rows += 1

        products = db.query(models.Product).filter(models.Product.shop_id == shop_id).all()
        products_by_id = {str(p.id): p for p in products}
        products_by_title: dict[str, list] = {}
        for product in products:
            products_by_title.setdefault(product.title.strip().lower(), []).append(product)

        for row in mapping_rows:
            if not row.product_identifier:
                outcome.fail(ImportRowType.PRODUCT_MAPPING, row, "product_id_or_title이 비어 있습니다")
                continue

            candidates = products_by_title.get(row.product_identifier.lower(), [])
            product = products_by_id.get(row.product_identifier) or (candidates[0] if len(candidates) == 1 else None)
            if not product:
                reason = "동일한 상품명이 여러 개 존재합니다" if len(candidates) > 1 else "상품을 찾을 수 없습니다"
                outcome.fail(ImportRowType.PRODUCT_MAPPING, row, reason)
                continue

            if not row.inventory_sku:
                outcome.fail(ImportRowType.PRODUCT_MAPPING, row, "inventory_sku가 비어 있습니다")
                continue

            item = items_by_sku.get(row.inventory_sku)
            if not item and not (dry_run and row.inventory_sku in incoming_skus):
                outcome.fail(ImportRowType.PRODUCT_MAPPING, row,
                             f"SKU({row.inventory_sku})에 해당하는 재고 항목이 없습니다")
                continue

            if not dry_run:
                try:
                    if row.is_enabled:
                        set_product_link(db, product, item, row.consume_per_sale, commit=False)
                    else:
                        link = db.query(models.ProductInventoryLink).filter(
                            models.ProductInventoryLink.product_id == product.id,
                            models.ProductInventoryLink.inventory_item_id == item.id,
                        ).first()
                        if not link:
                            link = models.ProductInventoryLink(product_id=product.id, inventory_item_id=item.id)
                            db.add(link)
                        link.consume_per_sale = row.consume_per_sale
                        link.is_enabled = False
                    db.commit()
                except SQLAlchemyError as e:
                    db.rollback()
                    logger.warning(f"⚠️ Mapping row {row.row_number} upsert failed: {e}")
                    outcome.fail(ImportRowType.PRODUCT_MAPPING, row, "상품 연동 업서트 실패")
                    continue

            outcome.success_rows += 1

    return _run(db, outcome, steps)


def import_sheet(db: Session, shop_id: int, rows: list[InventoryRow], dry_run: bool = False) -> ImportOutcome:
    """
    Single-sheet rows: only ``name`` is required. A blank SKU reuses the
    item with the same name, or gets a generated one.
    """
    job = _start_job(db, shop_id, ImportSourceType.SHEET, dry_run, len(rows))
    outcome = ImportOutcome(job=job)

    def steps():
        items = db.query(models.InventoryItem).filter(models.InventoryItem.shop_id == shop_id).all()
        items_by_sku = {item.sku: item for item in items}
        items_by_name = {item.name.strip().lower(): item for item in items}

        for row in rows:
            if not row.name:
                outcome.fail(ImportRowType.INVENTORY_ITEM, row, "품목명이 비어 있습니다")
                continue

            existing = items_by_sku.get(row.sku) if row.sku else items_by_name.get(row.name.lower())
            if not row.sku:
                row.sku = existing.sku if existing else generate_sku()

            if not dry_run:
                try:
                    item = _upsert_item(db, shop_id, row, existing)
                except SQLAlchemyError as e:
                    db.rollback()
                    logger.warning(f"⚠️ Sheet row {row.row_number} upsert failed: {e}")
                    outcome.fail(ImportRowType.INVENTORY_ITEM, row, "재고 항목 업서트 실패")
                    continue
                items_by_sku[item.sku] = item
                items_by_name[item.name.strip().lower()] = item

            outcome.success_rows += 1

    return _run(db, outcome, steps)


# ═══════════════════════════════════════════════════════════
# JOBS / TEMPLATE
# ═══════════════════════════════════════════════════════════

def list_import_jobs(db: Session, shop_id: int, limit: int = 20) -> list[models.InventoryImportJob]:
    return db.query(models.InventoryImportJob).filter(
        models.InventoryImportJob.shop_id == shop_id
    ).order_by(models.InventoryImportJob.created_at.desc(), models.InventoryImportJob.id.desc()).limit(limit).all()


def get_import_job(db: Session, shop_id: int, job_id: int) -> Optional[models.InventoryImportJob]:
    return db.query(models.InventoryImportJob).filter(
        models.InventoryImportJob.id == job_id,
        models.InventoryImportJob.shop_id == shop_id,
    ).first()


def build_template_workbook() -> bytes:
    """Two-sheet sample workbook matching the workbook upload format"""
    workbook = Workbook()
    inventory_sheet = workbook.active
    inventory_sheet.title = INVENTORY_SHEET
    inventory_sheet.append(INVENTORY_COLUMNS)
    inventory_sheet.append(["ING-001", "한우 원재료", "kg", 120, 20, True])

    mapping_sheet = workbook.create_sheet(MAPPING_SHEET)
    mapping_sheet.append(MAPPING_COLUMNS)
    mapping_sheet.append(["상품 ID 또는 정확한 상품명", "ING-001", 1, True])

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()
