"""
Inventory tests
===============
Option templates, item registration, product links and bulk imports.
"""

import io

import pytest
from openpyxl import Workbook, load_workbook

from dongnegage.api.schemas.inventory import InventoryItemCreate, InventoryItemUpdate
from dongnegage.api.services import inventory_import_service as imports
from dongnegage.api.services.inventory_import_service import InventoryImportError
from dongnegage.api.services.inventory_service import (
    InventoryInputError,
    list_inventory,
    parse_option_stocks,
    parse_option_template,
    register_inventory_item,
    resolve_inventory_link_input,
    set_product_link,
    update_inventory_item,
)
from dongnegage.core import models
from dongnegage.core.utils.enums import ImportJobStatus, ImportRowType, ImportSourceType


def xlsx_bytes(sheets: dict[str, list[list]]) -> bytes:
    workbook = Workbook()
    workbook.remove(workbook.active)
    for title, rows in sheets.items():
        sheet = workbook.create_sheet(title)
        for row in rows:
            sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


# ═══════════════════════════════════════════════════════════
# TEXT FORMATS
# ═══════════════════════════════════════════════════════════

class TestOptionTemplate:

    def test_parses_groups_with_all_separators(self):
        groups = parse_option_template("한우: 1kg, 2kg | 컬러(선택): 노랑, 파랑, 노랑\n포장; 리본: 빨강")

        assert groups == [
            {"name": "한우", "values": ["1kg", "2kg"], "required": True},
            {"name": "컬러", "values": ["노랑", "파랑"], "required": False},
            {"name": "리본", "values": ["빨강"], "required": True},
        ]

    def test_blank_template(self):
        assert parse_option_template("  ") == []
        assert parse_option_template(None) == []

    def test_option_stocks_skip_malformed_parts(self):
        assert parse_option_stocks("노랑=10, 파랑 = 3, 초록=-1, 보라=많음, 빨강") == {"노랑": 10, "파랑": 3}


# ═══════════════════════════════════════════════════════════
# ITEMS
# ═══════════════════════════════════════════════════════════

class TestInventoryItems:

    def test_register_generates_sku(self, db, shop):
        item = register_inventory_item(db, shop.id, InventoryItemCreate(name="돼지 목살", current_quantity=7))

        assert item.sku.startswith("INV-")
        assert item.unit == "ea"
        assert item.current_quantity == 7

    def test_register_same_sku_updates(self, db, shop, inventory_item):
        item = register_inventory_item(db, shop.id, InventoryItemCreate(name="한우 원재료(수정)", sku="ING-001",
                                                                        current_quantity=40))

        assert item.id == inventory_item.id
        assert item.name == "한우 원재료(수정)"
        assert db.query(models.InventoryItem).count() == 1

    def test_name_is_required(self, db, shop):
        with pytest.raises(InventoryInputError) as exc:
            register_inventory_item(db, shop.id, InventoryItemCreate(name="  "))
        assert exc.value.message == "재고 항목명을 입력해주세요"

    def test_option_stock_sets_total(self, db, shop):
        item = register_inventory_item(db, shop.id, InventoryItemCreate(
            name="티셔츠",
            current_quantity=999,
            option_groups_raw="컬러: 노랑, 파랑",
            stock_option_name="컬러",
            option_stocks_raw="노랑=4, 초록=9",
        ))

        # Buckets follow the group's values; unknown values are dropped
        assert item.option_stocks == {"노랑": 4, "파랑": 0}
        assert item.current_quantity == 4

    def test_update_clears_stock_option(self, db, shop):
        item = register_inventory_item(db, shop.id, InventoryItemCreate(
            name="티셔츠", option_groups_raw="컬러: 노랑", stock_option_name="컬러", option_stocks_raw="노랑=2",
        ))

        item = update_inventory_item(db, item, InventoryItemUpdate(stock_option_name="", current_quantity=11))

        assert item.stock_option_name is None
        assert item.option_stocks == {}
        assert item.current_quantity == 11

    def test_list_reports_low_stock_and_links(self, db, shop, product, inventory_item):
        inventory_item.current_quantity = 1
        db.commit()
        set_product_link(db, product, inventory_item)

        rows = list_inventory(db, shop.id)

        assert len(rows) == 1
        assert rows[0]["is_low"] is True
        assert rows[0]["linked_count"] == 1


class TestProductLinks:

    def test_link_disabled_needs_no_item(self, db, shop):
        assert resolve_inventory_link_input(db, shop.id, False, None, 0) == (None, 1)

    @pytest.mark.parametrize("item_id,message", [
        (None, "재고 연동을 사용하려면 재고 항목을 선택해주세요"),
        (999, "선택한 재고 항목을 찾을 수 없습니다"),
    ])
    def test_link_input_errors(self, db, shop, item_id, message):
        with pytest.raises(InventoryInputError) as exc:
            resolve_inventory_link_input(db, shop.id, True, item_id, 1)
        assert exc.value.message == message

    def test_inactive_item_cannot_be_linked(self, db, shop, inventory_item):
        inventory_item.is_active = False
        db.commit()

        with pytest.raises(InventoryInputError) as exc:
            resolve_inventory_link_input(db, shop.id, True, inventory_item.id, 2)
        assert exc.value.message == "비활성 재고 항목은 연동할 수 없습니다"

    def test_other_shops_item_is_not_found(self, db, other_shop, inventory_item):
        with pytest.raises(InventoryInputError):
            resolve_inventory_link_input(db, other_shop.id, True, inventory_item.id, 1)

    def test_single_enabled_link_and_template_copy(self, db, shop, product, inventory_item):
        inventory_item.option_groups = [{"name": "중량", "values": ["1kg", "2kg"], "required": True}]
        second = models.InventoryItem(shop_id=shop.id, sku="ING-002", name="양념", current_quantity=3)
        db.add(second)
        db.commit()

        set_product_link(db, product, inventory_item, 2)
        set_product_link(db, product, second, 1)

        links = db.query(models.ProductInventoryLink).filter_by(product_id=product.id).all()
        enabled = [link for link in links if link.is_enabled]
        assert len(links) == 2
        assert [link.inventory_item_id for link in enabled] == [second.id]
        assert product.option_groups == [{"name": "중량", "values": ["1kg", "2kg"], "required": True}]

    def test_unlinking_disables_all(self, db, product, inventory_item):
        set_product_link(db, product, inventory_item)
        set_product_link(db, product, None)

        assert not any(link.is_enabled for link in product.inventory_links)


# ═══════════════════════════════════════════════════════════
# WORKBOOK IMPORT
# ═══════════════════════════════════════════════════════════

INVENTORY_HEADER = ["sku", "name", "unit", "current_quantity", "minimum_quantity", "is_active"]
MAPPING_HEADER = ["product_id_or_title", "inventory_sku", "consume_per_sale", "is_enabled"]


class TestWorkbookImport:

    def workbook(self, product):
        return xlsx_bytes({
            "InventoryItems": [
                INVENTORY_HEADER,
                ["ING-100", "등심", "kg", 30, 5, "Y"],
                ["", "이름만", "kg", 1, 0, "Y"],
                ["ING-101", "안심", "kg", "12", "", "no"],
            ],
            "ProductMappings": [
                MAPPING_HEADER,
                [product.title, "ING-100", 2, "Y"],
                ["없는 상품", "ING-100", 1, "Y"],
                [str(product.id), "ING-404", 1, "Y"],
            ],
        })

    def test_parse_requires_both_sheets(self):
        content = xlsx_bytes({"InventoryItems": [INVENTORY_HEADER]})

        with pytest.raises(InventoryImportError) as exc:
            imports.parse_workbook_upload(workbook=("items.xlsx", content))
        assert "InventoryItems / ProductMappings" in exc.value.message

    def test_parse_rejects_other_extensions(self):
        with pytest.raises(InventoryImportError) as exc:
            imports.parse_workbook_upload(workbook=("items.xls", b"data"))
        assert exc.value.message == "엑셀 업로드는 .xlsx 파일만 가능합니다"

    def test_parse_requires_some_upload(self):
        with pytest.raises(InventoryImportError):
            imports.parse_workbook_upload(inventory_csv=("items.csv", b"sku,name\n"))

    def test_import_continues_past_bad_rows(self, db, shop, product):
        source, inventory_rows, mapping_rows = imports.parse_workbook_upload(
            workbook=("items.xlsx", self.workbook(product))
        )
        assert source == ImportSourceType.XLSX
        assert [row.row_number for row in inventory_rows] == [2, 3, 4]

        outcome = imports.import_workbook(db, shop.id, source, inventory_rows, mapping_rows)

        assert outcome.success_rows == 3
        assert outcome.failed_rows == 3
        assert outcome.message() == "업로드 완료: 성공 3건, 실패 3건"

        job = imports.get_import_job(db, shop.id, outcome.job.id)
        assert job.status == ImportJobStatus.COMPLETED
        assert job.total_rows == 6
        errors = {(row.row_type, row.row_number): row.error_message for row in job.rows}
        assert errors[(ImportRowType.INVENTORY_ITEM, 3)] == "sku가 비어 있습니다"
        assert errors[(ImportRowType.PRODUCT_MAPPING, 3)] == "상품을 찾을 수 없습니다"
        assert errors[(ImportRowType.PRODUCT_MAPPING, 4)] == "SKU(ING-404)에 해당하는 재고 항목이 없습니다"

        fillet = db.query(models.InventoryItem).filter_by(sku="ING-101").one()
        assert fillet.current_quantity == 12
        assert fillet.is_active is False
        link = db.query(models.ProductInventoryLink).filter_by(product_id=product.id).one()
        assert link.consume_per_sale == 2

    def test_dry_run_writes_nothing_but_the_job(self, db, shop, product):
        source, inventory_rows, mapping_rows = imports.parse_workbook_upload(
            workbook=("items.xlsx", self.workbook(product))
        )

        outcome = imports.import_workbook(db, shop.id, source, inventory_rows, mapping_rows, dry_run=True)

        # The first mapping resolves against a SKU from the same upload
        assert outcome.success_rows == 3
        assert outcome.message().startswith("검증 완료")
        assert db.query(models.InventoryItem).count() == 0
        assert db.query(models.ProductInventoryLink).count() == 0

    def test_csv_pair(self, db, shop, product):
        inventory_csv = "\ufeffsku,name,unit,current_quantity,minimum_quantity,is_active\nING-200,갈비,kg,8,2,true\n"
        mapping_csv = f"product_id_or_title,inventory_sku,consume_per_sale,is_enabled\n{product.id},ING-200,,\n"

        source, inventory_rows, mapping_rows = imports.parse_workbook_upload(
            inventory_csv=("inventory.csv", inventory_csv.encode("utf-8")),
            mapping_csv=("mapping.csv", mapping_csv.encode("utf-8")),
        )
        outcome = imports.import_workbook(db, shop.id, source, inventory_rows, mapping_rows)

        assert source == ImportSourceType.CSV
        assert outcome.failed_rows == 0
        link = db.query(models.ProductInventoryLink).one()
        assert link.consume_per_sale == 1
        assert link.is_enabled is True

    def test_ambiguous_title_is_rejected(self, db, shop, product):
        db.add(models.Product(shop_id=shop.id, title=product.title, price=1000))
        db.commit()
        db.add(models.InventoryItem(shop_id=shop.id, sku="ING-300", name="재료"))
        db.commit()

        rows = [imports.MappingRow(2, product.title, "ING-300", 1, True)]
        outcome = imports.import_workbook(db, shop.id, ImportSourceType.CSV, [], rows)

        assert outcome.errors[0].error_message == "동일한 상품명이 여러 개 존재합니다"
        assert outcome.job.status == ImportJobStatus.FAILED

    def test_mapping_two_skus_to_one_product_keeps_one_enabled(self, db, shop, product):
        db.add_all([
            models.InventoryItem(shop_id=shop.id, sku="ING-A", name="등심"),
            models.InventoryItem(shop_id=shop.id, sku="ING-B", name="안심"),
        ])
        db.commit()

        rows = [
            imports.MappingRow(2, str(product.id), "ING-A", 1, True),
            imports.MappingRow(3, str(product.id), "ING-B", 2, True),
        ]
        outcome = imports.import_workbook(db, shop.id, ImportSourceType.CSV, [], rows)

        assert outcome.success_rows == 2
        links = db.query(models.ProductInventoryLink).filter_by(product_id=product.id).all()
        enabled = [link for link in links if link.is_enabled]
        assert len(links) == 2
        assert [link.inventory_item.sku for link in enabled] == ["ING-B"]

    def test_template_has_both_sheets(self):
        workbook = load_workbook(io.BytesIO(imports.build_template_workbook()))

        assert workbook.sheetnames == ["InventoryItems", "ProductMappings"]
        assert [c.value for c in workbook["InventoryItems"][1]] == INVENTORY_HEADER


# ═══════════════════════════════════════════════════════════
# SINGLE SHEET IMPORT
# ═══════════════════════════════════════════════════════════

class TestSheetImport:

    def test_korean_headers(self):
        content = "품목코드,품목명,단위,현재 수량,안전재고,사용여부\nA-1,소금,kg,3,1,N\n".encode("utf-8")

        rows = imports.parse_sheet_upload("재고.csv", content)

        assert len(rows) == 1
        assert rows[0].sku == "A-1"
        assert rows[0].name == "소금"
        assert rows[0].current_quantity == 3
        assert rows[0].minimum_quantity == 1
        assert rows[0].is_active is False
        assert rows[0].row_number == 2

    def test_headerless_sheet_is_positional(self):
        content = xlsx_bytes({"Sheet": [["B-1", "후추", "g", 500, 50, "Y"]]})

        rows = imports.parse_sheet_upload("stock.xlsx", content)

        assert rows[0].sku == "B-1"
        assert rows[0].current_quantity == 500
        assert rows[0].row_number == 1

    def test_unsupported_extension(self):
        with pytest.raises(InventoryImportError):
            imports.parse_sheet_upload("stock.pdf", b"%PDF")

    def test_blank_sku_reuses_item_with_same_name(self, db, shop, inventory_item):
        rows = [
            imports.InventoryRow(2, "", "한우 원재료", "kg", 50, 5, True),
            imports.InventoryRow(3, "", "새 품목", None, 2, 0, True),
            imports.InventoryRow(4, "X-1", "", None, 1, 0, True),
        ]

        outcome = imports.import_sheet(db, shop.id, rows)

        assert outcome.success_rows == 2
        assert outcome.errors[0].error_message == "품목명이 비어 있습니다"
        db.refresh(inventory_item)
        assert inventory_item.current_quantity == 50
        created = db.query(models.InventoryItem).filter_by(name="새 품목").one()
        assert created.sku.startswith("INV-")
        assert outcome.job.source_type == ImportSourceType.SHEET

    def test_option_stock_item_keeps_bucket_total(self, db, shop):
        shirt = models.InventoryItem(
            shop_id=shop.id, sku="TS-1", name="티셔츠", current_quantity=5,
            stock_option_name="컬러", option_stocks={"노랑": 2, "파랑": 3},
        )
        db.add(shirt)
        db.commit()

        outcome = imports.import_sheet(db, shop.id, [imports.InventoryRow(2, "TS-1", "티셔츠", "ea", 50, 1, True)])

        assert outcome.success_rows == 1
        db.refresh(shirt)
        assert shirt.current_quantity == 5
        assert shirt.option_stocks == {"노랑": 2, "파랑": 3}
        assert shirt.minimum_quantity == 1

    def test_jobs_are_listed_newest_first(self, db, shop):
        first = imports.import_sheet(db, shop.id, [], dry_run=True).job
        second = imports.import_sheet(db, shop.id, [], dry_run=True).job

        assert [job.id for job in imports.list_import_jobs(db, shop.id)] == [second.id, first.id]
