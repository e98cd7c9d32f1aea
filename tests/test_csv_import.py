import pytest
from sqlalchemy.exc import SQLAlchemyError

from fbatrack.errors import PackGroupCsvError
from fbatrack.models import db, Asin, Box, PackGroup, PackGroupItem, Shipment
from fbatrack.packing import csv_import
from fbatrack.packing.csv_import import (
    CsvUpload, import_into_shipment, import_pack_group_csvs,
    is_valid_pack_group_csv, parse_pack_group_csv, parse_uploads,
)

SECOND_GROUP_CSV = """SKU,Title,ASIN,FNSKU,Prep type,Expected quantity
SKU-GAMMA,Gamma Tool,B000000003,X000CCCC03,None,6
"""


def _upload(content, filename="Pack Group 1.csv", mimetype="text/csv"):
    return CsvUpload(filename=filename, content=content, mimetype=mimetype)

def _count(model):
    return db.session.scalar(db.select(db.func.count()).select_from(model))

# ---------- parsing ----------
def test_parse_reads_group_boxes_and_items(pack_group_csv):
    parsed = parse_pack_group_csv(pack_group_csv, "whatever.csv")
    assert parsed.name == "Pack Group 1"
    assert parsed.box_count == 2
    assert [i.sku for i in parsed.items] == ["SKU-ALPHA", "SKU-BETA"]

    alpha, beta = parsed.items
    assert alpha.title == "Alpha Widget, blue"
    assert alpha.asin == "B000000001"
    assert alpha.fnsku == "X000AAAA01"
    assert alpha.prep_type == "None"
    assert alpha.expected_quantity == 10
    assert alpha.order_index == 0
    assert beta.prep_type == "Labeling"
    assert beta.expected_quantity == 4
    assert beta.order_index == 1

def test_group_name_falls_back_to_filename_then_default():
    assert parse_pack_group_csv(SECOND_GROUP_CSV, "FBA17 - Pack Group 3.csv").name == "Pack Group 3"
    parsed = parse_pack_group_csv(SECOND_GROUP_CSV, "upload.csv")
    assert parsed.name == "Pack Group 1"
    # no "Total box count" row
    assert parsed.box_count == 1

def test_fnsku_column_is_never_taken_for_sku():
    content = "FNSKU,SKU,ASIN,Expected quantity\nX001,SKU-1,B01,3\n"
    item = parse_pack_group_csv(content, "a.csv").items[0]
    assert item.sku == "SKU-1"
    assert item.fnsku == "X001"

def test_skips_zero_quantity_blank_and_box_detail_rows():
    content = (
        "SKU,ASIN,Expected quantity\n"
        "SKU-1,B01,0\n"
        ",B02,5\n"
        "SKU-3,B03,2\n"
        "Name of box,Box weight (kg):,Expected quantity\n"
    )
    items = parse_pack_group_csv(content, "a.csv").items
    assert [(i.sku, i.order_index) for i in items] == [("SKU-3", 0)]

@pytest.mark.parametrize("content,message", [
    ("", "Failed to read file"),
    ("just,some\nrandom,cells\n", "Could not find header row in CSV file"),
    ("FNSKU,ASIN,Expected quantity\nX1,B01,3\n", "Required columns (SKU, ASIN, Expected quantity) not found in CSV"),
    ("SKU,ASIN,Expected quantity\n", "No valid items found in CSV file"),
])
def test_parse_errors(content, message):
    with pytest.raises(PackGroupCsvError) as e:
        parse_pack_group_csv(content, "a.csv")
    assert str(e.value) == message

def test_bytes_upload_with_bom_is_decoded(pack_group_csv):
    up = _upload(b"\xef\xbb\xbf" + pack_group_csv.encode("utf-8"))
    assert up.text().startswith("Pack group:")
    assert parse_uploads([up])[0].name == "Pack Group 1"

def test_file_type_check():
    assert is_valid_pack_group_csv("PG1.CSV")
    assert is_valid_pack_group_csv("download", "text/csv; charset=utf-8")
    assert not is_valid_pack_group_csv("notes.txt", "text/plain")

def test_parse_uploads_messages(pack_group_csv):
    with pytest.raises(PackGroupCsvError, match="Please select at least one CSV file"):
        parse_uploads([])
    with pytest.raises(PackGroupCsvError) as e:
        parse_uploads([_upload(pack_group_csv), _upload("x", "notes.txt", "text/plain")])
    assert str(e.value) == "Please select only CSV files (notes.txt)"
    with pytest.raises(PackGroupCsvError) as e:
        parse_uploads([_upload(pack_group_csv), _upload("", "empty.csv")])
    assert str(e.value) == "Failed to parse empty.csv: Failed to read file"

# ---------- persistence ----------
def test_import_creates_shipment_groups_boxes_and_items(user_id, seed_asins, pack_group_csv):
    result = import_pack_group_csvs(user_id, "  March run  ", [_upload(pack_group_csv)])
    assert result.boxes_created == 2
    assert result.items_created == 2
    # both catalog entries get the CSV FNSKU (one was empty, one differed)
    assert result.fnsku_updates == 2

    s = db.session.get(Shipment, result.shipment_id)
    assert s.name == "March run"
    assert s.total_asins == 2
    assert s.total_units == 14
    assert s.total_weight == 0

    pg = s.pack_groups[0]
    assert pg.name == "Pack Group 1"
    assert pg.position == 0
    assert pg.total_boxes == 2
    assert [(b.name, b.position) for b in pg.boxes] == [("P1-B1", 0), ("P1-B2", 1)]
    assert [i.boxed_quantities for i in pg.items] == [{}, {}]

    beta = db.session.get(Asin, seed_asins["beta"])
    assert beta.fnsku == "X000BBBB02"

def test_unknown_asins_import_without_catalog_changes(user_id, pack_group_csv):
    result = import_pack_group_csvs(user_id, "No catalog", [_upload(pack_group_csv)])
    assert result.items_created == 2
    assert result.fnsku_updates == 0
    assert _count(Asin) == 0

def test_shipment_name_is_required(user_id, pack_group_csv):
    with pytest.raises(PackGroupCsvError, match="Shipment name is required"):
        import_pack_group_csvs(user_id, "   ", [_upload(pack_group_csv)])

def test_bad_file_rejected_before_any_write(user_id, pack_group_csv):
    with pytest.raises(PackGroupCsvError):
        import_pack_group_csvs(user_id, "Run", [_upload(pack_group_csv), _upload("x", "photo.png", "image/png")])
    with pytest.raises(PackGroupCsvError):
        import_pack_group_csvs(user_id, "Run", [_upload(pack_group_csv), _upload("SKU,ASIN\n", "broken.csv")])
    assert _count(Shipment) == 0
    assert _count(PackGroup) == 0

def test_failed_persist_rolls_back_everything(user_id, monkeypatch, pack_group_csv):
    def boom(*args, **kwargs):
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(csv_import, "refresh_totals", boom)
    with pytest.raises(SQLAlchemyError):
        import_pack_group_csvs(user_id, "Run", [_upload(pack_group_csv), _upload(SECOND_GROUP_CSV, "Pack Group 2.csv")])

    for model in (Shipment, PackGroup, Box, PackGroupItem):
        assert _count(model) == 0

def test_multiple_files_and_append_to_existing(user_id, pack_group_csv):
    result = import_pack_group_csvs(user_id, "Run", [_upload(pack_group_csv)])
    added = import_into_shipment(user_id, result.shipment_id, [_upload(SECOND_GROUP_CSV, "Pack Group 2.csv")])
    assert added.shipment_id == result.shipment_id
    assert added.boxes_created == 1

    s = db.session.get(Shipment, result.shipment_id)
    assert [(pg.name, pg.position) for pg in s.pack_groups] == [("Pack Group 1", 0), ("Pack Group 2", 1)]
    assert s.pack_groups[1].boxes[0].name == "P2-B1"
    assert s.total_asins == 3
    assert s.total_units == 20

def test_append_to_missing_shipment_returns_none(user_id, pack_group_csv):
    assert import_into_shipment(user_id, "does-not-exist", [_upload(pack_group_csv)]) is None
