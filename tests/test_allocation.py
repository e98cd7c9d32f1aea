import pytest
from sqlalchemy.exc import SQLAlchemyError

from fbatrack.errors import AllocationError, AllocationSaveError
from fbatrack.models import db, Asin, Box, PackGroupItem, Shipment, User
from fbatrack.packing import engine
from fbatrack.packing.csv_import import CsvUpload, import_into_shipment
from fbatrack.packing.engine import AllocationSession, parse_quantity, save_item_quantities
from fbatrack.packing.model import load_shipment_view
from fbatrack.packing.weights import weight_in_grams


def _item(view, item_id):
    return view.find_item(item_id)[1]

@pytest.mark.parametrize("raw,expected", [
    ("4", 4),
    ("3.7", 3),
    (" 12 units", 12),
    ("-2", 0),
    ("", 0),
    ("abc", 0),
    (None, 0),
    (7, 7),
    (-1, 0),
])
def test_parse_quantity(raw, expected):
    assert parse_quantity(raw) == expected

def test_weight_in_grams_converts_kg():
    assert weight_in_grams(Asin(weight=250, weight_unit="g")) == 250
    assert weight_in_grams(Asin(weight=0.5, weight_unit="kg")) == 500
    assert weight_in_grams(None) == 0

# ---------- pending overlay ----------
def test_pending_edits_show_in_view_but_not_in_database(user_id, shipment_id, ids):
    s = AllocationSession(user_id, shipment_id)
    s.set_quantity(ids["alpha"], ids["box1"], "6")
    s.set_quantity(ids["alpha"], ids["box2"], 4)
    assert s.has_pending_changes

    alpha = _item(s.view(), ids["alpha"])
    assert alpha.total_boxed == 10
    assert alpha.remaining == 0
    assert alpha.status == "complete"
    assert alpha.dirty

    stored = _item(load_shipment_view(user_id, shipment_id), ids["alpha"])
    assert stored.remaining == 10
    assert stored.status == "empty"
    assert not stored.dirty

def test_partial_and_over_allocation(user_id, shipment_id, ids):
    s = AllocationSession(user_id, shipment_id)
    s.set_quantity(ids["alpha"], ids["box1"], 6)
    alpha = _item(s.view(), ids["alpha"])
    assert alpha.remaining == 4
    assert alpha.status == "partial"

    s.set_quantity(ids["alpha"], ids["box2"], 6)
    alpha = _item(s.view(), ids["alpha"])
    assert alpha.remaining == -2
    assert alpha.status == "over"

def test_item_and_box_weights_in_grams(user_id, shipment_id, ids):
    s = AllocationSession(user_id, shipment_id)
    s.apply({
        ids["alpha"]: {ids["box1"]: 4},
        ids["beta"]: {ids["box1"]: 4},
    })
    view = s.view()
    # 250 g x 4 and 0.5 kg x 4
    assert _item(view, ids["alpha"]).total_weight == 1000
    assert _item(view, ids["beta"]).total_weight == 2000

    pg = view.pack_groups[0]
    box1 = pg.box(ids["box1"])
    assert box1.total_units == 8
    assert box1.content_weight == 3000
    assert pg.total_weight == 3000
    assert view.total_weight == 3000
    assert view.has_pending_changes

def test_unknown_cells_are_rejected(user_id, shipment_id, ids):
    s = AllocationSession(user_id, shipment_id)
    with pytest.raises(AllocationError):
        s.set_quantity("nope", ids["box1"], 1)
    with pytest.raises(AllocationError):
        s.set_quantity(ids["alpha"], "nope", 1)
    assert not s.has_pending_changes

def test_box_from_another_pack_group_is_rejected(user_id, shipment_id, ids):
    up = CsvUpload("Pack Group 2.csv", "SKU,ASIN,Expected quantity\nSKU-G,B000000003,6\n", "text/csv")
    import_into_shipment(user_id, shipment_id, [up])
    other_box = db.session.get(Shipment, shipment_id).pack_groups[1].boxes[0].id

    s = AllocationSession(user_id, shipment_id)
    with pytest.raises(AllocationError):
        s.set_quantity(ids["alpha"], other_box, 1)

def test_apply_checks_every_cell_first(user_id, shipment_id, ids):
    s = AllocationSession(user_id, shipment_id)
    with pytest.raises(AllocationError):
        s.apply({ids["alpha"]: {ids["box1"]: 3, "missing-box": 1}})
    assert s.pending == {}

def test_discard_drops_pending(user_id, shipment_id, ids):
    s = AllocationSession(user_id, shipment_id)
    s.set_quantity(ids["alpha"], ids["box1"], 3)
    s.discard()
    assert not s.has_pending_changes
    assert _item(s.view(), ids["alpha"]).remaining == 10

def test_session_needs_an_owned_shipment(user_id, shipment_id):
    with pytest.raises(AllocationError):
        AllocationSession(user_id, "missing")

    other = User(email="other@fbatrack.local", pass_hash="x", name="Other")
    db.session.add(other)
    db.session.commit()
    with pytest.raises(AllocationError):
        AllocationSession(other.id, shipment_id)

# ---------- saving ----------
def test_save_persists_and_recalculates_totals(user_id, shipment_id, ids):
    s = AllocationSession(user_id, shipment_id)
    s.apply({
        ids["alpha"]: {ids["box1"]: 6, ids["box2"]: "4"},
        ids["beta"]: {ids["box2"]: 4},
    })
    result = s.save()
    assert result.items_updated == 2
    assert not s.has_pending_changes

    alpha = db.session.get(PackGroupItem, ids["alpha"])
    assert alpha.boxed_quantities == {ids["box1"]: 6, ids["box2"]: 4}
    assert db.session.get(Box, ids["box1"]).total_units == 6
    assert db.session.get(Box, ids["box2"]).total_units == 8

    shipment = db.session.get(Shipment, shipment_id)
    assert shipment.total_weight == 2500 + 2000
    assert shipment.pack_groups[0].total_weight == 4500
    assert shipment.total_units == 14

def test_later_save_merges_with_committed_quantities(user_id, shipment_id, ids):
    first = AllocationSession(user_id, shipment_id)
    first.set_quantity(ids["alpha"], ids["box1"], 6)
    first.save()

    second = AllocationSession(user_id, shipment_id)
    second.set_quantity(ids["alpha"], ids["box2"], 4)
    second.save()

    alpha = db.session.get(PackGroupItem, ids["alpha"])
    assert alpha.boxed_quantities == {ids["box1"]: 6, ids["box2"]: 4}

def test_save_without_changes_is_a_no_op(user_id, shipment_id):
    result = AllocationSession(user_id, shipment_id).save()
    assert result.items_updated == 0

def test_failed_save_keeps_pending_and_database(user_id, shipment_id, ids, monkeypatch):
    def boom(*args, **kwargs):
        raise SQLAlchemyError("connection lost")

    s = AllocationSession(user_id, shipment_id)
    s.set_quantity(ids["alpha"], ids["box1"], 5)
    monkeypatch.setattr(engine, "refresh_totals", boom)

    with pytest.raises(AllocationSaveError) as e:
        s.save()
    assert e.value.pending_items == 1
    assert s.has_pending_changes
    assert s.pending == {ids["alpha"]: {ids["box1"]: 5}}
    assert db.session.get(PackGroupItem, ids["alpha"]).boxed_quantities == {}

    # retry once the database is back
    monkeypatch.undo()
    assert s.save().items_updated == 1
    assert db.session.get(PackGroupItem, ids["alpha"]).boxed_quantities == {ids["box1"]: 5}

def test_save_item_quantities_rejects_unknown_items(user_id, shipment_id, ids):
    with pytest.raises(AllocationError):
        save_item_quantities(user_id, [(ids["alpha"], {ids["box1"]: 1}), ("ghost", {})])
    assert db.session.get(PackGroupItem, ids["alpha"]).boxed_quantities == {}
