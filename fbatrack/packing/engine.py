"""
Allocation engine: pending quantity edits, batched saves and the derived
box / pack group / shipment totals that follow every save.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ..errors import AllocationError, AllocationSaveError
from ..models import db, Shipment, PackGroup, Box, PackGroupItem
from .model import Overlay, ShipmentView, build_shipment_view, get_shipment, normalize_boxed
from .weights import AsinWeightResolver

logger = logging.getLogger(__name__)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_quantity(raw) -> int:
    """Clamp user input to a non-negative int; anything unparseable is 0.

    Parsing reads the leading integer, so "3.7" -> 3 and "12 units" -> 12.
    """
    if raw is None:
        return 0
    if isinstance(raw, int):
        return max(0, raw)
    m = _LEADING_INT.match(str(raw))
    if not m:
        return 0
    return max(0, int(m.group(1)))


@dataclass
class SaveResult:
    items_updated: int = 0
    pack_group_ids: List[str] = field(default_factory=list)
    shipment_ids: List[str] = field(default_factory=list)


# -------------------------------------------
# derived totals (re-read from rows, never incremental)
# -------------------------------------------
def _items_of(pack_group_id: str) -> List[PackGroupItem]:
    return db.session.scalars(
        db.select(PackGroupItem).where(PackGroupItem.pack_group_id == pack_group_id)
    ).all()


def _boxes_of(pack_group_id: str) -> List[Box]:
    return db.session.scalars(
        db.select(Box).where(Box.pack_group_id == pack_group_id)
    ).all()


def _boxed_total(item: PackGroupItem) -> int:
    return sum(normalize_boxed(item.boxed_quantities).values())


def recalculate_box_totals(pack_group_id: str) -> None:
    items = _items_of(pack_group_id)
    for box in _boxes_of(pack_group_id):
        box.total_units = sum(normalize_boxed(i.boxed_quantities).get(box.id, 0) for i in items)


def recalculate_pack_group_totals(pg: PackGroup, resolver: AsinWeightResolver) -> None:
    items = _items_of(pg.id)
    resolver.prime(i.asin for i in items)
    pg.total_boxes = len(_boxes_of(pg.id))
    pg.total_units = sum(i.expected_quantity or 0 for i in items)
    pg.total_weight = sum(resolver.grams_per_unit(i.asin) * _boxed_total(i) for i in items)


def recalculate_shipment_totals(shipment: Shipment, resolver: AsinWeightResolver) -> None:
    pg_ids = db.session.scalars(
        db.select(PackGroup.id).where(PackGroup.shipment_id == shipment.id)
    ).all()
    items: List[PackGroupItem] = []
    if pg_ids:
        items = db.session.scalars(
            db.select(PackGroupItem).where(PackGroupItem.pack_group_id.in_(pg_ids))
        ).all()
    resolver.prime(i.asin for i in items)
    shipment.total_asins = len({i.asin for i in items})
    shipment.total_units = sum(i.expected_quantity or 0 for i in items)
    shipment.total_weight = sum(resolver.grams_per_unit(i.asin) * _boxed_total(i) for i in items)


def refresh_totals(user_id: int, pack_groups: Iterable[PackGroup]) -> Tuple[List[str], List[str]]:
    """Recompute boxes, the given pack groups and their shipments. Caller commits."""
    resolver = AsinWeightResolver(user_id)
    pg_ids, shipments = [], {}
    db.session.flush()
    for pg in pack_groups:
        recalculate_box_totals(pg.id)
        recalculate_pack_group_totals(pg, resolver)
        pg_ids.append(pg.id)
        shipments.setdefault(pg.shipment_id, pg.shipment)
    for shipment in shipments.values():
        recalculate_shipment_totals(shipment, resolver)
    return pg_ids, list(shipments)


# -------------------------------------------
# batch persistence
# -------------------------------------------
def save_item_quantities(user_id: int, updates: List[Tuple[str, Dict[str, int]]]) -> SaveResult:
    """Persist complete boxed-quantity maps (full replace per item) and refresh totals.

    Everything runs in one transaction; on a database failure it is rolled
    back and AllocationSaveError is raised.
    """
    if not updates:
        return SaveResult()

    ids = [item_id for item_id, _ in updates]
    items = {
        i.id: i for i in db.session.scalars(
            db.select(PackGroupItem).where(PackGroupItem.id.in_(ids), PackGroupItem.user_id == user_id)
        ).all()
    }
    missing = [item_id for item_id in ids if item_id not in items]
    if missing:
        raise AllocationError(f"unknown pack group item(s): {', '.join(missing)}")

    try:
        touched: Dict[str, PackGroup] = {}
        for item_id, full_map in updates:
            item = items[item_id]
            # new dict instance so the JSON column is always flagged dirty
            item.boxed_quantities = {str(k): max(0, int(v)) for k, v in full_map.items()}
            touched.setdefault(item.pack_group_id, item.pack_group)
        pg_ids, shipment_ids = refresh_totals(user_id, touched.values())
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.exception("Quantity save rolled back (%d item(s))", len(updates))
        raise AllocationSaveError("Failed to save changes", pending_items=len(updates)) from e

    logger.info("Saved boxed quantities for %d item(s) across %d pack group(s)",
                len(updates), len(pg_ids))
    return SaveResult(items_updated=len(updates), pack_group_ids=pg_ids, shipment_ids=shipment_ids)


# -------------------------------------------
# session with pending overlay
# -------------------------------------------
class AllocationSession:
    """Review-then-save editing of one shipment's boxed quantities.

    Edits go into ``pending`` (item id -> box id -> units) and only reach the
    database on ``save()``. A failed save leaves ``pending`` untouched so the
    caller can retry.
    """

    def __init__(self, user_id: int, shipment_id: str):
        self.user_id = user_id
        self.shipment_id = shipment_id
        self.pending: Overlay = {}
        shipment = get_shipment(user_id, shipment_id)
        if shipment is None:
            raise AllocationError(f"shipment {shipment_id} not found")
        self._shipment = shipment
        self._item_groups = {i.id: pg.id for pg in shipment.pack_groups for i in pg.items}
        self._box_groups = {b.id: pg.id for pg in shipment.pack_groups for b in pg.boxes}

    @property
    def has_pending_changes(self) -> bool:
        return bool(self.pending)

    def _check_cell(self, item_id: str, box_id: str) -> None:
        pg_id = self._item_groups.get(item_id)
        if pg_id is None:
            raise AllocationError(f"item {item_id} is not part of this shipment")
        if self._box_groups.get(box_id) != pg_id:
            raise AllocationError(f"box {box_id} does not belong to the item's pack group")

    def set_quantity(self, item_id: str, box_id: str, quantity) -> int:
        self._check_cell(item_id, box_id)
        qty = parse_quantity(quantity)
        self.pending.setdefault(item_id, {})[box_id] = qty
        return qty

    def apply(self, changes: Dict[str, Dict[str, object]]) -> int:
        """Apply a batch of edits; all are checked before any reaches the overlay."""
        cells = []
        for item_id, boxes in (changes or {}).items():
            if not isinstance(boxes, dict):
                raise AllocationError(f"changes for item {item_id} must be a box -> quantity map")
            for box_id, qty in boxes.items():
                self._check_cell(item_id, box_id)
                cells.append((item_id, box_id, qty))
        for item_id, box_id, qty in cells:
            self.set_quantity(item_id, box_id, qty)
        return len(cells)

    def discard(self) -> None:
        self.pending = {}

    def view(self, dirty: bool = True) -> ShipmentView:
        return build_shipment_view(self._shipment, self.pending if dirty else None)

    def desired_maps(self) -> List[Tuple[str, Dict[str, int]]]:
        """Committed map merged with pending values, per changed item."""
        committed = {i.id: i for pg in self._shipment.pack_groups for i in pg.items}
        out = []
        for item_id, boxes in self.pending.items():
            merged = normalize_boxed(committed[item_id].boxed_quantities)
            merged.update(boxes)
            out.append((item_id, merged))
        return out

    def save(self) -> SaveResult:
        if not self.pending:
            return SaveResult()
        result = save_item_quantities(self.user_id, self.desired_maps())
        self.pending = {}
        return result
