"""
Allocation model: read-only views over Shipment -> PackGroup -> Box/Item.

Derived values (boxed totals, remaining, weights) are computed here from the
persisted rows, optionally with a pending-edit overlay applied, and are never
read back from the stored aggregate columns.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..models import db, Shipment, PackGroup, PackGroupItem, Asin
from .weights import AsinWeightResolver, weight_in_grams

# item id -> {box id -> units}
Overlay = Dict[str, Dict[str, int]]


def _num(x) -> Optional[float]:
    return float(x) if x is not None else None


def normalize_boxed(mapping) -> Dict[str, int]:
    """Copy a stored boxed_quantities map with int values."""
    return {str(k): int(v) for k, v in (mapping or {}).items() if v is not None}


@dataclass
class ItemView:
    id: str
    pack_group_id: str
    asin: str
    sku: str
    title: str
    prep_type: str
    expected_quantity: int
    order_index: int
    boxed_quantities: Dict[str, int]
    unit_weight_g: float = 0.0
    asin_details: Optional[Asin] = None
    dirty: bool = False

    @property
    def fnsku(self) -> str:
        return (self.asin_details.fnsku or "") if self.asin_details is not None else ""

    @property
    def total_boxed(self) -> int:
        return sum(self.boxed_quantities.values())

    @property
    def remaining(self) -> int:
        # signed: negative means over-allocated
        return self.expected_quantity - self.total_boxed

    @property
    def total_weight(self) -> float:
        return self.unit_weight_g * self.total_boxed

    @property
    def status(self) -> str:
        if self.remaining == 0:
            return "complete"
        if self.remaining < 0:
            return "over"
        return "partial" if self.total_boxed > 0 else "empty"

    def quantity_in(self, box_id: str) -> int:
        return self.boxed_quantities.get(box_id, 0)


@dataclass
class BoxView:
    id: str
    pack_group_id: str
    name: str
    position: int
    weight: Optional[float]
    width: Optional[float]
    length: Optional[float]
    height: Optional[float]
    total_units: int = 0
    content_weight: float = 0.0     # grams of product inside


@dataclass
class PackGroupView:
    id: str
    shipment_id: str
    name: str
    position: int
    boxes: List[BoxView] = field(default_factory=list)
    items: List[ItemView] = field(default_factory=list)

    @property
    def total_boxes(self) -> int:
        return len(self.boxes)

    @property
    def total_units(self) -> int:
        return sum(i.expected_quantity for i in self.items)

    @property
    def total_boxed(self) -> int:
        return sum(i.total_boxed for i in self.items)

    @property
    def total_weight(self) -> float:
        return sum(i.total_weight for i in self.items)

    def box(self, box_id: str) -> Optional[BoxView]:
        return next((b for b in self.boxes if b.id == box_id), None)


@dataclass
class ShipmentView:
    id: str
    name: str
    pack_groups: List[PackGroupView] = field(default_factory=list)

    @property
    def items(self) -> List[ItemView]:
        return [i for pg in self.pack_groups for i in pg.items]

    @property
    def total_asins(self) -> int:
        return len({i.asin for i in self.items})

    @property
    def total_units(self) -> int:
        return sum(pg.total_units for pg in self.pack_groups)

    @property
    def total_weight(self) -> float:
        return sum(pg.total_weight for pg in self.pack_groups)

    @property
    def has_pending_changes(self) -> bool:
        return any(i.dirty for i in self.items)

    def find_item(self, item_id: str):
        for pg in self.pack_groups:
            for item in pg.items:
                if item.id == item_id:
                    return pg, item
        return None, None


# -------------------------------------------
# builders
# -------------------------------------------
def build_item_view(item: PackGroupItem, resolver: AsinWeightResolver,
                    pending: Optional[Dict[str, int]] = None) -> ItemView:
    boxed = normalize_boxed(item.boxed_quantities)
    if pending:
        boxed.update(pending)
    asin = resolver.asin(item.asin)
    return ItemView(
        id=item.id,
        pack_group_id=item.pack_group_id,
        asin=item.asin,
        sku=item.sku or "",
        title=item.title or "",
        prep_type=item.prep_type or "None",
        expected_quantity=item.expected_quantity or 0,
        order_index=item.order_index,
        boxed_quantities=boxed,
        unit_weight_g=weight_in_grams(asin),
        asin_details=asin,
        dirty=bool(pending),
    )


def build_pack_group_view(pg: PackGroup, resolver: AsinWeightResolver,
                          overlay: Optional[Overlay] = None) -> PackGroupView:
    overlay = overlay or {}
    items = [build_item_view(i, resolver, overlay.get(i.id))
             for i in sorted(pg.items, key=lambda i: i.order_index)]
    boxes = []
    for b in sorted(pg.boxes, key=lambda b: (b.position, b.name)):
        boxes.append(BoxView(
            id=b.id,
            pack_group_id=b.pack_group_id,
            name=b.name,
            position=b.position,
            weight=_num(b.weight),
            width=_num(b.width),
            length=_num(b.length),
            height=_num(b.height),
            total_units=sum(i.quantity_in(b.id) for i in items),
            content_weight=sum(i.unit_weight_g * i.quantity_in(b.id) for i in items),
        ))
    return PackGroupView(
        id=pg.id,
        shipment_id=pg.shipment_id,
        name=pg.name,
        position=pg.position,
        boxes=boxes,
        items=items,
    )


def build_shipment_view(shipment: Shipment, overlay: Optional[Overlay] = None) -> ShipmentView:
    resolver = AsinWeightResolver(shipment.user_id)
    resolver.prime(i.asin for pg in shipment.pack_groups for i in pg.items)
    return ShipmentView(
        id=shipment.id,
        name=shipment.name,
        pack_groups=[build_pack_group_view(pg, resolver, overlay)
                     for pg in sorted(shipment.pack_groups, key=lambda p: (p.position, p.name))],
    )


def get_shipment(user_id: int, shipment_id: str) -> Optional[Shipment]:
    """Persisted shipment owned by the user, or None."""
    return db.session.scalar(
        db.select(Shipment).where(Shipment.id == shipment_id, Shipment.user_id == user_id)
    )


def load_shipment_view(user_id: int, shipment_id: str,
                       overlay: Optional[Overlay] = None) -> Optional[ShipmentView]:
    shipment = get_shipment(user_id, shipment_id)
    if shipment is None:
        return None
    return build_shipment_view(shipment, overlay)
