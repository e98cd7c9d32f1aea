"""
Seller Central box-content export.

Layout per pack group: name, blank line, ASIN/FNSKU/box quantity grid, blank
line, box detail table. Pack groups are separated by two blank lines.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import List

from ..backup.csvio import csv_line, format_number
from ..errors import ExportValidationError
from .model import PackGroupView, ShipmentView, load_shipment_view

logger = logging.getLogger(__name__)

BOX_DETAILS_HEADER = ["Name of box", "Box weight (kg):", "Box width (cm):",
                      "Box length (cm):", "Box height (cm):"]
BOX_ATTRIBUTES = ("weight", "width", "length", "height")


@dataclass
class ExportValidation:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


def _pack_group_block(pg: PackGroupView) -> List[str]:
    lines = [csv_line([pg.name]), ""]
    lines.append(csv_line(["ASIN", "FNSKU", "Boxed quantity"] + [f"{b.name} quantity" for b in pg.boxes]))
    for item in pg.items:
        lines.append(csv_line(
            [item.asin, item.fnsku, str(item.total_boxed)]
            + [str(item.quantity_in(b.id)) for b in pg.boxes]
        ))
    lines.append("")
    lines.append(csv_line(BOX_DETAILS_HEADER))
    for b in pg.boxes:
        lines.append(csv_line([b.name] + [format_number(getattr(b, a)) for a in BOX_ATTRIBUTES]))
    return lines


def generate_shipment_export_csv(view: ShipmentView) -> str:
    out = ""
    for idx, pg in enumerate(view.pack_groups):
        if idx:
            out += "\n\n"
        out += "\n".join(_pack_group_block(pg)) + "\n"
    return out


def validate_shipment_for_export(view: ShipmentView) -> ExportValidation:
    """Collect every problem that would make the upload fail."""
    if not view.pack_groups:
        return ExportValidation(False, ["Shipment has no pack groups"])

    errors: List[str] = []
    for pg in view.pack_groups:
        if not pg.items:
            errors.append(f"{pg.name}: has no items")
        if not pg.boxes:
            errors.append(f"{pg.name}: has no boxes")
        for item in pg.items:
            if item.remaining > 0:
                errors.append(f"{pg.name}: {item.asin} has {item.remaining} units not allocated to boxes")
            elif item.remaining < 0:
                over = -item.remaining
                errors.append(f"{pg.name}: {item.asin} has been over-allocated by {over} units (remaining -{over})")
        for b in pg.boxes:
            for attr in BOX_ATTRIBUTES:
                value = getattr(b, attr)
                if value is None or value <= 0:
                    errors.append(f"{pg.name}: {b.name} is missing {attr}")
    return ExportValidation(not errors, errors)


def export_filename(shipment_name: str) -> str:
    return re.sub(r"[^a-z0-9]", "_", (shipment_name or "").lower()) + "_export.csv"


def export_shipment(user_id: int, shipment_id: str):
    """Returns ``(filename, csv_text)``, or None if the shipment does not exist."""
    view = load_shipment_view(user_id, shipment_id)
    if view is None:
        return None
    result = validate_shipment_for_export(view)
    if not result.is_valid:
        logger.info("Export blocked for shipment %s: %d problem(s)", shipment_id, len(result.errors))
        raise ExportValidationError(result.errors)
    return export_filename(view.name), generate_shipment_export_csv(view)
