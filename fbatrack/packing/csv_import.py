"""
Import of Amazon "Pack Group" CSV files into shipments.

A pack group file looks roughly like::

    Pack group:,1
    Total box count:,2
    ...
    SKU,Product title,ASIN,FNSKU,Prep type,...,Expected quantity
    SKU-1,Thing,B000000001,X00001,None,...,10
    ...
    Name of box,Box weight (kg):,...

Every file in a request is parsed before anything is written, and all pack
groups of one request are created in a single transaction.
"""
import csv
import io
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

from ..errors import PackGroupCsvError
from ..models import db, Shipment, PackGroup, Box, PackGroupItem
from .engine import refresh_totals
from .model import get_shipment
from .weights import AsinWeightResolver, update_asin

logger = logging.getLogger(__name__)

DEFAULT_PACK_GROUP = "Pack Group 1"
_FILENAME_GROUP = re.compile(r"Pack Group[^\d]*(\d+)", re.I)
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_BOX_DETAIL_MARKERS = (
    "Name of box",
    "Box weight",
    "Box width",
    "Box length",
    "Box height",
    "Provide the box details",
)


@dataclass
class CsvUpload:
    filename: str
    content: Union[str, bytes]
    mimetype: str = ""

    def text(self) -> str:
        if isinstance(self.content, bytes):
            return self.content.decode("utf-8-sig", errors="replace")
        return self.content.lstrip("\ufeff")


@dataclass
class ParsedItem:
    sku: str
    title: str
    asin: str
    fnsku: str
    prep_type: str
    expected_quantity: int
    order_index: int


@dataclass
class ParsedPackGroup:
    name: str
    box_count: int
    items: List[ParsedItem] = field(default_factory=list)


@dataclass
class ImportResult:
    shipment_id: str
    pack_group_ids: List[str] = field(default_factory=list)
    boxes_created: int = 0
    items_created: int = 0
    fnsku_updates: int = 0


def _leading_int(text: str) -> Optional[int]:
    m = _LEADING_INT.match(text or "")
    return int(m.group(1)) if m else None


def _clean(cell: str) -> str:
    return (cell or "").replace('"', "").strip()


# -------------------------------------------
# parsing (pure)
# -------------------------------------------
def is_valid_pack_group_csv(filename: str, mimetype: str = "") -> bool:
    return (filename or "").lower().endswith(".csv") or (mimetype or "").split(";")[0].strip() == "text/csv"


def _rows(content: str) -> List[List[str]]:
    rows = []
    for row in csv.reader(io.StringIO(content)):
        if any(c.strip() for c in row):
            rows.append(row)
    return rows


def _pack_group_name(rows: List[List[str]], filename: str) -> str:
    for row in rows:
        if row and "Pack group:" in row[0] and len(row) > 1 and row[1].strip():
            return f"Pack Group {row[1].strip()}"
    if "Pack Group" in (filename or ""):
        m = _FILENAME_GROUP.search(filename)
        if m:
            return f"Pack Group {m.group(1)}"
    return DEFAULT_PACK_GROUP


def _box_count(rows: List[List[str]]) -> int:
    for row in rows:
        if any("Total box count" in c for c in row):
            for cell in row:
                n = _leading_int(cell)
                if n is not None and n > 0:
                    return n
    return 1


def _header_index(rows: List[List[str]]) -> int:
    for i, row in enumerate(rows):
        text = " ".join(row).lower()
        if "sku" in text and "asin" in text and "expected quantity" in text:
            return i
    return -1


def _find_col(headers: List[str], *needles: str, exclude: str = "") -> int:
    lowered = [h.lower() for h in headers]
    for needle in needles:
        for i, h in enumerate(lowered):
            if needle in h and not (exclude and exclude in h):
                return i
    return -1


def parse_pack_group_csv(content: str, filename: str) -> ParsedPackGroup:
    """Parse one pack group file; raises PackGroupCsvError on unusable input."""
    rows = _rows(content or "")
    if not rows:
        raise PackGroupCsvError("Failed to read file")

    hdr = _header_index(rows)
    if hdr < 0:
        raise PackGroupCsvError("Could not find header row in CSV file")

    headers = rows[hdr]
    sku_i = _find_col(headers, "sku", exclude="fnsku")
    asin_i = _find_col(headers, "asin")
    qty_i = _find_col(headers, "expected quantity", "expected")
    title_i = _find_col(headers, "product title", "title")
    fnsku_i = _find_col(headers, "fnsku")
    prep_i = _find_col(headers, "prep type", "prep")
    if min(sku_i, asin_i, qty_i) < 0:
        raise PackGroupCsvError("Required columns (SKU, ASIN, Expected quantity) not found in CSV")

    def cell(row, i):
        return _clean(row[i]) if 0 <= i < len(row) else ""

    items: List[ParsedItem] = []
    needed = max(sku_i, asin_i, qty_i)
    for row in rows[hdr + 1:]:
        if len(row) <= needed or not row[sku_i].strip() or not row[asin_i].strip():
            continue
        first = row[0]
        if not first.strip() or any(m in first for m in _BOX_DETAIL_MARKERS):
            continue
        expected = _leading_int(row[qty_i]) or 0
        if expected <= 0:
            continue
        items.append(ParsedItem(
            sku=cell(row, sku_i),
            title=cell(row, title_i),
            asin=cell(row, asin_i),
            fnsku=cell(row, fnsku_i),
            prep_type=cell(row, prep_i) or "None",
            expected_quantity=expected,
            order_index=len(items),
        ))

    if not items:
        raise PackGroupCsvError("No valid items found in CSV file")

    return ParsedPackGroup(name=_pack_group_name(rows, filename), box_count=_box_count(rows), items=items)


def parse_uploads(files: Iterable[CsvUpload]) -> List[ParsedPackGroup]:
    """Type-check every upload, then parse all of them. Nothing is written."""
    files = list(files)
    if not files:
        raise PackGroupCsvError("Please select at least one CSV file")
    bad = [f.filename for f in files if not is_valid_pack_group_csv(f.filename, f.mimetype)]
    if bad:
        raise PackGroupCsvError(f"Please select only CSV files ({', '.join(bad)})")

    parsed = []
    for f in files:
        try:
            parsed.append(parse_pack_group_csv(f.text(), f.filename))
        except PackGroupCsvError as e:
            logger.warning("Pack group CSV rejected: %s (%s)", f.filename, e)
            raise PackGroupCsvError(f"Failed to parse {f.filename}: {e}") from e
    return parsed


# -------------------------------------------
# box naming
# -------------------------------------------
def box_name_prefix(pack_group_name: str) -> str:
    return (pack_group_name or "").replace("Pack Group ", "P")


def box_name(prefix: str, n: int) -> str:
    return f"{prefix}-B{n}"


def next_box_name(pack_group: PackGroup) -> str:
    """``{prefix}-B{k}`` with k one past the highest number already in use."""
    prefix = box_name_prefix(pack_group.name)
    numbered = re.compile(rf"^{re.escape(prefix)}-B(\d+)$")
    taken = [int(m.group(1)) for m in (numbered.match(b.name or "") for b in pack_group.boxes) if m]
    return box_name(prefix, max(taken, default=0) + 1)


# -------------------------------------------
# persistence
# -------------------------------------------
def _add_pack_group(user_id: int, shipment: Shipment, parsed: ParsedPackGroup,
                    position: int, resolver: AsinWeightResolver, result: ImportResult) -> PackGroup:
    pg = PackGroup(user_id=user_id, shipment=shipment, name=parsed.name, position=position)
    db.session.add(pg)

    prefix = box_name_prefix(parsed.name)
    for n in range(1, parsed.box_count + 1):
        pg.boxes.append(Box(user_id=user_id, name=box_name(prefix, n), position=n - 1))
    result.boxes_created += parsed.box_count

    resolver.prime(it.asin for it in parsed.items)
    for it in parsed.items:
        pg.items.append(PackGroupItem(
            user_id=user_id,
            asin=it.asin,
            sku=it.sku,
            title=it.title,
            prep_type=it.prep_type,
            expected_quantity=it.expected_quantity,
            boxed_quantities={},
            order_index=it.order_index,
        ))
        asin = resolver.asin(it.asin)
        if it.fnsku and asin is not None and asin.fnsku != it.fnsku:
            update_asin(asin, fnsku=it.fnsku)
            result.fnsku_updates += 1
    result.items_created += len(parsed.items)
    return pg


def _persist(user_id: int, shipment: Shipment, parsed: List[ParsedPackGroup], start: int) -> ImportResult:
    resolver = AsinWeightResolver(user_id)
    try:
        db.session.flush()
        result = ImportResult(shipment_id=shipment.id)
        groups = [
            _add_pack_group(user_id, shipment, p, start + k, resolver, result)
            for k, p in enumerate(parsed)
        ]
        refresh_totals(user_id, groups)
        result.pack_group_ids = [g.id for g in groups]
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Pack group import rolled back for shipment %r", shipment.name)
        raise
    return result


def import_pack_group_csvs(user_id: int, shipment_name: str, files: Iterable[CsvUpload]) -> ImportResult:
    """Create a shipment with one pack group per file."""
    name = (shipment_name or "").strip()
    if not name:
        raise PackGroupCsvError("Shipment name is required")
    parsed = parse_uploads(files)

    shipment = Shipment(user_id=user_id, name=name)
    db.session.add(shipment)
    result = _persist(user_id, shipment, parsed, start=0)
    logger.info("Imported shipment %s with %d pack group(s), %d item(s)",
                result.shipment_id, len(result.pack_group_ids), result.items_created)
    return result


def import_into_shipment(user_id: int, shipment_id: str, files: Iterable[CsvUpload]) -> Optional[ImportResult]:
    """Append pack groups to an existing shipment; None when it does not exist."""
    shipment = get_shipment(user_id, shipment_id)
    if shipment is None:
        return None
    parsed = parse_uploads(files)
    start = max((pg.position for pg in shipment.pack_groups), default=-1) + 1
    result = _persist(user_id, shipment, parsed, start=start)
    logger.info("Added %d pack group(s) to shipment %s", len(result.pack_group_ids), shipment_id)
    return result
