"""CSV helpers shared by the shipment export and the expense backup."""
import csv
import io
import re
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

_NEEDS_QUOTES = re.compile(r'[",\r\n]')
_SPACES = re.compile(r"[\s_]+")

# canonical column -> accepted header spellings
TRANSACTION_COLUMNS: Dict[str, Sequence[str]] = {
    "txn_id":         ("txn id", "transaction id", "id"),
    "ordered_date":   ("ordered date", "order date"),
    "delivery_date":  ("delivery date", "delivered date"),
    "supplier_name":  ("supplier name", "supplier"),
    "po_number":      ("po number", "purchase order", "po"),
    "category":       ("category",),
    "payment_method": ("payment method", "payment"),
    "status":         ("status",),
    "shipping_cost":  ("shipping cost", "shipping"),
    "notes":          ("notes", "note"),
    "asin":           ("asin",),
    "quantity":       ("quantity", "qty"),
    "buy_price":      ("buy price", "cost", "cog"),
    "sell_price":     ("sell price", "selling price"),
    "est_fees":       ("est fees", "estimated fees", "fees"),
}
TRANSACTION_REQUIRED = ("supplier_name", "ordered_date", "asin", "quantity")

LEDGER_COLUMNS: Dict[str, Sequence[str]] = {
    "gl_id":          ("gl id", "id"),
    "date":           ("date",),
    "category":       ("category",),
    "reference":      ("reference", "ref"),
    "type":           ("type",),
    "amount":         ("amount",),
    "status":         ("status",),
    "payment_method": ("payment method", "payment"),
    "director_name":  ("director name", "director"),
    "txn_po":         ("txn/po", "txn po", "po"),
    "notes":          ("notes", "note"),
}
LEDGER_REQUIRED = ("date", "category", "type", "amount")

ASIN_COLUMNS: Dict[str, Sequence[str]] = {
    "asin":        ("asin",),
    "image_url":   ("image url", "imageurl", "image"),
    "title":       ("title",),
    "type":        ("type",),
    "size":        ("size", "pack"),
    "brand":       ("brand",),
    "category":    ("category",),
    "weight":      ("weight", "weight g", "product weight"),
    "weight_unit": ("weight unit", "unit"),
    "fnsku":       ("fnsku", "fulfillment network sku"),
}
ASIN_REQUIRED = ("asin",)


# -------------------------------------------
# writing
# -------------------------------------------
def format_number(value) -> str:
    """Integral values print without a trailing ``.0``; None prints as 0."""
    if value is None or value == "":
        return "0"
    f = float(value)
    return str(int(f)) if f.is_integer() else repr(f)


def escape_field(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    text = str(value)
    if _NEEDS_QUOTES.search(text):
        return '"' + text.replace('"', '""') + '"'
    return text


def csv_line(fields: Iterable) -> str:
    return ",".join(escape_field(f) for f in fields)


def rows_to_csv(headers: Sequence[str], rows: Iterable[Sequence]) -> str:
    lines = [csv_line(headers)]
    lines.extend(csv_line(r) for r in rows)
    return "\n".join(lines) + "\n"


# -------------------------------------------
# reading
# -------------------------------------------
def normalize_header(h: str) -> str:
    return _SPACES.sub(" ", (h or "").replace('"', "").strip().lower())


def resolve_columns(headers: Sequence[str], columns: Dict[str, Sequence[str]]) -> Dict[str, int]:
    """Map canonical column names to indexes; first matching header wins."""
    normalized = [normalize_header(h) for h in headers]
    out: Dict[str, int] = {}
    taken = set()
    for name, spellings in columns.items():
        wanted = {normalize_header(s) for s in spellings} | {normalize_header(name)}
        for i, h in enumerate(normalized):
            if i not in taken and h in wanted:
                out[name] = i
                taken.add(i)
                break
    return out


def read_records(content: str, columns: Dict[str, Sequence[str]],
                 required: Sequence[str]) -> Tuple[List[Dict[str, str]], List[str]]:
    """Parse CSV text into dicts keyed by canonical column.

    Returns ``(records, missing_required_columns)``; when columns are missing
    no records are returned.
    """
    reader = csv.reader(io.StringIO((content or "").lstrip("\ufeff")))
    rows = [r for r in reader if any(c.strip() for c in r)]
    if not rows:
        return [], list(required)
    index = resolve_columns(rows[0], columns)
    missing = [c for c in required if c not in index]
    if missing:
        return [], missing
    records = []
    for row in rows[1:]:
        records.append({
            name: (row[i].strip() if i < len(row) else "")
            for name, i in index.items()
        })
    return records, []


def parse_number(text, default: float = 0.0) -> float:
    cleaned = re.sub(r"[$,\s]", "", str(text or ""))
    if not cleaned:
        return default
    try:
        return float(cleaned)
    except ValueError:
        return default


def parse_int(text, default: int = 0) -> int:
    m = re.match(r"^\s*([+-]?\d+)", re.sub(r"[,\s]", "", str(text or "")))
    return int(m.group(1)) if m else default


def parse_date(text) -> Optional[date]:
    """ISO ``YYYY-MM-DD`` or US ``MM/DD/YYYY``; None when blank or unreadable."""
    text = (text or "").strip()
    if not text:
        return None
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d"):
        try:
            return datetime.strptime(text[:10] if fmt == "%Y-%m-%d" else text, fmt).date()
        except ValueError:
            continue
    return None
