"""
Expense backup export.

Archive layout::

    Order Log/purchase-order-log-{date}.pdf
    Order Log/{SHORTID}/{SHORTID}-001.pdf
    General Log/general-ledger-{date}.pdf
    General Log/{GLID}/{GLID}-001.jpg
    CSV Backups/txn-backup-{date}.csv
    CSV Backups/general-backup-{date}.csv
    CSV Backups/asin-backup-{date}.csv
"""
import io
import logging
import zipfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import selectinload

from ..errors import StorageError
from ..models import db, Asin, GeneralLedgerEntry, Transaction, TransactionItem
from .csvio import format_number, rows_to_csv
from .reports import build_general_ledger_pdf, build_order_log_pdf

logger = logging.getLogger(__name__)

ORDER_LOG_DIR = "Order Log"
GENERAL_LOG_DIR = "General Log"
CSV_DIR = "CSV Backups"

TXN_HEADERS = ["TXN ID", "Ordered Date", "Delivery Date", "Supplier Name", "PO Number",
               "Category", "Payment Method", "Status", "Shipping Cost", "Notes",
               "ASIN", "Quantity", "Buy Price", "Sell Price", "Est Fees"]
GL_HEADERS = ["GL ID", "Date", "Category", "Reference", "Type", "Amount", "Status",
              "Payment Method", "Director Name", "TXN/PO", "Notes"]
ASIN_HEADERS = ["ASIN", "Image URL", "Title", "Type", "Size", "Brand", "Category",
                "Weight", "Weight Unit", "FNSKU"]


def _f(x) -> float:
    return float(x) if x is not None else 0.0


def short_id(record_id: str) -> str:
    return (record_id or "")[:8].upper()


def ledger_short_id(entry: GeneralLedgerEntry) -> str:
    ref = (entry.reference or "").strip()
    return ref if ref.upper().startswith("GL-") else short_id(entry.id)


def receipt_extension(name: str) -> str:
    return name.rsplit(".", 1)[-1].lower() if "." in name else "bin"


# -------------------------------------------
# report rows
# -------------------------------------------
@dataclass
class ItemWithDetails:
    transaction_id: str
    asin: str
    quantity: int
    buy_price: float
    sell_price: float
    est_fees: float
    asin_details: Optional[Asin] = None

    @property
    def cog(self) -> float:
        return self.buy_price * self.quantity

    @property
    def fees(self) -> float:
        return self.est_fees * self.quantity

    @property
    def revenue(self) -> float:
        return self.sell_price * self.quantity


@dataclass
class TransactionReport:
    transaction: Transaction
    items: List[ItemWithDetails] = field(default_factory=list)
    receipts: List[str] = field(default_factory=list)    # archive file names

    @property
    def short_id(self) -> str:
        return short_id(self.transaction.id)

    @property
    def supplier_name(self) -> str:
        s = self.transaction.supplier
        return s.name if s is not None else ""

    @property
    def shipping(self) -> float:
        return _f(self.transaction.shipping_cost)

    @property
    def cog(self) -> float:
        return sum(i.cog for i in self.items)

    @property
    def fees(self) -> float:
        return sum(i.fees for i in self.items)

    @property
    def total_cost(self) -> float:
        return self.cog + self.shipping

    @property
    def revenue(self) -> float:
        return sum(i.revenue for i in self.items)

    @property
    def profit(self) -> float:
        return self.revenue - self.total_cost - self.fees

    @property
    def roi(self) -> float:
        return (self.profit / self.cog * 100) if self.cog > 0 else 0.0


@dataclass
class LedgerReport:
    entry: GeneralLedgerEntry
    receipts: List[str] = field(default_factory=list)

    @property
    def short_id(self) -> str:
        return ledger_short_id(self.entry)

    @property
    def amount(self) -> float:
        return _f(self.entry.amount)


@dataclass
class BackupArchive:
    filename: str
    content: bytes
    counts: Dict[str, int] = field(default_factory=dict)


def join_items_to_asins(items: Iterable[TransactionItem], asins: Iterable[Asin]) -> List[ItemWithDetails]:
    """Attach catalog details to line items by ASIN code."""
    by_code = {a.asin: a for a in asins}
    return [
        ItemWithDetails(
            transaction_id=i.transaction_id,
            asin=i.asin,
            quantity=i.quantity or 0,
            buy_price=_f(i.buy_price),
            sell_price=_f(i.sell_price),
            est_fees=_f(i.est_fees),
            asin_details=by_code.get(i.asin),
        )
        for i in items
    ]


# -------------------------------------------
# CSV sections
# -------------------------------------------
def transactions_csv(reports: List[TransactionReport]) -> str:
    rows = []
    for r in reports:
        t = r.transaction
        head = [r.short_id, t.ordered_date, t.delivery_date, r.supplier_name, t.po_number,
                t.category, t.payment_method, t.status]
        if not r.items:
            rows.append(head + [format_number(r.shipping), t.notes, "", "", "", "", ""])
            continue
        for n, it in enumerate(r.items):
            # shipping only on the first line so a restore can sum it back
            shipping = format_number(r.shipping if n == 0 else 0)
            rows.append(head + [shipping, t.notes, it.asin, it.quantity, format_number(it.buy_price),
                                format_number(it.sell_price), format_number(it.est_fees)])
    return rows_to_csv(TXN_HEADERS, rows)


def ledger_csv(entries: List[LedgerReport]) -> str:
    rows = []
    for e in entries:
        g = e.entry
        rows.append([e.short_id, g.date, g.category, g.reference, g.type, format_number(e.amount),
                     g.status, g.payment_method, g.director_name, g.txn_po, g.notes])
    return rows_to_csv(GL_HEADERS, rows)


def asins_csv(asins: List[Asin]) -> str:
    rows = [[a.asin, a.image_url, a.title, a.type, a.pack, a.brand, a.category,
             format_number(a.weight), a.weight_unit, a.fnsku] for a in asins]
    return rows_to_csv(ASIN_HEADERS, rows)


# -------------------------------------------
# receipts
# -------------------------------------------
def assign_receipts(names: List[str], records: List[Tuple[str, str, str]]) -> Dict[str, str]:
    """Map storage name -> archive path.

    ``records`` holds ``(record_id, short_id, folder)``; a receipt belongs to
    the record whose full id its storage name starts with.
    """
    ordered = sorted(names)
    out: Dict[str, str] = {}
    for record_id, sid, folder in records:
        matches = [n for n in ordered if n.startswith(record_id) and n not in out]
        for k, name in enumerate(matches, start=1):
            out[name] = f"{folder}/{sid}/{sid}-{k:03d}.{receipt_extension(name)}"
    return out


def _archived_names(paths: Iterable[str], folder: str, sid: str) -> List[str]:
    prefix = f"{folder}/{sid}/"
    return sorted(p[len(prefix):] for p in paths if p.startswith(prefix))


def _download_all(store, user_id, names: List[str], workers: int) -> Dict[str, bytes]:
    def fetch(name):
        try:
            return name, store.download(user_id, name)
        except StorageError as e:
            logger.warning("Receipt %s skipped: %s", name, e)
            return name, None

    if not names:
        return {}
    with ThreadPoolExecutor(max_workers=max(1, workers)) as ex:
        results = list(ex.map(fetch, names))
    return {name: blob for name, blob in results if blob is not None}


# -------------------------------------------
# entry point
# -------------------------------------------
def generate_expense_report_backup(user_id: int, store, today: Optional[date] = None,
                                   workers: int = 4) -> BackupArchive:
    today = today or date.today()
    stamp = today.isoformat()

    transactions = db.session.scalars(
        db.select(Transaction)
        .options(selectinload(Transaction.supplier), selectinload(Transaction.items))
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.ordered_date.asc(), Transaction.created_at.asc())
    ).all()
    asins = db.session.scalars(
        db.select(Asin).where(Asin.user_id == user_id).order_by(Asin.asin)
    ).all()
    entries = db.session.scalars(
        db.select(GeneralLedgerEntry)
        .where(GeneralLedgerEntry.user_id == user_id)
        .order_by(GeneralLedgerEntry.date.asc(), GeneralLedgerEntry.created_at.asc())
    ).all()

    joined = join_items_to_asins((i for t in transactions for i in t.items), asins)
    by_txn: Dict[str, List[ItemWithDetails]] = {}
    for it in joined:
        by_txn.setdefault(it.transaction_id, []).append(it)
    reports = [TransactionReport(t, by_txn.get(t.id, [])) for t in transactions]
    ledger = [LedgerReport(e) for e in entries]

    names = store.list_receipts(user_id)
    placement = assign_receipts(
        names,
        [(r.transaction.id, r.short_id, ORDER_LOG_DIR) for r in reports]
        + [(e.entry.id, e.short_id, GENERAL_LOG_DIR) for e in ledger],
    )
    unmatched = [n for n in names if n not in placement]
    if unmatched:
        logger.warning("%d receipt(s) match no record and are left out of the backup", len(unmatched))

    blobs = _download_all(store, user_id, sorted(placement), workers)
    stored = [placement[n] for n in blobs]
    for r in reports:
        r.receipts = _archived_names(stored, ORDER_LOG_DIR, r.short_id)
    for e in ledger:
        e.receipts = _archived_names(stored, GENERAL_LOG_DIR, e.short_id)

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(f"{ORDER_LOG_DIR}/purchase-order-log-{stamp}.pdf", build_order_log_pdf(reports, today))
        zf.writestr(f"{GENERAL_LOG_DIR}/general-ledger-{stamp}.pdf", build_general_ledger_pdf(ledger, today))
        zf.writestr(f"{CSV_DIR}/txn-backup-{stamp}.csv", transactions_csv(reports))
        zf.writestr(f"{CSV_DIR}/general-backup-{stamp}.csv", ledger_csv(ledger))
        zf.writestr(f"{CSV_DIR}/asin-backup-{stamp}.csv", asins_csv(asins))
        for name, blob in blobs.items():
            zf.writestr(placement[name], blob)

    counts = {
        "transactions": len(reports),
        "general_ledger": len(ledger),
        "asins": len(asins),
        "receipts": len(blobs),
    }
    logger.info("Built expense backup for user %s: %s", user_id, counts)
    return BackupArchive(filename=f"expense-backup-{stamp}.zip", content=buf.getvalue(), counts=counts)
