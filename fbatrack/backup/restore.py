"""
Expense backup restore.

Reads an archive produced by :mod:`fbatrack.backup.archive` (or a hand-made
one with the same folders) and merges it into the user's data. Row-level
problems are collected and reported; only an unreadable archive is fatal.
"""
import io
import logging
import re
import time
import uuid
import zipfile
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from ..errors import BackupFormatError, StorageError
from ..models import db, Asin, GeneralLedgerEntry, Supplier, Transaction, TransactionItem
from ..packing.weights import get_asin_by_code
from ..storage import guess_content_type
from .archive import short_id
from .csvio import (
    ASIN_COLUMNS, ASIN_REQUIRED, LEDGER_COLUMNS, LEDGER_REQUIRED,
    TRANSACTION_COLUMNS, TRANSACTION_REQUIRED,
    parse_date, parse_int, parse_number, read_records,
)

logger = logging.getLogger(__name__)

CSV_FOLDER = "csv backups"
ORDER_FOLDER = "order log"
LEDGER_FOLDER = "general log"
GROUP_FIELDS = ("supplier_name", "ordered_date", "delivery_date", "category", "payment_method", "status")
_SHORT_HEX = re.compile(r"^[0-9a-f]{8}$")
_FULL_UUID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")


@dataclass
class RestoreResult:
    transactions: int = 0
    general_ledger: int = 0
    asins: int = 0
    receipts: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def message(self) -> str:
        msg = (f"Restored {self.transactions} transaction(s), {self.general_ledger} ledger entr"
               f"{'y' if self.general_ledger == 1 else 'ies'}, {self.asins} ASIN(s) "
               f"and {self.receipts} receipt(s)")
        if self.errors:
            msg += f" with {len(self.errors)} error(s)"
        return msg

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "counts": {
                "transactions": self.transactions,
                "general_ledger": self.general_ledger,
                "asins": self.asins,
                "receipts": self.receipts,
                "skipped": self.skipped,
            },
            "errors": self.errors,
        }

    def fail(self, message: str, skipped: bool = True):
        logger.warning("Restore: %s", message)
        self.errors.append(message)
        if skipped:
            self.skipped += 1


# -------------------------------------------
# archive navigation
# -------------------------------------------
def _norm(part: str) -> str:
    return part.replace("_", " ").replace("-", " ").strip().lower()


def _locate(path: str, folder: str) -> Optional[List[str]]:
    """Path components after ``folder`` when any directory component matches it."""
    parts = [p for p in path.split("/") if p]
    if "__MACOSX" in parts:
        return None
    for i, p in enumerate(parts[:-1]):
        if _norm(p) == folder:
            return parts[i + 1:]
    return None


def _csv_kind(filename: str) -> Optional[str]:
    name = filename.lower()
    if not name.endswith(".csv"):
        return None
    if name.startswith("txn") or "transaction" in name or "purchase" in name:
        return "transactions"
    if "general" in name or "ledger" in name or name.startswith("gl"):
        return "ledger"
    if "asin" in name:
        return "asins"
    return None


def _id_with_prefix(short: str) -> str:
    """Fresh UUID that keeps a backed-up short id, so receipts land in the same folder again."""
    new = str(uuid.uuid4())
    short = (short or "").lower()
    return short + new[8:] if _SHORT_HEX.match(short) else new


# -------------------------------------------
# lookups (re-run per group; a rollback expires cached rows)
# -------------------------------------------
def _find_supplier(user_id: int, name: str) -> Optional[Supplier]:
    return db.session.scalar(
        db.select(Supplier)
        .where(Supplier.user_id == user_id, sa.func.lower(Supplier.name) == name.strip().lower())
        .limit(1)
    )


def _id_match(column, raw: str):
    """Clause matching a full record id or its 8-hex short id; None for anything else."""
    value = (raw or "").strip().lower()
    if _FULL_UUID.match(value):
        return column == value
    if _SHORT_HEX.match(value):
        return column.startswith(value + "-")
    return None


def _find_transaction(user_id: int, txn_id: str) -> Optional[Transaction]:
    clause = _id_match(Transaction.id, txn_id)
    if clause is None:
        return None
    return db.session.scalar(
        db.select(Transaction).where(Transaction.user_id == user_id, clause).limit(1)
    )


def _find_ledger_entry(user_id: int, gl_id: str) -> Optional[GeneralLedgerEntry]:
    if not gl_id:
        return None
    q = db.select(GeneralLedgerEntry).where(GeneralLedgerEntry.user_id == user_id)
    if gl_id.upper().startswith("GL-"):
        q = q.where(GeneralLedgerEntry.reference == gl_id)
    else:
        clause = _id_match(GeneralLedgerEntry.id, gl_id)
        if clause is None:
            return None
        q = q.where(clause)
    return db.session.scalar(q.limit(1))


def _ensure_asin(user_id: int, code: str, category: str) -> Asin:
    asin = get_asin_by_code(user_id, code)
    if asin is None:
        asin = Asin(user_id=user_id, asin=code, category=category if category in ("Stock", "Other") else "Other")
        db.session.add(asin)
    return asin


# -------------------------------------------
# sections
# -------------------------------------------
def _restore_asins(user_id: int, filename: str, content: str, result: RestoreResult) -> None:
    records, missing = read_records(content, ASIN_COLUMNS, ASIN_REQUIRED)
    if missing:
        result.fail(f"{filename}: Missing required columns: {', '.join(missing)}", skipped=False)
        return
    for rec in records:
        code = rec.get("asin", "").strip()
        if not code:
            continue
        try:
            asin = get_asin_by_code(user_id, code)
            if asin is None:
                asin = Asin(
                    user_id=user_id,
                    asin=code,
                    title=rec.get("title", ""),
                    brand=rec.get("brand", ""),
                    image_url=rec.get("image_url", ""),
                    type=rec.get("type") if rec.get("type") in ("Single", "Bundle") else "Single",
                    pack=max(parse_int(rec.get("size"), 1), 1),
                    category=rec.get("category") if rec.get("category") in ("Stock", "Other") else "Other",
                    weight=max(parse_number(rec.get("weight")), 0),
                    weight_unit=rec.get("weight_unit") if rec.get("weight_unit") in ("g", "kg") else "g",
                    fnsku=rec.get("fnsku") or None,
                )
                db.session.add(asin)
            else:
                if not asin.weight and rec.get("weight"):
                    asin.weight = max(parse_number(rec.get("weight")), 0)
                    if rec.get("weight_unit") in ("g", "kg"):
                        asin.weight_unit = rec["weight_unit"]
                if not asin.fnsku and rec.get("fnsku"):
                    asin.fnsku = rec["fnsku"]
            db.session.commit()
            result.asins += 1
        except SQLAlchemyError as e:
            db.session.rollback()
            result.fail(f"ASIN {code}: {e.__class__.__name__}")


def _group_key(rec: Dict[str, str]) -> str:
    if rec.get("txn_id"):
        return f"txn:{rec['txn_id']}"
    if rec.get("po_number"):
        return f"po:{rec['po_number']}"
    return f"sd:{rec.get('supplier_name', '').lower()}|{rec.get('ordered_date', '')}"


def _restore_transaction_group(user_id: int, key: str, rows: List[Dict[str, str]],
                               id_map: Dict[str, str]) -> Transaction:
    first = rows[0]
    supplier_name = first.get("supplier_name", "").strip()
    if not supplier_name:
        raise ValueError("supplier name is blank")
    ordered = parse_date(first.get("ordered_date"))
    if ordered is None and first.get("ordered_date"):
        raise ValueError(f"unreadable ordered date {first['ordered_date']!r}")

    supplier = _find_supplier(user_id, supplier_name)
    if supplier is None:
        supplier = Supplier(user_id=user_id, name=supplier_name)
        db.session.add(supplier)

    txn_id = first.get("txn_id", "")
    txn = _find_transaction(user_id, txn_id)
    if txn is None:
        txn = Transaction(id=_id_with_prefix(txn_id), user_id=user_id)
        db.session.add(txn)
    else:
        txn.items.clear()

    category = first.get("category") or "Stock"
    txn.supplier = supplier
    txn.ordered_date = ordered
    txn.delivery_date = parse_date(first.get("delivery_date"))
    txn.po_number = first.get("po_number", "")
    txn.category = category
    txn.payment_method = first.get("payment_method") or "AMEX Plat"
    txn.status = first.get("status") or "pending"
    txn.shipping_cost = sum(parse_number(r.get("shipping_cost")) for r in rows)
    txn.notes = first.get("notes", "")

    for r in rows:
        code = r.get("asin", "").strip()
        if not code:
            continue
        _ensure_asin(user_id, code, category)
        txn.items.append(TransactionItem(
            asin=code,
            quantity=max(parse_int(r.get("quantity"), 1), 0),
            buy_price=parse_number(r.get("buy_price")),
            sell_price=parse_number(r.get("sell_price")),
            est_fees=parse_number(r.get("est_fees")),
        ))

    db.session.commit()
    if txn_id:
        id_map[txn_id.upper()] = txn.id
    id_map[short_id(txn.id)] = txn.id
    return txn


def _restore_transactions(user_id: int, filename: str, content: str, result: RestoreResult,
                          id_map: Dict[str, str]) -> None:
    records, missing = read_records(content, TRANSACTION_COLUMNS, TRANSACTION_REQUIRED)
    if missing:
        result.fail(f"{filename}: Missing required columns: {', '.join(missing)}", skipped=False)
        return

    groups: Dict[str, List[Dict[str, str]]] = {}
    for rec in records:
        groups.setdefault(_group_key(rec), []).append(rec)

    for key, rows in groups.items():
        inconsistent = [f for f in GROUP_FIELDS if len({r.get(f, "") for r in rows}) > 1]
        if inconsistent:
            result.fail(f"Group {key}: Inconsistent data in fields: {', '.join(inconsistent)}")
            continue
        try:
            _restore_transaction_group(user_id, key, rows, id_map)
            result.transactions += 1
        except (SQLAlchemyError, ValueError) as e:
            db.session.rollback()
            logger.exception("Transaction group %s rolled back", key)
            result.fail(f"Failed to process transaction group {key}: {e}")


def _restore_ledger(user_id: int, filename: str, content: str, result: RestoreResult,
                    id_map: Dict[str, str]) -> None:
    records, missing = read_records(content, LEDGER_COLUMNS, LEDGER_REQUIRED)
    if missing:
        result.fail(f"{filename}: Missing required columns: {', '.join(missing)}", skipped=False)
        return

    for n, rec in enumerate(records, start=2):
        when = parse_date(rec.get("date"))
        kind = (rec.get("type") or "").strip().capitalize()
        if when is None:
            result.fail(f"{filename} row {n}: invalid date {rec.get('date')!r}")
            continue
        if kind not in ("Income", "Expense"):
            result.fail(f"{filename} row {n}: type must be Income or Expense")
            continue

        gl_id = rec.get("gl_id", "")
        try:
            entry = _find_ledger_entry(user_id, gl_id)
            if entry is None:
                is_ref = gl_id.upper().startswith("GL-")
                entry = GeneralLedgerEntry(
                    id=str(uuid.uuid4()) if is_ref else _id_with_prefix(gl_id),
                    user_id=user_id,
                )
                db.session.add(entry)
            entry.date = when
            entry.category = rec.get("category", "")
            entry.reference = rec.get("reference") or (gl_id if gl_id.upper().startswith("GL-") else "")
            entry.type = kind
            entry.amount = parse_number(rec.get("amount"))
            entry.status = rec.get("status") or "pending"
            entry.payment_method = rec.get("payment_method") or "AMEX Plat"
            entry.director_name = rec.get("director_name") or None
            entry.txn_po = rec.get("txn_po", "")
            entry.notes = rec.get("notes", "")
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            result.fail(f"{filename} row {n}: {e.__class__.__name__}")
            continue

        if gl_id:
            id_map[gl_id.upper()] = entry.id
        id_map[short_id(entry.id)] = entry.id
        result.general_ledger += 1


def _resolve_record(user_id: int, folder: str, sid: str, id_maps) -> Optional[str]:
    txn_ids, gl_ids = id_maps
    if folder == ORDER_FOLDER:
        if sid.upper() in txn_ids:
            return txn_ids[sid.upper()]
        txn = _find_transaction(user_id, sid)
        return txn.id if txn is not None else None
    if sid.upper() in gl_ids:
        return gl_ids[sid.upper()]
    entry = _find_ledger_entry(user_id, sid)
    return entry.id if entry is not None else None


def _restore_receipts(user_id: int, zf: zipfile.ZipFile, store, result: RestoreResult, id_maps) -> None:
    by_folder: Dict[Tuple[str, str], List[str]] = {}
    for member in sorted(zf.namelist()):
        if member.endswith("/"):
            continue
        for folder in (ORDER_FOLDER, LEDGER_FOLDER):
            rest = _locate(member, folder)
            if rest is not None and len(rest) == 2:
                by_folder.setdefault((folder, rest[0]), []).append(member)

    stamp = int(time.time() * 1000)
    for (folder, sid), members in by_folder.items():
        record_id = _resolve_record(user_id, folder, sid, id_maps)
        if record_id is None:
            result.fail(f"No record found for receipt folder {sid}", skipped=False)
            continue
        for member in members:
            filename = member.rsplit("/", 1)[-1]
            ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "bin"
            name = f"{record_id}-{stamp}.{ext}"
            stamp += 1
            try:
                store.upload(user_id, name, zf.read(member), guess_content_type(filename))
                result.receipts += 1
            except StorageError as e:
                result.fail(f"Receipt {filename} could not be uploaded: {e}", skipped=False)


# -------------------------------------------
# entry point
# -------------------------------------------
def import_expense_backup(user_id: int, archive_bytes: bytes, store) -> RestoreResult:
    try:
        zf = zipfile.ZipFile(io.BytesIO(archive_bytes))
    except (zipfile.BadZipFile, ValueError) as e:
        raise BackupFormatError("File is not a ZIP archive") from e

    with zf:
        csvs: Dict[str, List[Tuple[str, str]]] = {"asins": [], "transactions": [], "ledger": []}
        found_csv_folder = False
        for member in zf.namelist():
            rest = _locate(member, CSV_FOLDER)
            if rest is None:
                continue
            found_csv_folder = True
            if member.endswith("/") or len(rest) != 1:
                continue
            kind = _csv_kind(rest[0])
            if kind:
                csvs[kind].append((rest[0], zf.read(member).decode("utf-8-sig", errors="replace")))
        if not found_csv_folder:
            raise BackupFormatError("Backup is missing the CSV Backups folder")

        result = RestoreResult()
        txn_ids: Dict[str, str] = {}
        gl_ids: Dict[str, str] = {}
        for filename, content in csvs["asins"]:
            _restore_asins(user_id, filename, content, result)
        for filename, content in csvs["transactions"]:
            _restore_transactions(user_id, filename, content, result, txn_ids)
        for filename, content in csvs["ledger"]:
            _restore_ledger(user_id, filename, content, result, gl_ids)
        _restore_receipts(user_id, zf, store, result, (txn_ids, gl_ids))

    logger.info("Restore for user %s finished: %s", user_id, result.message)
    return result
