# models.py
import uuid

from flask_sqlalchemy import SQLAlchemy
import sqlalchemy as sa
from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlalchemy.ext.mutable import MutableDict
from sqlalchemy.orm import relationship

db = SQLAlchemy()


def _uuid() -> str:
    return str(uuid.uuid4())


# -------------------------
# USER / AUTH
# -------------------------
class User(db.Model):
    __tablename__ = "app_user"
    id = db.Column(db.BigInteger().with_variant(db.Integer, "sqlite"), primary_key=True)
    email = db.Column(db.String(255), nullable=False)
    pass_hash = db.Column(db.Text, nullable=False)
    name = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="ACTIVE")
    last_login_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), server_default=sa.func.now())

    __table_args__ = (
        CheckConstraint("status in ('ACTIVE','SUSPENDED','DISABLED')", name="chk_user_status"),
        # unique case-insensitive
        sa.Index("uq_user_email_lower", sa.func.lower(email), unique=True),
    )


class RefreshToken(db.Model):
    __tablename__ = "refresh_token"
    id = db.Column(db.BigInteger().with_variant(db.Integer, "sqlite"), primary_key=True)
    user_id = db.Column(db.BigInteger, db.ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)
    token_hash = db.Column(db.Text, nullable=False)
    user_agent = db.Column(db.Text)
    ip = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), server_default=sa.func.now())
    revoked_at = db.Column(db.DateTime(timezone=True))

    __table_args__ = (
        sa.Index("idx_rt_user_open", "user_id", postgresql_where=sa.text("revoked_at IS NULL")),
        sa.Index("idx_rt_created", "created_at"),
    )


# -------------------------
# SUPPLIER
# -------------------------
class Supplier(db.Model):
    __tablename__ = "supplier"
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.BigInteger, db.ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)

    name    = db.Column(db.Text, nullable=False)
    address = db.Column(db.Text, default="")
    email   = db.Column(db.Text, default="")
    phone   = db.Column(db.Text, default="")
    site    = db.Column(db.Text, default="")
    notes   = db.Column(db.Text, default="")

    created_at = db.Column(db.DateTime(timezone=True), server_default=sa.func.now())

    __table_args__ = (
        sa.Index("idx_supplier_user_name", user_id, sa.func.lower(name)),
    )

    transactions = relationship("Transaction", back_populates="supplier")


# -------------------------
# ASIN (product catalog)
# -------------------------
class Asin(db.Model):
    __tablename__ = "asin"
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.BigInteger, db.ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)

    asin        = db.Column(db.String(20), nullable=False)
    title       = db.Column(db.Text, default="")
    brand       = db.Column(db.Text, default="")
    image_url   = db.Column(db.Text, default="")
    type        = db.Column(db.String(10), nullable=False, default="Single")   # Single | Bundle
    pack        = db.Column(db.Integer, nullable=False, default=1)
    category    = db.Column(db.String(10), nullable=False, default="Stock")    # Stock | Other
    weight      = db.Column(db.Numeric(10, 2), default=0)
    weight_unit = db.Column(db.String(2), nullable=False, default="g")         # g | kg
    fnsku       = db.Column(db.String(20))

    created_at = db.Column(db.DateTime(timezone=True), server_default=sa.func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "asin", name="uq_asin_user_code"),
        CheckConstraint("weight_unit in ('g','kg')", name="chk_asin_weight_unit"),
        CheckConstraint("weight is null or weight >= 0", name="chk_asin_weight_nonneg"),
    )


# -------------------------
# PURCHASE ORDERS
# -------------------------
class Transaction(db.Model):
    __tablename__ = "purchase_transaction"
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.BigInteger, db.ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)
    supplier_id = db.Column(db.String(36), db.ForeignKey("supplier.id", ondelete="SET NULL"))

    ordered_date   = db.Column(db.Date)
    delivery_date  = db.Column(db.Date)
    po_number      = db.Column(db.Text, default="")
    category       = db.Column(db.Text, default="")
    payment_method = db.Column(db.Text, default="")
    status         = db.Column(db.String(30), default="pending")
    shipping_cost  = db.Column(db.Numeric(10, 2), default=0)
    notes          = db.Column(db.Text, default="")

    created_at = db.Column(db.DateTime(timezone=True), server_default=sa.func.now())

    __table_args__ = (
        sa.Index("idx_transaction_user_ordered", user_id, ordered_date),
    )

    supplier = relationship("Supplier", back_populates="transactions")
    items = relationship(
        "TransactionItem",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionItem.created_at",
    )


class TransactionItem(db.Model):
    __tablename__ = "transaction_item"
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    transaction_id = db.Column(db.String(36), db.ForeignKey("purchase_transaction.id", ondelete="CASCADE"), nullable=False)

    asin       = db.Column(db.String(20), nullable=False)
    quantity   = db.Column(db.Integer, nullable=False, default=0)
    buy_price  = db.Column(db.Numeric(10, 2), default=0)
    sell_price = db.Column(db.Numeric(10, 2), default=0)
    est_fees   = db.Column(db.Numeric(10, 2), default=0)

    created_at = db.Column(db.DateTime(timezone=True), server_default=sa.func.now())

    __table_args__ = (
        sa.Index("idx_transaction_item_txn", transaction_id),
    )

    transaction = relationship("Transaction", back_populates="items")


# -------------------------
# GENERAL LEDGER
# -------------------------
class GeneralLedgerEntry(db.Model):
    __tablename__ = "general_ledger"
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.BigInteger, db.ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)

    date           = db.Column(db.Date, nullable=False)
    category       = db.Column(db.Text, nullable=False)
    reference      = db.Column(db.Text, default="")
    type           = db.Column(db.String(10), nullable=False)     # Income | Expense
    amount         = db.Column(db.Numeric(10, 2), nullable=False)
    status         = db.Column(db.String(30), default="pending")
    payment_method = db.Column(db.Text, default="AMEX Plat")
    director_name  = db.Column(db.Text)
    txn_po         = db.Column(db.Text, default="")
    notes          = db.Column(db.Text, default="")

    created_at = db.Column(db.DateTime(timezone=True), server_default=sa.func.now())

    __table_args__ = (
        CheckConstraint("type in ('Income','Expense')", name="chk_gl_type"),
        sa.Index("idx_gl_user_date", user_id, date),
    )


# -------------------------
# SHIPMENTS (outbound packing)
# -------------------------
class Shipment(db.Model):
    __tablename__ = "shipment"
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.BigInteger, db.ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)

    name = db.Column(db.Text, nullable=False)

    # derived; recalculated after imports and quantity saves
    total_asins  = db.Column(db.Integer, nullable=False, default=0)
    total_units  = db.Column(db.Integer, nullable=False, default=0)
    total_weight = db.Column(db.Float, nullable=False, default=0)    # grams

    created_at = db.Column(db.DateTime(timezone=True), server_default=sa.func.now())

    __table_args__ = (
        sa.Index("idx_shipment_user", user_id),
    )

    pack_groups = relationship(
        "PackGroup",
        back_populates="shipment",
        cascade="all, delete-orphan",
        order_by="PackGroup.position",
    )


class PackGroup(db.Model):
    __tablename__ = "pack_group"
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.BigInteger, db.ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)
    shipment_id = db.Column(db.String(36), db.ForeignKey("shipment.id", ondelete="CASCADE"), nullable=False)

    name     = db.Column(db.Text, nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)

    total_boxes  = db.Column(db.Integer, nullable=False, default=0)
    total_units  = db.Column(db.Integer, nullable=False, default=0)
    total_weight = db.Column(db.Float, nullable=False, default=0)    # grams

    created_at = db.Column(db.DateTime(timezone=True), server_default=sa.func.now())

    __table_args__ = (
        sa.Index("idx_pack_group_shipment", shipment_id),
    )

    shipment = relationship("Shipment", back_populates="pack_groups")
    boxes = relationship(
        "Box",
        back_populates="pack_group",
        cascade="all, delete-orphan",
        order_by="Box.position",
    )
    items = relationship(
        "PackGroupItem",
        back_populates="pack_group",
        cascade="all, delete-orphan",
        order_by="PackGroupItem.order_index",
    )


class Box(db.Model):
    __tablename__ = "box"
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.BigInteger, db.ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)
    pack_group_id = db.Column(db.String(36), db.ForeignKey("pack_group.id", ondelete="CASCADE"), nullable=False)

    name     = db.Column(db.Text, nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)

    weight = db.Column(db.Numeric(10, 3), default=0)   # kg
    width  = db.Column(db.Numeric(10, 2), default=0)   # cm
    length = db.Column(db.Numeric(10, 2), default=0)   # cm
    height = db.Column(db.Numeric(10, 2), default=0)   # cm

    total_units = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), server_default=sa.func.now())

    __table_args__ = (
        CheckConstraint("weight is null or weight >= 0", name="chk_box_weight_nonneg"),
        CheckConstraint("width  is null or width  >= 0", name="chk_box_width_nonneg"),
        CheckConstraint("length is null or length >= 0", name="chk_box_length_nonneg"),
        CheckConstraint("height is null or height >= 0", name="chk_box_height_nonneg"),
        sa.Index("idx_box_pack_group", pack_group_id),
    )

    pack_group = relationship("PackGroup", back_populates="boxes")


class PackGroupItem(db.Model):
    __tablename__ = "pack_group_item"
    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.BigInteger, db.ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)
    pack_group_id = db.Column(db.String(36), db.ForeignKey("pack_group.id", ondelete="CASCADE"), nullable=False)

    asin              = db.Column(db.String(20), nullable=False)
    sku               = db.Column(db.Text, default="")
    title             = db.Column(db.Text, default="")
    prep_type         = db.Column(db.Text, default="None")
    expected_quantity = db.Column(db.Integer, nullable=False)
    # box id -> units; absent key means 0
    boxed_quantities  = db.Column(MutableDict.as_mutable(db.JSON), nullable=False, default=dict)
    order_index       = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), server_default=sa.func.now())

    __table_args__ = (
        CheckConstraint("expected_quantity >= 0", name="chk_item_expected_nonneg"),
        UniqueConstraint("pack_group_id", "order_index", name="uq_item_order_per_group"),
        sa.Index("idx_item_pack_group", pack_group_id),
    )

    pack_group = relationship("PackGroup", back_populates="items")
