from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


KARATS = ("10K", "14K", "18K", "21K", "22K", "24K")
ITEM_STATUSES = ("DRAFT", "QA", "READY", "RESERVED", "SOLD", "REMOVED")


class Item(db.Model):
    """
    Inventory item.

    IDENTITY FIELDS (set once, never updated):
    - branch_id / category_id: the bucket the sequence number was drawn from
    - type_seq: position in that bucket, 1..N with no gaps
    - item_code: "{branch.code}-{category.code}-{type_seq}", cached

    Rows imported from older data may have NULL identity fields until the
    backfill assigns them. Removal is a soft delete (status REMOVED); the
    number stays taken.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "category_id", "type_seq", name="uq_items_branch_category_seq"),
        db.Index("ix_items_status", "status"),
        db.Index("ix_items_created", "created_at", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    type_seq = db.Column(db.Integer, nullable=True)
    item_code = db.Column(db.String(64), nullable=True, unique=True, index=True)

    title = db.Column(db.String(255), nullable=False)
    metal = db.Column(db.String(32), nullable=False)
    karat = db.Column(db.String(3), nullable=False)
    weight_g = db.Column(db.Numeric(10, 3), nullable=False)
    condition = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="DRAFT")

    # Whole currency units; cost_code is the shop's cipher of the digits
    cost = db.Column(db.Integer, nullable=True)
    cost_code = db.Column(db.String(32), nullable=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch", backref=db.backref("items", lazy=True))
    category = db.relationship("Category", backref=db.backref("items", lazy=True))
    supplier = db.relationship("Supplier", backref=db.backref("items", lazy=True))

    def __repr__(self) -> str:
        return f"<Item id={self.id} item_code={self.item_code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "category_id": self.category_id,
            "type_seq": self.type_seq,
            "item_code": self.item_code,
            "title": self.title,
            "metal": self.metal,
            "karat": self.karat,
            "weight_g": float(self.weight_g) if self.weight_g is not None else None,
            "condition": self.condition,
            "status": self.status,
            "cost": self.cost,
            "cost_code": self.cost_code,
            "supplier_id": self.supplier_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ItemSequence(db.Model):
    """
    Stored high-water mark per (branch, category).

    WHY: reserving a range is a single UPDATE on this row, which the
    database serializes. Scanning items for max(type_seq) alone cannot be
    made atomic. The row is seeded from that scan on first use, so both
    sources always agree.
    """
    __tablename__ = "item_sequences"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "category_id", name="uq_item_sequences_branch_category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)
    high_water = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "category_id": self.category_id,
            "high_water": self.high_water,
            "updated_at": to_utc_z(self.updated_at),
        }
