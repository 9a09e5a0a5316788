# Overview: Service-layer operations for inventory items; batch creation on top of the sequence allocator.

"""
Inventory Service - item CRUD

IDENTITY vs DESCRIPTION:
- branch_id, category_id, type_seq and item_code are assigned once by the
  allocator and are not writable through this service
- title, metal, karat, weight_g, condition, status, cost, supplier_id are
  freely editable

BATCH CREATE: create_items() allocates N codes and inserts N items in one
unit of work. If any insert fails, the reserved range is rolled back too.

REMOVAL: remove_item() is a soft delete (status REMOVED). The item keeps
its number, which is never handed out again.
"""

from __future__ import annotations

from ..cost_codes import encode_cost_code
from ..errors import NotFoundError
from ..extensions import db
from ..models import Item, Supplier
from ..validation import ModelValidationPolicy, enforce_rules_item, validate_payload, ValidationError
from .sequence_service import MAX_ALLOCATION, ItemCodeAllocation, SequenceAllocator, get_allocator


ITEM_POLICY = ModelValidationPolicy(
    writable_fields={"title", "metal", "karat", "weight_g", "condition", "status", "cost", "supplier_id"},
    required_on_create={"title", "metal", "karat", "weight_g", "condition"},
)

MAX_BATCH_SIZE = MAX_ALLOCATION
DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100


def _check_supplier(patch: dict) -> None:
    supplier_id = patch.get("supplier_id")
    if supplier_id is not None and db.session.get(Supplier, supplier_id) is None:
        raise NotFoundError(f"Supplier {supplier_id} not found")


def create_items(
    branch_id: int,
    category_id: int,
    payload: dict,
    count: int = 1,
    *,
    allocator: SequenceAllocator | None = None,
) -> list[Item]:
    """
    Create count identical items, each with its own code.

    Raises:
        ValidationError: bad payload or count outside 1..MAX_BATCH_SIZE
        NotFoundError: unknown branch, category or supplier
        ConflictError: allocation kept colliding; retry the whole call
    """
    patch = validate_payload(model=Item, payload=payload, policy=ITEM_POLICY, partial=False)
    enforce_rules_item(patch)
    _check_supplier(patch)

    allocator = allocator or get_allocator()
    created: list[Item] = []

    def _insert(allocations: list[ItemCodeAllocation]) -> None:
        created.clear()
        for allocation in allocations:
            item = Item(
                branch_id=branch_id,
                category_id=category_id,
                type_seq=allocation.seq,
                item_code=allocation.item_code,
                cost_code=encode_cost_code(patch.get("cost")),
                **patch,
            )
            db.session.add(item)
            created.append(item)
        db.session.flush()

    allocator.allocate(branch_id, category_id, count, apply=_insert)
    return created


def get_item(item_id: int) -> Item:
    item = db.session.get(Item, item_id)
    if not item:
        raise NotFoundError(f"Item {item_id} not found")
    return item


def update_item(item_id: int, payload: dict) -> Item:
    """Patch descriptive fields. Identity fields are rejected as not allowed."""
    item = get_item(item_id)
    patch = validate_payload(model=Item, payload=payload, policy=ITEM_POLICY, partial=True)
    enforce_rules_item(patch)
    _check_supplier(patch)

    for k, v in patch.items():
        setattr(item, k, v)
    if "cost" in patch:
        item.cost_code = encode_cost_code(patch["cost"])

    db.session.commit()
    return item


def remove_item(item_id: int) -> Item:
    item = get_item(item_id)
    item.status = "REMOVED"
    db.session.commit()
    return item


def list_items(
    *,
    q: str | None = None,
    status: str | None = None,
    branch_id: int | None = None,
    category_id: int | None = None,
    page: int = 1,
    per_page: int = DEFAULT_PER_PAGE,
) -> dict:
    """
    Most recently updated first, paginated.

    q matches title or item code (substring).
    """
    page = max(page or 1, 1)
    per_page = min(max(per_page or DEFAULT_PER_PAGE, 1), MAX_PER_PAGE)

    query = db.session.query(Item)
    if q:
        like = f"%{q.strip()}%"
        query = query.filter(db.or_(Item.title.ilike(like), Item.item_code.ilike(like)))
    if status:
        query = query.filter(Item.status == status.upper())
    if branch_id:
        query = query.filter(Item.branch_id == branch_id)
    if category_id:
        query = query.filter(Item.category_id == category_id)

    total = query.count()
    items = (
        query.order_by(Item.updated_at.desc(), Item.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "items": [item.to_dict() for item in items],
        "total": total,
        "page": page,
        "per_page": per_page,
    }
