# Overview: Service-layer operations for item sequences; allocates per-(branch, category) item codes.

"""
Sequence Service - item code allocation

WHY: Every item carries a human-readable code "{BRANCH}-{CATEGORY}-{SEQ}"
that staff write on tags and search by. SEQ counts items per
(branch, category) bucket, so the codes must never collide, skip or be
reused, including when several batches are created at once or when old
rows are backfilled.

GUARANTEES:
- For each bucket the issued numbers are exactly 1..N, no gaps, no repeats
- allocate() reserves a whole range in one unit of work; concurrent callers
  receive disjoint ranges
- Any failure (unknown branch/category, store error, lost race) leaves the
  high-water mark where it was
- Numbers of removed items stay taken

RETRY: a ConflictError from the store rolls the unit of work back and the
whole allocation is attempted again from fresh reads. When attempts run
out the ConflictError reaches the caller, who must retry the whole call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from flask import current_app

from ..cost_codes import encode_cost_code
from ..errors import ConflictError, NotFoundError, ValidationError
from .concurrency import run_with_retry
from .store import CodeRef, InventoryStore, ItemRef, SqlAlchemyStore


# Largest range one allocate/preview call may cover
MAX_ALLOCATION = 500


@dataclass(frozen=True)
class ItemCodeAllocation:
    seq: int
    item_code: str

    def to_dict(self) -> dict:
        return {"seq": self.seq, "item_code": self.item_code}


@dataclass
class BackfillReport:
    assigned: dict[int, ItemCodeAllocation] = field(default_factory=dict)
    unchanged: int = 0

    def to_dict(self) -> dict:
        return {
            "assigned_count": len(self.assigned),
            "unchanged_count": self.unchanged,
            "assigned": {str(item_id): alloc.item_code for item_id, alloc in self.assigned.items()},
        }


def compose_item_code(branch_code: str, category_code: str, seq: int) -> str:
    """Durable item code, e.g. HPI-rng-3."""
    return f"{branch_code}-{category_code}-{seq}"


def _validate_count(count) -> int:
    if isinstance(count, bool) or not isinstance(count, int):
        raise ValidationError("count must be an integer")
    if count <= 0:
        raise ValidationError("count must be a positive integer")
    if count > MAX_ALLOCATION:
        raise ValidationError(f"count cannot exceed {MAX_ALLOCATION}")
    return count


class SequenceAllocator:
    """
    Allocates item codes against an injected store.

    Args:
        store: InventoryStore implementation
        retry_attempts: whole-operation attempts on ConflictError
        retry_backoff: base seconds for exponential backoff between attempts
        default_branch_code / default_category_code: where backfill puts
            items that have no branch/category reference at all (None = reject)
    """

    def __init__(
        self,
        store: InventoryStore,
        *,
        retry_attempts: int = 3,
        retry_backoff: float = 0.05,
        default_branch_code: str | None = None,
        default_category_code: str | None = None,
    ):
        self.store = store
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.default_branch_code = default_branch_code
        self.default_category_code = default_category_code

    def _resolve_codes(self, branch_id: int, category_id: int) -> tuple[CodeRef, CodeRef]:
        branch = self.store.lookup_branch(branch_id)
        if branch is None:
            raise NotFoundError(f"Branch {branch_id} not found")
        category = self.store.lookup_category(category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found")
        return branch, category

    def peek_next(self, branch_id: int, category_id: int) -> int:
        """
        Smallest unused sequence number for the bucket. Display only:
        nothing is reserved, and a concurrent allocation may take it.
        """
        self._resolve_codes(branch_id, category_id)
        return self.store.max_sequence(branch_id, category_id) + 1

    def preview(self, branch_id: int, category_id: int, count: int) -> list[ItemCodeAllocation]:
        """Codes a batch of count items would receive right now ("#42-#47")."""
        count = _validate_count(count)
        branch, category = self._resolve_codes(branch_id, category_id)
        start = self.store.max_sequence(branch_id, category_id) + 1
        return [
            ItemCodeAllocation(seq, compose_item_code(branch.code, category.code, seq))
            for seq in range(start, start + count)
        ]

    def allocate(
        self,
        branch_id: int,
        category_id: int,
        count: int,
        *,
        apply: Callable[[list[ItemCodeAllocation]], None] | None = None,
    ) -> list[ItemCodeAllocation]:
        """
        Reserve count consecutive numbers and return the composed codes.

        apply, when given, runs inside the same unit of work with the fresh
        allocations (e.g. to insert the items). If it raises, the
        reservation is rolled back with everything else. On a retry it is
        called again with the new range.
        """
        count = _validate_count(count)

        def _op() -> list[ItemCodeAllocation]:
            with self.store.atomic():
                branch, category = self._resolve_codes(branch_id, category_id)
                start, end = self.store.reserve_sequence_range(branch_id, category_id, count)
                allocations = [
                    ItemCodeAllocation(seq, compose_item_code(branch.code, category.code, seq))
                    for seq in range(start, end + 1)
                ]
                if apply is not None:
                    apply(allocations)
                return allocations

        return run_with_retry(_op, attempts=self.retry_attempts, backoff_base=self.retry_backoff)

    def _default_ref(self, code: str | None, lookup, label: str, item_id: int) -> int:
        if not code:
            raise ValidationError(f"Item {item_id} has no {label} and no default {label} is configured")
        ref = lookup(code)
        if ref is None:
            raise NotFoundError(f"Default {label} '{code}' not found")
        return ref.id

    def backfill(self, item: ItemRef) -> ItemCodeAllocation:
        """
        Give one pre-existing item its code.

        Idempotent: an item that already has a code keeps it. An item that
        already has branch, category and type_seq keeps its number and only
        gets the composed code. Otherwise it draws the next number exactly
        as allocate(count=1) would.
        """

        def _op() -> ItemCodeAllocation:
            with self.store.atomic():
                current = self.store.find_item(item.id)
                if current is None:
                    raise NotFoundError(f"Item {item.id} not found")
                if current.item_code:
                    return ItemCodeAllocation(current.type_seq, current.item_code)

                branch_id = current.branch_id
                if branch_id is None:
                    branch_id = self._default_ref(
                        self.default_branch_code, self.store.find_branch_by_code, "branch", current.id
                    )
                category_id = current.category_id
                if category_id is None:
                    category_id = self._default_ref(
                        self.default_category_code, self.store.find_category_by_code, "category", current.id
                    )

                branch, category = self._resolve_codes(branch_id, category_id)
                if current.type_seq is not None and current.branch_id is not None and current.category_id is not None:
                    seq = current.type_seq
                else:
                    seq, _ = self.store.reserve_sequence_range(branch_id, category_id, 1)

                allocation = ItemCodeAllocation(seq, compose_item_code(branch.code, category.code, seq))
                assigned = self.store.assign_code(
                    current.id, seq, allocation.item_code, branch_id, category_id,
                    cost_code=encode_cost_code(current.cost),
                )
                if not assigned:
                    raise ConflictError(f"Item {current.id} was coded concurrently")
                return allocation

        return run_with_retry(_op, attempts=self.retry_attempts, backoff_base=self.retry_backoff)

    def backfill_all(self) -> BackfillReport:
        """
        Backfill every item missing a code, oldest first.

        Each item is its own unit of work; a re-run picks up where a failed
        run stopped and a re-run over coded data changes nothing.
        """
        report = BackfillReport()
        for ref in self.store.find_items_missing_code():
            if ref.item_code:
                report.unchanged += 1
                continue
            report.assigned[ref.id] = self.backfill(ref)
        return report


def get_allocator(store: InventoryStore | None = None) -> SequenceAllocator:
    """Allocator wired to the current app's config and the SQLAlchemy store."""
    config = current_app.config
    return SequenceAllocator(
        store or SqlAlchemyStore(),
        retry_attempts=config.get("SEQUENCE_RETRY_ATTEMPTS", 3),
        retry_backoff=config.get("SEQUENCE_RETRY_BACKOFF", 0.05),
        default_branch_code=config.get("BACKFILL_DEFAULT_BRANCH_CODE"),
        default_category_code=config.get("BACKFILL_DEFAULT_CATEGORY_CODE"),
    )
