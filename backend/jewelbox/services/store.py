# Overview: Persistence collaborator for the sequence allocator and credential migrator.

"""
Store - the data-access seam

The allocator and the credential migrator never touch the ORM directly;
they receive a store object with the methods below. SqlAlchemyStore is
the production implementation over the Flask-SQLAlchemy session. Tests
substitute an in-memory store with the same shape.

ATOMICITY:
- atomic() wraps one unit of work. It is reentrant: only the outermost
  block commits, and any exception rolls the whole unit back, so a failed
  allocation never advances the high-water mark.
- reserve_sequence_range() is a single UPDATE on the ItemSequence row.
  The database serializes concurrent UPDATEs of the same row (row lock on
  PostgreSQL/MySQL, write lock on SQLite), so two callers can never read
  the same high-water mark. Different (branch, category) rows do not
  contend on engines with row-level locking.

ERRORS: SQLAlchemy failures leave this module as ConflictError (retry the
whole unit of work) or StoreUnavailableError, see concurrency.translate_db_error.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from typing import Iterator, Protocol

from sqlalchemy import func, or_, update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Branch, Category, Item, ItemSequence, User
from .concurrency import lock_for_update, translate_db_error


_ATOMIC_DEPTH_KEY = "jewelbox_atomic_depth"
_UNSET = object()


@dataclass(frozen=True)
class CodeRef:
    """Identity and immutable short code of a Branch or Category."""
    id: int
    code: str


@dataclass(frozen=True)
class ItemRef:
    id: int
    branch_id: int | None
    category_id: int | None
    type_seq: int | None
    item_code: str | None
    cost: int | None = None


@dataclass(frozen=True)
class CredentialRecord:
    user_id: int
    identifier: str
    display_name: str
    password_hash: str
    failed_logins: int
    locked_until: datetime | None
    active: bool


class InventoryStore(Protocol):
    def atomic(self): ...
    def max_sequence(self, branch_id: int, category_id: int) -> int: ...
    def reserve_sequence_range(self, branch_id: int, category_id: int, count: int) -> tuple[int, int]: ...
    def lookup_branch(self, branch_id: int) -> CodeRef | None: ...
    def lookup_category(self, category_id: int) -> CodeRef | None: ...
    def find_branch_by_code(self, code: str) -> CodeRef | None: ...
    def find_category_by_code(self, code: str) -> CodeRef | None: ...
    def find_item(self, item_id: int) -> ItemRef | None: ...
    def find_items_missing_code(self) -> list[ItemRef]: ...
    def assign_code(
        self, item_id: int, seq: int, item_code: str, branch_id: int, category_id: int, cost_code: str | None = None
    ) -> bool: ...
    def find_credential(self, identifier: str) -> CredentialRecord | None: ...
    def update_credential(self, identifier: str, **changes) -> bool: ...
    def increment_failed_logins(self, identifier: str) -> None: ...


def normalize_identifier(value: str) -> str:
    """Login identifiers (emails) compare case-insensitively."""
    return (value or "").strip().lower()


def _translated(method):
    @wraps(method)
    def wrapper(*args, **kwargs):
        try:
            return method(*args, **kwargs)
        except SQLAlchemyError as exc:
            raise translate_db_error(exc) from exc
    return wrapper


def _item_ref(item: Item) -> ItemRef:
    return ItemRef(
        id=item.id,
        branch_id=item.branch_id,
        category_id=item.category_id,
        type_seq=item.type_seq,
        item_code=item.item_code,
        cost=item.cost,
    )


def _credential_record(user: User) -> CredentialRecord:
    return CredentialRecord(
        user_id=user.id,
        identifier=user.email,
        display_name=user.display_name,
        password_hash=user.password_hash,
        failed_logins=user.failed_logins or 0,
        locked_until=user.locked_until,
        active=bool(user.is_active),
    )


class SqlAlchemyStore:
    """InventoryStore over a SQLAlchemy session (db.session by default)."""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    @contextmanager
    def atomic(self) -> Iterator["SqlAlchemyStore"]:
        session = self.session
        depth = session.info.get(_ATOMIC_DEPTH_KEY, 0)
        session.info[_ATOMIC_DEPTH_KEY] = depth + 1
        try:
            yield self
            if depth == 0:
                session.commit()
        except Exception as exc:
            if depth == 0:
                session.rollback()
            if isinstance(exc, SQLAlchemyError):
                raise translate_db_error(exc) from exc
            raise
        finally:
            session.info[_ATOMIC_DEPTH_KEY] = depth

    # ------------------------------------------------------------------
    # Sequences
    # ------------------------------------------------------------------

    def _scan_max(self, branch_id: int, category_id: int) -> int:
        return (
            self.session.query(func.max(Item.type_seq))
            .filter(Item.branch_id == branch_id, Item.category_id == category_id)
            .scalar()
        ) or 0

    def _counter_value(self, branch_id: int, category_id: int) -> int | None:
        return (
            self.session.query(ItemSequence.high_water)
            .filter_by(branch_id=branch_id, category_id=category_id)
            .scalar()
        )

    @_translated
    def max_sequence(self, branch_id: int, category_id: int) -> int:
        """High-water mark: the larger of the counter row and the item scan."""
        counter = self._counter_value(branch_id, category_id) or 0
        return max(counter, self._scan_max(branch_id, category_id))

    @_translated
    def reserve_sequence_range(self, branch_id: int, category_id: int, count: int) -> tuple[int, int]:
        """
        Atomically advance the high-water mark by count.

        Must run inside atomic(); the reservation only becomes durable when
        the surrounding unit of work commits. Returns (start, end) inclusive.
        """
        session = self.session
        bump = (
            update(ItemSequence)
            .where(
                ItemSequence.branch_id == branch_id,
                ItemSequence.category_id == category_id,
            )
            .values(high_water=ItemSequence.high_water + count)
            .execution_options(synchronize_session=False)
        )

        result = session.execute(bump)
        if result.rowcount:
            end = self._counter_value(branch_id, category_id)
            # Items written with a type_seq outside the counter (imports) raise the floor
            floor = self._scan_max(branch_id, category_id)
            if end - count < floor:
                end = floor + count
                session.execute(
                    update(ItemSequence)
                    .where(
                        ItemSequence.branch_id == branch_id,
                        ItemSequence.category_id == category_id,
                    )
                    .values(high_water=end)
                    .execution_options(synchronize_session=False)
                )
        else:
            # First reservation for this pair: seed the counter from existing items.
            # A concurrent first reservation surfaces as a unique violation -> ConflictError.
            end = self._scan_max(branch_id, category_id) + count
            session.add(ItemSequence(branch_id=branch_id, category_id=category_id, high_water=end))
            session.flush()

        return end - count + 1, end

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    @_translated
    def lookup_branch(self, branch_id: int) -> CodeRef | None:
        branch = self.session.get(Branch, branch_id)
        return CodeRef(branch.id, branch.code) if branch else None

    @_translated
    def lookup_category(self, category_id: int) -> CodeRef | None:
        category = self.session.get(Category, category_id)
        return CodeRef(category.id, category.code) if category else None

    @_translated
    def find_branch_by_code(self, code: str) -> CodeRef | None:
        branch = self.session.query(Branch).filter_by(code=code).first()
        return CodeRef(branch.id, branch.code) if branch else None

    @_translated
    def find_category_by_code(self, code: str) -> CodeRef | None:
        category = self.session.query(Category).filter_by(code=code).first()
        return CodeRef(category.id, category.code) if category else None

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    @_translated
    def find_item(self, item_id: int) -> ItemRef | None:
        query = self.session.query(Item).filter_by(id=item_id).populate_existing()
        item = lock_for_update(query).first()
        return _item_ref(item) if item else None

    @_translated
    def find_items_missing_code(self) -> list[ItemRef]:
        """Items lacking any identity field, oldest first (ties broken by id)."""
        items = (
            self.session.query(Item)
            .filter(
                or_(
                    Item.item_code.is_(None),
                    Item.type_seq.is_(None),
                    Item.branch_id.is_(None),
                    Item.category_id.is_(None),
                )
            )
            .order_by(Item.created_at.asc(), Item.id.asc())
            .all()
        )
        return [_item_ref(item) for item in items]

    @_translated
    def assign_code(
        self, item_id: int, seq: int, item_code: str, branch_id: int, category_id: int, cost_code: str | None = None
    ) -> bool:
        """
        Write identity fields (and the price-tag cost code, when given) onto
        an item that has no code yet.

        Returns False when the item already carries a code, so an issued
        code is never overwritten.
        """
        values = {"branch_id": branch_id, "category_id": category_id, "type_seq": seq, "item_code": item_code}
        if cost_code is not None:
            values["cost_code"] = cost_code
        result = self.session.execute(
            update(Item)
            .where(Item.id == item_id, Item.item_code.is_(None))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    @_translated
    def find_credential(self, identifier: str) -> CredentialRecord | None:
        user = (
            self.session.query(User)
            .filter(User.email == normalize_identifier(identifier))
            .populate_existing()
            .first()
        )
        return _credential_record(user) if user else None

    @_translated
    def update_credential(
        self,
        identifier: str,
        *,
        password_hash: str | None = None,
        failed_logins: int | None = None,
        locked_until=_UNSET,
        last_login_at: datetime | None = None,
        expected_hash: str | None = None,
    ) -> bool:
        """
        Apply credential changes in one UPDATE statement.

        expected_hash turns the write into a compare-and-swap: nothing is
        written unless the stored hash is still the one the caller verified.
        Returns whether a row was written.
        """
        values = {}
        if password_hash is not None:
            values["password_hash"] = password_hash
        if failed_logins is not None:
            values["failed_logins"] = max(failed_logins, 0)
        if locked_until is not _UNSET:
            values["locked_until"] = locked_until
        if last_login_at is not None:
            values["last_login_at"] = last_login_at
        if not values:
            return False

        stmt = update(User).where(User.email == normalize_identifier(identifier))
        if expected_hash is not None:
            stmt = stmt.where(User.password_hash == expected_hash)
        result = self.session.execute(stmt.values(**values).execution_options(synchronize_session=False))
        return result.rowcount == 1

    @_translated
    def increment_failed_logins(self, identifier: str) -> None:
        self.session.execute(
            update(User)
            .where(User.email == normalize_identifier(identifier))
            .values(failed_logins=User.failed_logins + 1)
            .execution_options(synchronize_session=False)
        )
