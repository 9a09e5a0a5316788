"""
Pytest fixtures for jewelbox backend tests.

Provides the in-memory app and database, reference-data fixtures, a
file-backed app for multi-threaded tests, and MemoryStore, an in-memory
store with the same shape and transaction behavior as SqlAlchemyStore.
"""

import itertools
import threading
import time
from contextlib import contextmanager

import pytest

from jewelbox import create_app
from jewelbox.config import TestConfig
from jewelbox.errors import ConflictError
from jewelbox.extensions import db
from jewelbox.models import Branch, Category, Item, Role, User
from jewelbox.services.auth_service import create_default_roles, hash_password, legacy_digest
from jewelbox.services.store import CodeRef, CredentialRecord, ItemRef, normalize_identifier


_UNSET = object()


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

class _Transaction:
    def __init__(self):
        self.depth = 0
        self.counters = {}
        self.items = {}
        self.credentials = {}
        self.locks = []

    def release(self):
        for lock in reversed(self.locks):
            lock.release()
        self.locks.clear()


class MemoryStore:
    """
    InventoryStore kept in dicts.

    Writes are buffered per thread until the outermost atomic() exits; a
    rollback simply drops them. A sequence bucket, item or credential that
    a transaction writes stays locked until that transaction ends, the way
    a database row lock does.

    Knobs for tests:
    - reserve_delay: seconds to sleep between reading and writing a
      high-water mark (widens the race window)
    - conflicts_to_raise: the next N reservations raise ConflictError
    - fail_reserve_with: exception raised by every reservation
    """

    def __init__(self, *, reserve_delay: float = 0.0):
        self.branches = {}
        self.categories = {}
        self.items = {}
        self.counters = {}
        self.credentials = {}
        self.reserve_delay = reserve_delay
        self.conflicts_to_raise = 0
        self.fail_reserve_with = None
        self.hash_writes = []
        self.reservations = 0
        self._ids = itertools.count(1)
        self._clock = itertools.count(1)
        self._commit_lock = threading.RLock()
        self._registry_lock = threading.Lock()
        self._row_locks = {}
        self._local = threading.local()

    # -- seeding -----------------------------------------------------------

    def add_branch(self, code):
        branch_id = next(self._ids)
        self.branches[branch_id] = code
        return branch_id

    def add_category(self, code):
        category_id = next(self._ids)
        self.categories[category_id] = code
        return category_id

    def add_item(self, branch_id=None, category_id=None, type_seq=None, item_code=None, cost=None):
        item_id = next(self._ids)
        self.items[item_id] = {
            "branch_id": branch_id,
            "category_id": category_id,
            "type_seq": type_seq,
            "item_code": item_code,
            "cost": cost,
            "cost_code": None,
            "created": next(self._clock),
        }
        return item_id

    def add_credential(self, email, password_hash, *, active=True, failed_logins=0, display_name=None):
        user_id = next(self._ids)
        self.credentials[normalize_identifier(email)] = {
            "user_id": user_id,
            "display_name": display_name or email,
            "password_hash": password_hash,
            "failed_logins": failed_logins,
            "locked_until": None,
            "active": active,
            "last_login_at": None,
        }
        return user_id

    def issued_seqs(self, branch_id, category_id):
        return sorted(
            row["type_seq"] for row in self.items.values()
            if row["branch_id"] == branch_id and row["category_id"] == category_id and row["type_seq"] is not None
        )

    # -- transactions ------------------------------------------------------

    def _tx(self):
        return getattr(self._local, "tx", None)

    def _require_tx(self):
        tx = self._tx()
        if tx is None:
            raise RuntimeError("store write outside atomic()")
        return tx

    def _hold(self, tx, key):
        with self._registry_lock:
            lock = self._row_locks.setdefault(key, threading.Lock())
        if lock not in tx.locks:
            lock.acquire()
            tx.locks.append(lock)

    @contextmanager
    def atomic(self):
        tx = self._tx()
        if tx is None:
            tx = self._local.tx = _Transaction()
        tx.depth += 1
        try:
            yield self
            if tx.depth == 1:
                self._commit(tx)
        finally:
            tx.depth -= 1
            if tx.depth == 0:
                self._local.tx = None
                tx.release()

    def _commit(self, tx):
        with self._commit_lock:
            self.counters.update(tx.counters)
            for item_id, changes in tx.items.items():
                self.items[item_id].update(changes)
            for identifier, changes in tx.credentials.items():
                self.credentials[identifier].update(changes)
                if "password_hash" in changes:
                    self.hash_writes.append(changes["password_hash"])

    # -- views -------------------------------------------------------------

    def _item_view(self, item_id):
        row = self.items.get(item_id)
        if row is None:
            return None
        tx = self._tx()
        if tx is not None and item_id in tx.items:
            return {**row, **tx.items[item_id]}
        return dict(row)

    def _credential_view(self, identifier):
        row = self.credentials.get(identifier)
        if row is None:
            return None
        tx = self._tx()
        if tx is not None and identifier in tx.credentials:
            return {**row, **tx.credentials[identifier]}
        return dict(row)

    # -- sequences ---------------------------------------------------------

    def _scan_max(self, branch_id, category_id):
        seqs = []
        for item_id in list(self.items):
            row = self._item_view(item_id)
            if row["branch_id"] == branch_id and row["category_id"] == category_id and row["type_seq"] is not None:
                seqs.append(row["type_seq"])
        return max(seqs, default=0)

    def max_sequence(self, branch_id, category_id):
        key = (branch_id, category_id)
        tx = self._tx()
        if tx is not None and key in tx.counters:
            return tx.counters[key]
        with self._commit_lock:
            return max(self.counters.get(key, 0), self._scan_max(branch_id, category_id))

    def reserve_sequence_range(self, branch_id, category_id, count):
        tx = self._require_tx()
        if self.fail_reserve_with is not None:
            raise self.fail_reserve_with
        if self.conflicts_to_raise:
            self.conflicts_to_raise -= 1
            raise ConflictError("Concurrent write collided on a unique key")

        self._hold(tx, ("seq", branch_id, category_id))
        current = self.max_sequence(branch_id, category_id)
        if self.reserve_delay:
            time.sleep(self.reserve_delay)
        end = current + count
        tx.counters[(branch_id, category_id)] = end
        self.reservations += 1
        return end - count + 1, end

    # -- reference data ----------------------------------------------------

    def lookup_branch(self, branch_id):
        code = self.branches.get(branch_id)
        return CodeRef(branch_id, code) if code is not None else None

    def lookup_category(self, category_id):
        code = self.categories.get(category_id)
        return CodeRef(category_id, code) if code is not None else None

    def find_branch_by_code(self, code):
        for branch_id, branch_code in self.branches.items():
            if branch_code == code:
                return CodeRef(branch_id, branch_code)
        return None

    def find_category_by_code(self, code):
        for category_id, category_code in self.categories.items():
            if category_code == code:
                return CodeRef(category_id, category_code)
        return None

    # -- items -------------------------------------------------------------

    def find_item(self, item_id):
        row = self._item_view(item_id)
        if row is None:
            return None
        return ItemRef(item_id, row["branch_id"], row["category_id"], row["type_seq"], row["item_code"], row["cost"])

    def find_items_missing_code(self):
        refs = []
        for item_id, row in sorted(self.items.items(), key=lambda kv: (kv[1]["created"], kv[0])):
            if None in (row["item_code"], row["type_seq"], row["branch_id"], row["category_id"]):
                refs.append(self.find_item(item_id))
        return refs

    def assign_code(self, item_id, seq, item_code, branch_id, category_id, cost_code=None):
        tx = self._require_tx()
        self._hold(tx, ("item", item_id))
        row = self._item_view(item_id)
        if row is None or row["item_code"] is not None:
            return False
        for other_id in list(self.items):
            if other_id == item_id:
                continue
            other = self._item_view(other_id)
            if other["item_code"] == item_code or (
                (other["branch_id"], other["category_id"], other["type_seq"]) == (branch_id, category_id, seq)
            ):
                raise ConflictError("Concurrent write collided on a unique key")
        tx.items[item_id] = {
            "branch_id": branch_id,
            "category_id": category_id,
            "type_seq": seq,
            "item_code": item_code,
        }
        if cost_code is not None:
            tx.items[item_id]["cost_code"] = cost_code
        return True

    # -- credentials -------------------------------------------------------

    def find_credential(self, identifier):
        identifier = normalize_identifier(identifier)
        row = self._credential_view(identifier)
        if row is None:
            return None
        return CredentialRecord(
            user_id=row["user_id"],
            identifier=identifier,
            display_name=row["display_name"],
            password_hash=row["password_hash"],
            failed_logins=row["failed_logins"],
            locked_until=row["locked_until"],
            active=row["active"],
        )

    def update_credential(
        self,
        identifier,
        *,
        password_hash=None,
        failed_logins=None,
        locked_until=_UNSET,
        last_login_at=None,
        expected_hash=None,
    ):
        tx = self._require_tx()
        identifier = normalize_identifier(identifier)
        self._hold(tx, ("cred", identifier))
        row = self._credential_view(identifier)
        if row is None:
            return False
        if expected_hash is not None and row["password_hash"] != expected_hash:
            return False

        changes = {}
        if password_hash is not None:
            changes["password_hash"] = password_hash
        if failed_logins is not None:
            changes["failed_logins"] = max(failed_logins, 0)
        if locked_until is not _UNSET:
            changes["locked_until"] = locked_until
        if last_login_at is not None:
            changes["last_login_at"] = last_login_at
        if not changes:
            return False
        tx.credentials.setdefault(identifier, {}).update(changes)
        return True

    def increment_failed_logins(self, identifier):
        tx = self._require_tx()
        identifier = normalize_identifier(identifier)
        self._hold(tx, ("cred", identifier))
        row = self._credential_view(identifier)
        if row is not None:
            tx.credentials.setdefault(identifier, {})["failed_logins"] = row["failed_logins"] + 1


@pytest.fixture(scope='function')
def memory_store():
    """Empty in-memory store."""
    return MemoryStore()


# ---------------------------------------------------------------------------
# Flask app and database
# ---------------------------------------------------------------------------

@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """
    App on a file-backed SQLite database.

    Threads need their own connections; the in-memory database shares a
    single one, so multi-threaded tests use this app instead.
    """
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'jewelbox-test.sqlite3'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 30}}
        SEQUENCE_RETRY_ATTEMPTS = 10
        SEQUENCE_RETRY_BACKOFF = 0.01

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture(scope='function')
def branch_hpi(db_session):
    branch = Branch(code="HPI", name="Hannah's Ilustre", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_ksb(db_session):
    branch = Branch(code="KSB", name="Kimsan Bajada", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def category_rng(db_session):
    category = Category(code="rng", name="Ring")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def category_chn(db_session):
    category = Category(code="chn", name="Chain")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def setup_roles(db_session):
    """Setup default roles."""
    create_default_roles()
    db_session.commit()


@pytest.fixture(scope='function')
def legacy_user(db_session, setup_roles):
    """Account seeded by the old tooling: unsalted SHA-256 of 'admin123'."""
    role = db_session.query(Role).filter_by(name="Owner").first()
    user = User(
        email="admin@example.com",
        display_name="Admin",
        password_hash=legacy_digest("admin123"),
        role_id=role.id,
        failed_logins=0,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def modern_user(db_session, setup_roles):
    role = db_session.query(Role).filter_by(name="Manager").first()
    user = User(
        email="clerk@example.com",
        display_name="Clerk",
        password_hash=hash_password("password123", rounds=4),
        role_id=role.id,
        failed_logins=0,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def make_item(db_session):
    """Factory: insert an item directly, bypassing the allocator."""
    def _make(**fields):
        values = {
            "title": "14K Gold Ring",
            "metal": "Au",
            "karat": "14K",
            "weight_g": 5.2,
            "condition": "NEW",
            "status": "READY",
        }
        values.update(fields)
        item = Item(**values)
        db_session.add(item)
        db_session.commit()
        return item
    return _make


@pytest.fixture(scope='function')
def item_payload():
    return {
        "title": "18K Necklace",
        "metal": "Au",
        "karat": "18k",
        "weight_g": "12.5",
        "condition": "NEW",
        "cost": 1250,
    }
