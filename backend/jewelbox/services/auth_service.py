# Overview: Service-layer operations for auth; password hashing, login with transparent hash upgrade.

"""
Authentication Service with transparent credential migration

WHY: Accounts seeded by the first generation of tooling store an unsalted
SHA-256 hex digest. Those must keep working, but each one is replaced by a
bcrypt hash the first time its owner logs in successfully.

HASH FORMATS (inferred from the stored string, no flag column):
- ModernHash: bcrypt, "$2a$" / "$2b$" / "$2y$" prefix, 60 chars
- LegacyHash: 64 lowercase hex chars, sha256(password)
- UnknownHash: anything else; never verifies

LOGIN FLOW (per attempt):
    START -> MODERN_CHECK -> SUCCESS
                          -> LEGACY_CHECK -> SUCCESS_WITH_UPGRADE
                                          -> FAIL

SECURITY NOTES:
- Unknown identifier, inactive account and wrong password all raise the
  same AuthenticationFailed("Invalid credentials")
- A bcrypt comparison runs on every attempt, including for unknown accounts
  and legacy hashes, so timing does not reveal which case applied
- Only bcrypt output is ever written as password_hash; a modern hash is
  never replaced by a legacy one
- The upgrade write is a compare-and-swap on the verified legacy hash, so
  concurrent logins cannot tear it or clobber a password reset
"""

from __future__ import annotations

import enum
import hashlib
import hmac
import json
import re
from dataclasses import dataclass
from functools import lru_cache

import bcrypt
from flask import current_app

from ..errors import AuthenticationFailed, NotFoundError, ValidationError
from ..extensions import db
from ..models import Role, User
from ..time_utils import utcnow
from .store import InventoryStore, SqlAlchemyStore, normalize_identifier


DEFAULT_ROUNDS = 10
MIN_PASSWORD_LENGTH = 6

_BCRYPT_RE = re.compile(r"^\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53}$")
_SHA256_HEX_RE = re.compile(r"^[0-9a-f]{64}$")


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


class LoginState(enum.Enum):
    """Terminal states of a login attempt."""
    SUCCESS = "SUCCESS"
    SUCCESS_WITH_UPGRADE = "SUCCESS_WITH_UPGRADE"
    FAIL = "FAIL"


# ---------------------------------------------------------------------------
# Hash formats
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModernHash:
    value: str

    def verify(self, password: str) -> bool:
        return verify_password(password, self.value)


@dataclass(frozen=True)
class LegacyHash:
    value: str

    def verify(self, password: str) -> bool:
        return hmac.compare_digest(legacy_digest(password).encode("ascii"), self.value.encode("ascii"))


@dataclass(frozen=True)
class UnknownHash:
    value: str

    def verify(self, password: str) -> bool:
        return False


HashFormat = ModernHash | LegacyHash | UnknownHash


def detect_hash_format(stored: str | None) -> HashFormat:
    stored = stored or ""
    if _BCRYPT_RE.match(stored):
        return ModernHash(stored)
    if _SHA256_HEX_RE.match(stored):
        return LegacyHash(stored)
    return UnknownHash(stored)


def legacy_digest(password: str) -> str:
    """Unsalted SHA-256 hex digest written by the first-generation seed tooling."""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def validate_password_strength(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if password != password.strip():
        raise PasswordValidationError("Password must not start or end with whitespace")


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Hash password using bcrypt. Stored as a string in the database."""
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against a bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() compares in constant time.
    Malformed hashes verify as False rather than raising.
    """
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


@lru_cache(maxsize=None)
def _dummy_hash(rounds: int) -> str:
    return hash_password("jewelbox-timing-equalizer", rounds=rounds)


# ---------------------------------------------------------------------------
# Credential migrator
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Identity:
    user_id: int
    email: str
    display_name: str
    state: LoginState

    @property
    def upgraded(self) -> bool:
        return self.state is LoginState.SUCCESS_WITH_UPGRADE

    def to_dict(self) -> dict:
        return {"id": self.user_id, "email": self.email, "display_name": self.display_name}


class CredentialMigrator:
    """Authenticates against modern or legacy hashes and upgrades legacy ones."""

    def __init__(self, store: InventoryStore, *, rounds: int = DEFAULT_ROUNDS):
        self.store = store
        self.rounds = rounds
        # Burned on attempts that have no bcrypt hash to check against
        self._dummy_hash = _dummy_hash(rounds)

    def _modern_check(self, stored: HashFormat, password: str) -> bool:
        if isinstance(stored, ModernHash):
            return stored.verify(password)
        verify_password(password, self._dummy_hash)
        return False

    def authenticate(self, identifier: str, password: str) -> Identity:
        """
        Verify a login. Returns the Identity or raises AuthenticationFailed.

        Side effects: success resets failed_logins/locked_until and stamps
        last_login_at; a legacy match also replaces the hash; a wrong
        password increments failed_logins.
        """
        password = password or ""
        record = self.store.find_credential(identifier)
        if record is None or not record.active:
            self._modern_check(UnknownHash(""), password)
            raise AuthenticationFailed()

        stored = detect_hash_format(record.password_hash)

        if self._modern_check(stored, password):
            state = LoginState.SUCCESS
        elif isinstance(stored, LegacyHash) and stored.verify(password):
            state = LoginState.SUCCESS_WITH_UPGRADE
        else:
            state = LoginState.FAIL

        if state is LoginState.FAIL:
            with self.store.atomic():
                self.store.increment_failed_logins(record.identifier)
            raise AuthenticationFailed()

        upgraded_hash = None
        if state is LoginState.SUCCESS_WITH_UPGRADE:
            upgraded_hash = hash_password(password, rounds=self.rounds)

        with self.store.atomic():
            if upgraded_hash is not None:
                swapped = self.store.update_credential(
                    record.identifier,
                    password_hash=upgraded_hash,
                    failed_logins=0,
                    locked_until=None,
                    last_login_at=utcnow(),
                    expected_hash=stored.value,
                )
                if swapped:
                    return Identity(record.user_id, record.identifier, record.display_name, state)
                # Hash changed since we read it (a parallel login upgraded it); the
                # password was verified against the old value, so this is still a success.
            self.store.update_credential(
                record.identifier,
                failed_logins=0,
                locked_until=None,
                last_login_at=utcnow(),
            )
        return Identity(record.user_id, record.identifier, record.display_name, state)


def get_migrator(store: InventoryStore | None = None) -> CredentialMigrator:
    return CredentialMigrator(
        store or SqlAlchemyStore(),
        rounds=current_app.config.get("BCRYPT_ROUNDS", DEFAULT_ROUNDS),
    )


def authenticate(identifier: str, password: str) -> Identity:
    """Login entry point used by routes and the CLI."""
    return get_migrator().authenticate(identifier, password)


# ---------------------------------------------------------------------------
# Account administration
# ---------------------------------------------------------------------------

def _rounds() -> int:
    return current_app.config.get("BCRYPT_ROUNDS", DEFAULT_ROUNDS)


def create_user(email: str, display_name: str, password: str, role_name: str = "Manager") -> User:
    """
    Create a user with a bcrypt hash.

    Raises:
        NotFoundError: role does not exist
        ValidationError: email already taken or password too weak
    """
    email = normalize_identifier(email)
    if not email:
        raise ValidationError("email is required")
    validate_password_strength(password)

    role = db.session.query(Role).filter_by(name=role_name).first()
    if not role:
        raise NotFoundError(f"Role {role_name} not found")

    if db.session.query(User).filter_by(email=email).first():
        raise ValidationError("A user with this email already exists")

    user = User(
        email=email,
        display_name=display_name or email,
        password_hash=hash_password(password, rounds=_rounds()),
        role_id=role.id,
        failed_logins=0,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def set_password(email: str, new_password: str) -> User:
    """Admin reset: new bcrypt hash, counters cleared, account re-activated."""
    validate_password_strength(new_password)
    user = db.session.query(User).filter_by(email=normalize_identifier(email)).first()
    if not user:
        raise NotFoundError("User not found")

    user.password_hash = hash_password(new_password, rounds=_rounds())
    user.failed_logins = 0
    user.locked_until = None
    user.is_active = True
    db.session.commit()
    return user


def create_default_roles() -> list[Role]:
    """Create the Owner and Manager roles if they don't exist."""
    roles = [
        ("Owner", {"createItem": True, "editItem": True, "viewReports": True, "manageUsers": True}),
        ("Manager", {"createItem": True, "editItem": True}),
    ]

    for name, policies in roles:
        existing = db.session.query(Role).filter_by(name=name).first()
        if not existing:
            db.session.add(Role(name=name, policies=json.dumps(policies)))

    db.session.commit()
    return db.session.query(Role).order_by(Role.id).all()
