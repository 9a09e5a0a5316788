# Overview: Service-layer operations for reference data; branches, categories and suppliers.

"""
Reference data (branches, categories, suppliers)

Branch and category codes become part of every item code, so seeding is
an upsert keyed on the code: names may be refreshed, codes never change.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Branch, Category, Supplier


DEFAULT_BRANCHES = [
    ("HPI", "Hannah's Ilustre"),
    ("KSB", "Kimsan Bajada"),
    ("HPA", "Hannah's Agdao"),
    ("MAT", "Hannah's Matina"),
    ("HPL", "Hannah's Legaspi"),
    ("BUH", "Kimsan Buhangin"),
]

DEFAULT_CATEGORIES = [
    ("chn", "Chain"),
    ("blet", "Bracelet"),
    ("bgl", "Bangle"),
    ("ear", "Earrings"),
    ("rng", "Ring"),
]

UNKNOWN_SUPPLIER = "Unknown Supplier"


def upsert_branch(code: str, name: str) -> Branch:
    branch = db.session.query(Branch).filter_by(code=code).first()
    if branch:
        branch.name = name
    else:
        branch = Branch(code=code, name=name, is_active=True)
        db.session.add(branch)
    return branch


def upsert_category(code: str, name: str) -> Category:
    category = db.session.query(Category).filter_by(code=code).first()
    if category:
        category.name = name
    else:
        category = Category(code=code, name=name)
        db.session.add(category)
    return category


def seed_reference_data() -> dict:
    """Idempotently create the standard branches, categories and fallback supplier."""
    for code, name in DEFAULT_BRANCHES:
        upsert_branch(code, name)
    for code, name in DEFAULT_CATEGORIES:
        upsert_category(code, name)

    if not db.session.query(Supplier).filter_by(name=UNKNOWN_SUPPLIER).first():
        db.session.add(Supplier(name=UNKNOWN_SUPPLIER, notes="Backfilled"))

    db.session.commit()
    return {
        "branches": db.session.query(Branch).count(),
        "categories": db.session.query(Category).count(),
        "suppliers": db.session.query(Supplier).count(),
    }
