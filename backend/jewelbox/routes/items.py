# Overview: Flask API routes for inventory items; parses input and returns JSON responses.

# backend/jewelbox/routes/items.py
"""
Item API routes

Codes are issued by the sequence allocator only; clients never send
type_seq or item_code. A 409 means the allocation lost a race too many
times and the whole request should be retried.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import ConflictError, JewelboxError, StoreUnavailableError
from ..services import inventory_service
from ..services.sequence_service import get_allocator


items_bp = Blueprint("items", __name__, url_prefix="/api/items")


def _error_response(e: JewelboxError):
    if isinstance(e, ConflictError):
        current_app.logger.warning("Item code allocation conflict: %s", e)
    elif isinstance(e, StoreUnavailableError):
        current_app.logger.warning("Store unavailable: %s", e)
    return jsonify({"error": str(e)}), e.status_code


@items_bp.get("/next-seq")
def next_seq_route():
    """
    Preview the next code(s) for a bucket without reserving anything.

    Query params: branch_id, category_id (required), count (optional, default 1)
    """
    try:
        branch_id = request.args.get("branch_id", type=int)
        category_id = request.args.get("category_id", type=int)
        count = request.args.get("count", default=1, type=int)

        if not branch_id or not category_id:
            return jsonify({"error": "branch_id and category_id required"}), 400

        allocator = get_allocator()
        preview = allocator.preview(branch_id, category_id, count)
        return jsonify({
            "next_seq": preview[0].seq,
            "preview": [p.to_dict() for p in preview],
        }), 200

    except JewelboxError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to preview next sequence")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.post("")
def create_items_route():
    """
    Create one or more items in a bucket.

    Body: {"branch_id": int, "category_id": int, "count": int, "item": {...}}
    """
    try:
        data = request.get_json(silent=True) or {}
        branch_id = data.get("branch_id")
        category_id = data.get("category_id")
        count = data.get("count", 1)

        if not all([branch_id, category_id]):
            return jsonify({"error": "branch_id and category_id required"}), 400

        items = inventory_service.create_items(branch_id, category_id, data.get("item") or {}, count)
        return jsonify({"items": [item.to_dict() for item in items]}), 201

    except JewelboxError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create items")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.get("")
def list_items_route():
    try:
        result = inventory_service.list_items(
            q=request.args.get("q"),
            status=request.args.get("status"),
            branch_id=request.args.get("branch_id", type=int),
            category_id=request.args.get("category_id", type=int),
            page=request.args.get("page", default=1, type=int),
            per_page=request.args.get("per_page", default=inventory_service.DEFAULT_PER_PAGE, type=int),
        )
        return jsonify(result), 200
    except JewelboxError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list items")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.get("/<int:item_id>")
def get_item_route(item_id: int):
    try:
        return jsonify({"item": inventory_service.get_item(item_id).to_dict()}), 200
    except JewelboxError as e:
        return _error_response(e)


@items_bp.patch("/<int:item_id>")
def update_item_route(item_id: int):
    try:
        item = inventory_service.update_item(item_id, request.get_json(silent=True))
        return jsonify({"item": item.to_dict()}), 200
    except JewelboxError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.delete("/<int:item_id>")
def remove_item_route(item_id: int):
    """Soft delete; the item's number stays taken."""
    try:
        item = inventory_service.remove_item(item_id)
        return jsonify({"item": item.to_dict(), "message": "Item removed"}), 200
    except JewelboxError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.post("/backfill")
def backfill_route():
    """Assign codes to every item still missing one. Safe to repeat."""
    try:
        report = get_allocator().backfill_all()
        current_app.logger.info("Backfill assigned %d item codes", len(report.assigned))
        return jsonify(report.to_dict()), 200
    except JewelboxError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to backfill item codes")
        return jsonify({"error": "Internal server error"}), 500
