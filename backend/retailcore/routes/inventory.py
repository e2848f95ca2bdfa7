# Overview: Flask API routes for inventory levels, transfers and low-stock listing.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_auth, require_capability, require_tenant
from ..errors import DomainError
from ..permissions import Capability
from ..services import inventory_service
from ..services.access_service import authorize
from ..validation import parse_int, parse_optional_int, require_json_object


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@inventory_bp.get("/<int:product_id>/<int:location_id>")
@require_tenant
@require_auth
@require_capability(Capability.VIEW_INVENTORY)
def get_level_route(product_id: int, location_id: int):
    """Quantity on hand plus thresholds. A missing record reads as quantity 0."""
    try:
        authorize(g.tenant_scope, g.actor, Capability.VIEW_INVENTORY, location_id)
        record = inventory_service.get_record(g.tenant_scope, product_id, location_id)
        if record is None:
            return jsonify({
                "inventory": {
                    "product_id": product_id,
                    "location_id": location_id,
                    "quantity": 0,
                    "min_stock": 0,
                    "reorder_point": 0,
                    "is_low_stock": True,
                },
            }), 200
        return jsonify({"inventory": record.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to load inventory level")


@inventory_bp.put("/<int:product_id>/<int:location_id>")
@require_tenant
@require_auth
@require_capability(Capability.MANAGE_INVENTORY)
def set_level_route(product_id: int, location_id: int):
    """
    Administrative set of quantity and thresholds.

    Request body: {"quantity": 10, "min_stock": 2, "reorder_point": 3}
    """
    try:
        authorize(g.tenant_scope, g.actor, Capability.MANAGE_INVENTORY, location_id)
        data = require_json_object(request.get_json(silent=True))
        if data.get("quantity") is None:
            return jsonify({"error": "validation_error", "message": "quantity is required"}), 400

        record = inventory_service.upsert_levels(
            g.tenant_scope,
            product_id,
            location_id,
            quantity=parse_int("quantity", data.get("quantity"), minimum=0),
            min_stock=parse_optional_int("min_stock", data.get("min_stock"), minimum=0) or 0,
            reorder_point=parse_optional_int("reorder_point", data.get("reorder_point"), minimum=0) or 0,
            actor_user_id=g.actor.user_id,
        )
        return jsonify({"inventory": record.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to set inventory level")


@inventory_bp.post("/transfer")
@require_tenant
@require_auth
@require_capability(Capability.MANAGE_INVENTORY)
def transfer_route():
    """
    Move stock between two locations.

    Request body: {"product_id", "from_location_id", "to_location_id", "quantity", "reference"?}
    The actor needs access to both locations.
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        product_id = parse_int("product_id", data.get("product_id"), minimum=1)
        from_location_id = parse_int("from_location_id", data.get("from_location_id"), minimum=1)
        to_location_id = parse_int("to_location_id", data.get("to_location_id"), minimum=1)
        quantity = parse_int("quantity", data.get("quantity"), minimum=1)

        authorize(g.tenant_scope, g.actor, Capability.MANAGE_INVENTORY, from_location_id)
        authorize(g.tenant_scope, g.actor, Capability.MANAGE_INVENTORY, to_location_id)

        from_qty, to_qty = inventory_service.transfer(
            g.tenant_scope,
            product_id,
            from_location_id,
            to_location_id,
            quantity,
            reference=data.get("reference"),
            actor_user_id=g.actor.user_id,
        )
        return jsonify({
            "product_id": product_id,
            "from_location_id": from_location_id,
            "from_quantity": from_qty,
            "to_location_id": to_location_id,
            "to_quantity": to_qty,
        }), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to transfer inventory")


@inventory_bp.get("/low-stock")
@require_tenant
@require_auth
@require_capability(Capability.VIEW_INVENTORY)
def low_stock_route():
    """Records at or below their reorder point. Optional ?location_id=."""
    try:
        location_id = parse_optional_int("location_id", request.args.get("location_id"), minimum=1)
        if location_id is not None:
            authorize(g.tenant_scope, g.actor, Capability.VIEW_INVENTORY, location_id)
        records = inventory_service.list_low_stock(g.tenant_scope, location_id)
        return jsonify({"items": [r.to_dict() for r in records], "count": len(records)}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to list low stock")


@inventory_bp.get("/movements")
@require_tenant
@require_auth
@require_capability(Capability.VIEW_INVENTORY)
def movements_route():
    """Stock movement journal, newest first. Optional ?product_id=&location_id=&limit=."""
    try:
        location_id = parse_optional_int("location_id", request.args.get("location_id"), minimum=1)
        if location_id is not None:
            authorize(g.tenant_scope, g.actor, Capability.VIEW_INVENTORY, location_id)
        movements = inventory_service.list_movements(
            g.tenant_scope,
            parse_optional_int("product_id", request.args.get("product_id"), minimum=1),
            location_id,
            limit=min(parse_optional_int("limit", request.args.get("limit"), minimum=1) or 100, 500),
        )
        return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to list stock movements")
