# Overview: Flask API routes for partners (customers and suppliers).

from flask import Blueprint, request, g, current_app

from ..decorators import require_auth, require_permission
from ..models import Partner
from ..models.catalog import PARTNER_TYPES
from ..services import catalog_service
from ..services.activity_service import add_user_activity
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_partner,
    ValidationError,
    ConflictError,
)

PARTNER_POLICY = ModelValidationPolicy(
    writable_fields=set(catalog_service.PARTNER_MUTABLE_FIELDS),
    required_on_create={"name", "type"},
)

partners_bp = Blueprint("partners", __name__, url_prefix="/api/partners")


@partners_bp.get("")
@require_auth
@require_permission("partners", "read")
def list_partners_route():
    type_ = request.args.get("type")
    if type_ and type_ not in PARTNER_TYPES:
        return {"error": f"type must be one of: {', '.join(PARTNER_TYPES)}", "field": "type"}, 400
    partners = catalog_service.list_partners(type_=type_)
    return {"items": [p.to_dict() for p in partners], "count": len(partners)}


@partners_bp.get("/<int:partner_id>")
@require_auth
@require_permission("partners", "read")
def get_partner_route(partner_id: int):
    partner = catalog_service.get_partner(partner_id)
    if partner is None:
        return {"error": "Partner not found"}, 404
    return partner.to_dict()


@partners_bp.post("")
@require_auth
@require_permission("partners", "write")
def create_partner_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Partner, payload=payload, policy=PARTNER_POLICY, partial=False)
        enforce_rules_partner(patch)
        partner = catalog_service.create_partner(patch=patch, user_id=g.current_user.id)
    except ValidationError as e:
        return e.to_dict(), 400
    except Exception:
        current_app.logger.exception("Failed to create partner")
        return {"error": "Internal server error"}, 500

    add_user_activity(g.current_user.id, "create", f"partner {partner.name}", payload)
    return partner.to_dict(), 201


@partners_bp.put("/<int:partner_id>")
@require_auth
@require_permission("partners", "write")
def update_partner_route(partner_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Partner, payload=payload, policy=PARTNER_POLICY, partial=True)
        enforce_rules_partner(patch)
        partner = catalog_service.update_partner(partner_id=partner_id, patch=patch)
    except ValidationError as e:
        return e.to_dict(), 400
    except Exception:
        current_app.logger.exception("Failed to update partner")
        return {"error": "Internal server error"}, 500

    if partner is None:
        return {"error": "Partner not found"}, 404

    add_user_activity(g.current_user.id, "update", f"partner {partner.name}", payload)
    return partner.to_dict()


@partners_bp.delete("/<int:partner_id>")
@require_auth
@require_permission("partners", "delete")
def delete_partner_route(partner_id: int):
    try:
        partner = catalog_service.delete_partner(partner_id)
    except ConflictError as e:
        return {"error": str(e)}, 409

    if partner is None:
        return {"error": "Partner not found"}, 404

    add_user_activity(g.current_user.id, "delete", f"partner {partner.name}", {"partner_id": partner_id})
    return "", 204
