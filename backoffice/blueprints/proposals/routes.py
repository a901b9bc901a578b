"""
Proposals, Services and the master data deletes.

Rules:
- Saving a Proposal re-derives its client financials and aggregates server-side;
  the UI's computed values are never trusted.
- Saving a Proposal/Service with status Granted materializes its Project (through
  the document_changed signal, see backoffice/derivation.py).
- Deletes of Customers, Calls, Proposals and Services are refused with a notice.
"""

import logging

from flask import Blueprint, jsonify

from ...errors import deletion_notice
from ...financials import save_proposal, save_service
from ...security import staff_required
from ...store import LocalStore
from ...utils import json_body

logger = logging.getLogger(__name__)

proposals_bp = Blueprint("proposals", __name__)


def _refused(entity: str, entity_id: str):
    logger.info("Refused delete of %s %s", entity, entity_id)
    return jsonify({"notice": deletion_notice(entity)}), 403


# ---------------------------------------------------------------------
# PROPOSALS
# ---------------------------------------------------------------------

@proposals_bp.route("/proposals", methods=["GET"])
@staff_required
def list_proposals():
    return jsonify([p.to_dict() for p in LocalStore().proposals()])


@proposals_bp.route("/proposals", methods=["POST"])
@staff_required
def create_proposal():
    proposal = save_proposal(LocalStore(), json_body())
    return jsonify(proposal.to_dict()), 201


@proposals_bp.route("/proposals/<proposal_id>", methods=["PUT"])
@staff_required
def update_proposal(proposal_id: str):
    proposal = save_proposal(LocalStore(), json_body(), proposal_id=proposal_id)
    return jsonify(proposal.to_dict())


@proposals_bp.route("/proposals/<proposal_id>", methods=["DELETE"])
@staff_required
def delete_proposal(proposal_id: str):
    return _refused("proposal", proposal_id)


# ---------------------------------------------------------------------
# SERVICES
# ---------------------------------------------------------------------

@proposals_bp.route("/services", methods=["GET"])
@staff_required
def list_services():
    return jsonify([s.to_dict() for s in LocalStore().services()])


@proposals_bp.route("/services", methods=["POST"])
@staff_required
def create_service():
    service = save_service(LocalStore(), json_body())
    return jsonify(service.to_dict()), 201


@proposals_bp.route("/services/<service_id>", methods=["PUT"])
@staff_required
def update_service(service_id: str):
    service = save_service(LocalStore(), json_body(), service_id=service_id)
    return jsonify(service.to_dict())


@proposals_bp.route("/services/<service_id>", methods=["DELETE"])
@staff_required
def delete_service(service_id: str):
    return _refused("service", service_id)


# ---------------------------------------------------------------------
# MASTER DATA (append-only)
# ---------------------------------------------------------------------

@proposals_bp.route("/customers/<customer_id>", methods=["DELETE"])
@staff_required
def delete_customer(customer_id: str):
    return _refused("customer", customer_id)


@proposals_bp.route("/calls/<call_id>", methods=["DELETE"])
@staff_required
def delete_call(call_id: str):
    return _refused("call", call_id)
