"""
Invoice routes.

- POST /billing/<project_id>/<billing_id>/invoice : get-or-create (201 when created)
- GET  /invoices/<id>                             : invoice + company + customer
- PUT  /invoices/<id>                             : save VAT choice (no number)
- POST /invoices/<id>/send                        : number + sent + milestone Invoice_sent

Sending returns the webmail compose URL; delivery is the caller's best effort.
"""

from flask import Blueprint, current_app, jsonify
from flask_login import current_user

from ...errors import NotFound
from ...invoicing import find_invoice, get_or_create_invoice, invoice_view, save_invoice, send_invoice
from ...security import staff_required
from ...store import LocalStore
from ...utils import json_body

invoices_bp = Blueprint("invoices", __name__)


@invoices_bp.route("/billing/<project_id>/<billing_id>/invoice", methods=["POST"])
@staff_required
def open_invoice(project_id: str, billing_id: str):
    store = LocalStore()
    invoice, created = get_or_create_invoice(
        store,
        project_id,
        billing_id,
        default_vat_option=current_app.config.get("DEFAULT_VAT_OPTION", "21"),
        worker=current_user.is_worker,
    )
    return jsonify(invoice_view(store, invoice)), 201 if created else 200


@invoices_bp.route("/invoices/<invoice_id>", methods=["GET"])
@staff_required
def get_invoice(invoice_id: str):
    store = LocalStore()
    invoice = find_invoice(store, invoice_id)
    if invoice is None:
        raise NotFound(f"Invoice {invoice_id} not found")
    return jsonify(invoice_view(store, invoice))


@invoices_bp.route("/invoices/<invoice_id>", methods=["PUT"])
@staff_required
def update_invoice(invoice_id: str):
    store = LocalStore()
    invoice = save_invoice(store, invoice_id, json_body().get("vatOption"), worker=current_user.is_worker)
    return jsonify(invoice_view(store, invoice))


@invoices_bp.route("/invoices/<invoice_id>/send", methods=["POST"])
@staff_required
def send(invoice_id: str):
    store = LocalStore()
    result = send_invoice(
        store,
        invoice_id,
        json_body().get("vatOption"),
        compose_base_url=current_app.config["WEBMAIL_COMPOSE_URL"],
        worker=current_user.is_worker,
    )
    payload = invoice_view(store, result.invoice)
    payload["composeUrl"] = result.compose_url
    payload["newlySent"] = result.newly_sent
    return jsonify(payload)
