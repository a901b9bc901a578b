"""
backoffice/invoicing.py

Invoices generated from billing milestones.

Rules:
- At most one Invoice per BillingItem, created lazily on first view with number "".
- The number is assigned once, when the invoice is sent: "<year>/<seq>", seq being
  1 + the highest sequence among invoices already sent that year, padded to 3 digits.
- Sending stamps the date, sets status "sent" and moves the originating milestone to
  Invoice_sent, all in ONE store transaction.
- VAT is a fixed simplification: "21" => 21 % of the amount, "exempt" => 0.
- Saving without sending stores vatOption/vatAmount/total only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple
from urllib.parse import quote

from . import audit
from .billing import is_locked_for_worker, mark_invoice_sent
from .entities import (
    INVOICE_DOC_SENT,
    Invoice,
    Project,
    VAT_21,
    VAT_EXEMPT,
    VAT_OPTIONS,
    new_id,
)
from .errors import NotFound, PermissionDenied, ValidationError
from .numbers import ZERO, amount_or_zero, format_amount, money
from .store import INVOICES, PROJECTS, LocalStore
from .utils import Clock, to_iso, utcnow

logger = logging.getLogger(__name__)

VAT_RATE = Decimal("0.21")

EMAIL_BODY = "Please find the invoice attached.\n\nNOTE: Attach the PDF you saved from the print dialog."


def compute_vat(taxable_base: Decimal, vat_option: str) -> Tuple[Decimal, Decimal]:
    """(vatAmount, total) for a taxable base."""
    if vat_option == VAT_21:
        vat = money(taxable_base * VAT_RATE)
        return vat, money(taxable_base) + vat
    return ZERO, money(taxable_base)


def _sequence(number: str) -> int:
    _, _, seq = (number or "").partition("/")
    return int(seq) if seq.isdigit() else 0


def next_invoice_number(invoices: List[Invoice], year: int) -> str:
    prefix = f"{year}/"
    sent_this_year = [inv for inv in invoices if inv.is_sent and (inv.number or "").startswith(prefix)]
    highest = max((_sequence(inv.number) for inv in sent_this_year), default=0)
    return f"{year}/{highest + 1:03d}"


def compose_url(base_url: str, number: str) -> str:
    """Pre-filled webmail compose link (best effort, no delivery feedback)."""
    return f"{base_url}&su={quote(f'Invoice {number}')}&body={quote(EMAIL_BODY)}"


def _validate_vat_option(vat_option) -> str:
    value = str(vat_option or "").strip()
    if value not in VAT_OPTIONS:
        raise ValidationError({"vatOption": f"VAT option must be {VAT_21} or {VAT_EXEMPT}"})
    return value


def _find_project(projects: List[Project], project_id: str) -> Project:
    project = next((p for p in projects if p.id == project_id), None)
    if project is None:
        raise NotFound(f"Project {project_id} not found")
    return project


def _find_invoice(invoices: List[Invoice], invoice_id: str) -> Invoice:
    invoice = next((inv for inv in invoices if inv.id == invoice_id), None)
    if invoice is None:
        raise NotFound(f"Invoice {invoice_id} not found")
    return invoice


def _check_worker(store: LocalStore, invoice: Invoice, worker: bool) -> None:
    if not worker:
        return
    project = next((p for p in store.projects() if p.id == invoice.project_id), None)
    item = project.find_billing(invoice.billing_id) if project else None
    if item is not None and is_locked_for_worker(item):
        raise PermissionDenied("Workers cannot invoice milestones already sent or paid")


# ---------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------
def get_or_create_invoice(
    store: LocalStore,
    project_id: str,
    billing_id: str,
    *,
    default_vat_option: str = VAT_21,
    worker: bool = False,
    clock: Clock | None = None,
) -> Tuple[Invoice, bool]:
    """Return (invoice, created). A new invoice is persisted immediately."""
    with store.transaction():
        invoices = store.invoices()
        existing = next((inv for inv in invoices if inv.billing_id == billing_id), None)
        if existing is not None:
            return existing, False

        project = _find_project(store.projects(), project_id)
        item = project.find_billing(billing_id)
        if item is None:
            raise NotFound(f"Billing milestone {billing_id} not found")
        if worker and is_locked_for_worker(item):
            raise PermissionDenied("Workers cannot invoice milestones already sent or paid")

        vat_option = default_vat_option if default_vat_option in VAT_OPTIONS else VAT_21
        vat, total = compute_vat(amount_or_zero(item.amount), vat_option)
        invoice = Invoice(
            id=new_id("invoice"),
            billing_id=billing_id,
            project_id=project.id,
            project_name=project.title,
            description=item.description,
            amount=item.amount,
            client_name=item.client_display_name(store.customers()),
            date=to_iso((clock or utcnow)()),
            number="",
            vat_option=vat_option,
            vat_amount=format_amount(vat),
            total=format_amount(total),
        )
        invoices.append(invoice)
        store.save_invoices(invoices)
        audit.log_document_change(INVOICES, invoice.id, audit.ACTION_CREATE, after=invoice.to_dict())

    logger.info("Created invoice %s for billing %s", invoice.id, billing_id)
    return invoice, True


def save_invoice(store: LocalStore, invoice_id: str, vat_option, *, worker: bool = False) -> Invoice:
    """Persist the VAT choice and its amounts; no number, no billing status change."""
    vat_option = _validate_vat_option(vat_option)
    with store.transaction():
        invoices = store.invoices()
        invoice = _find_invoice(invoices, invoice_id)
        _check_worker(store, invoice, worker)
        before = invoice.to_dict()

        vat, total = compute_vat(amount_or_zero(invoice.amount), vat_option)
        invoice.vat_option = vat_option
        invoice.vat_amount = format_amount(vat)
        invoice.total = format_amount(total)

        store.save_invoices(invoices)
        audit.log_document_change(INVOICES, invoice.id, audit.ACTION_UPDATE, before=before, after=invoice.to_dict())
    return invoice


@dataclass
class SendResult:
    invoice: Invoice
    compose_url: str
    newly_sent: bool


def send_invoice(
    store: LocalStore,
    invoice_id: str,
    vat_option=None,
    *,
    compose_base_url: str,
    worker: bool = False,
    clock: Clock | None = None,
) -> SendResult:
    """
    Issue the invoice: number, date, status "sent", and the milestone moves to
    Invoice_sent in the same commit.

    An invoice already sent keeps its number and date.
    """
    with store.transaction():
        invoices = store.invoices()
        invoice = _find_invoice(invoices, invoice_id)

        if invoice.is_sent and invoice.number:
            logger.info("Invoice %s already sent as %s; keeping its number", invoice.id, invoice.number)
            return SendResult(invoice, compose_url(compose_base_url, invoice.number), False)

        _check_worker(store, invoice, worker)
        option = _validate_vat_option(vat_option if vat_option is not None else invoice.vat_option)
        before = invoice.to_dict()
        moment = (clock or utcnow)()

        vat, total = compute_vat(amount_or_zero(invoice.amount), option)
        invoice.number = next_invoice_number(invoices, moment.year)
        invoice.date = to_iso(moment)
        invoice.status = INVOICE_DOC_SENT
        invoice.vat_option = option
        invoice.vat_amount = format_amount(vat)
        invoice.total = format_amount(total)
        store.save_invoices(invoices)

        projects = store.projects()
        project = next((p for p in projects if p.id == invoice.project_id), None)
        item = mark_invoice_sent(project, invoice.billing_id) if project is not None else None
        if item is not None:
            store.save_projects(projects)
            audit.log_document_change(
                PROJECTS, f"{project.id}/{item.id}", audit.ACTION_UPDATE, after=item.to_dict()
            )
        else:
            logger.warning("Invoice %s sent but billing %s was not found", invoice.id, invoice.billing_id)

        audit.log_document_change(INVOICES, invoice.id, audit.ACTION_SEND, before=before, after=invoice.to_dict())

    logger.info("Sent invoice %s as %s (total=%s)", invoice.id, invoice.number, invoice.total)
    return SendResult(invoice, compose_url(compose_base_url, invoice.number), True)


def invoice_view(store: LocalStore, invoice: Invoice) -> dict:
    """Invoice payload with the issuing company and the customer (matched by name)."""
    customer = next((c for c in store.customers() if c.get("name") == invoice.client_name), None)
    taxable = amount_or_zero(invoice.amount)
    vat, total = compute_vat(taxable, invoice.vat_option)
    return {
        "invoice": invoice.to_dict(),
        "company": store.company_settings(),
        "customer": customer,
        "taxableBase": format_amount(money(taxable)),
        "vatAmount": format_amount(vat),
        "total": format_amount(total),
    }


def find_invoice(store: LocalStore, invoice_id: str) -> Optional[Invoice]:
    return next((inv for inv in store.invoices() if inv.id == invoice_id), None)
