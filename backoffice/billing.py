"""
backoffice/billing.py

Billing milestones of a Project.

Rules:
- clientId, description, a positive amount and a calendar-valid dd/mm/yyyy due date
  are required; the client must be one of the project's primary/secondary clients.
- percentage = round(amount / projectFee * 100) + "%" when projectFee > 0, else "0%".
- invoiceStatus is monotonic: Invoice_pending -> Invoice_sent -> Invoice_paid.
  A regression is ignored (logged), never raised.
- Invoice_paid needs an explicit confirmation (StatusEditor).
- Workers cannot edit or invoice milestones already sent or paid.
- Milestones are never deleted.
- The reconciliation advisory compares the schedule sum with the project fee; it
  never changes anything.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, List, Optional, Union

from . import audit
from .entities import (
    BillingItem,
    INVOICE_PAID,
    INVOICE_PENDING,
    INVOICE_SENT,
    INVOICE_STATUSES,
    Project,
    new_id,
)
from .errors import ConfirmationRequired, NotFound, PermissionDenied, ValidationError, deletion_notice
from .numbers import ZERO, amount_or_zero, format_amount, money, parse_european_number
from .store import PROJECTS, LocalStore
from .utils import Clock, today
from .validation import iso_to_dmy, parse_iso_date, validate_due_date, validate_positive_amount

logger = logging.getLogger(__name__)

EPSILON = Decimal("0.01")

_STATUS_RANK = {status: rank for rank, status in enumerate(INVOICE_STATUSES)}


# ---------------------------------------------------------------------
# Invoice status state machine
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class AwaitingConfirmation:
    next_status: str


EditorState = Union[Idle, AwaitingConfirmation]


def is_regression(current: str, requested: str) -> bool:
    return _STATUS_RANK.get(requested, -1) < _STATUS_RANK.get(current, 0)


class StatusEditor:
    """
    Status selection of one milestone edit.

    - propose(): a regression is ignored; Invoice_paid moves to AwaitingConfirmation.
    - confirm(): accepts the awaited status.
    - cancel(): drops the awaited status, the selection stays as it was.
    """

    def __init__(self, current: str):
        self.current = current
        self.selected = current
        self.state: EditorState = Idle()

    def propose(self, requested: str) -> EditorState:
        if requested not in _STATUS_RANK:
            logger.info("Ignoring unknown invoice status %r", requested)
            return self.state
        if is_regression(self.current, requested):
            logger.info("Ignoring invoice status regression %s -> %s", self.current, requested)
            return self.state
        if requested == INVOICE_PAID and self.selected != INVOICE_PAID:
            self.state = AwaitingConfirmation(requested)
            return self.state
        self.selected = requested
        self.state = Idle()
        return self.state

    def confirm(self) -> str:
        if isinstance(self.state, AwaitingConfirmation):
            self.selected = self.state.next_status
        self.state = Idle()
        return self.selected

    def cancel(self) -> str:
        self.state = Idle()
        return self.selected

    @property
    def awaiting_confirmation(self) -> bool:
        return isinstance(self.state, AwaitingConfirmation)


def resolve_status(current: str, requested: Optional[str], *, confirmed: bool) -> str:
    """
    Status an edit ends with.

    Raises ConfirmationRequired when Invoice_paid was requested without confirmation.
    """
    editor = StatusEditor(current)
    if not requested:
        return current
    editor.propose(requested)
    if editor.awaiting_confirmation:
        if not confirmed:
            raise ConfirmationRequired(editor.state.next_status)
        editor.confirm()
    return editor.selected


def is_locked_for_worker(item: BillingItem) -> bool:
    return item.invoice_status in (INVOICE_SENT, INVOICE_PAID)


# ---------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------
def percentage_of_fee(amount: Decimal, project_fee) -> str:
    fee = parse_european_number(project_fee)
    if fee is None or fee <= 0:
        return "0%"
    ratio = (amount / fee * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return f"{ratio}%"


class ReconciliationStatus(str, Enum):
    OVERPASSED = "Overpassed agreed fee"
    PLANNED = "Successfully Planned"
    OUTSTANDING = "Outstanding billing milestones"


def schedule_total(project: Project) -> Decimal:
    return sum((amount_or_zero(item.amount) for item in project.billing_schedule), ZERO)


def reconcile(project: Project) -> Optional[ReconciliationStatus]:
    """Advisory comparison of the schedule sum with the fee; None when the fee is not positive."""
    fee = parse_european_number(project.fee)
    if fee is None or fee <= 0:
        return None
    total = schedule_total(project)
    if total > fee:
        return ReconciliationStatus.OVERPASSED
    if abs(total - fee) < EPSILON:
        return ReconciliationStatus.PLANNED
    return ReconciliationStatus.OUTSTANDING


def reconciliation_summary(project: Project) -> dict:
    status = reconcile(project)
    fee = amount_or_zero(project.fee)
    total = schedule_total(project)
    return {
        "status": status.value if status else None,
        "isError": status is ReconciliationStatus.OVERPASSED,
        "scheduled": format_amount(money(total)),
        "fee": format_amount(money(fee)),
        "difference": format_amount(money(fee - total)),
    }


# ---------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------
def customer_name(customers: List[dict], client_id: str) -> str:
    for customer in customers:
        if str(customer.get("id")) == client_id:
            return customer.get("name") or client_id
    return client_id


def resolve_client_id(project: Project, item: BillingItem, customers: List[dict]) -> str:
    """Stored id first; legacy items are matched by name, then the first primary client."""
    if item.client_id:
        return item.client_id
    for cid in project.client_ids:
        if customer_name(customers, cid) == item.client_name:
            return cid
    return project.primary_clients[0] if project.primary_clients else ""


# ---------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------
@dataclass
class MilestoneInput:
    client_id: str
    description: str
    amount: Decimal
    due_date: str
    invoice_status: Optional[str] = None
    confirmed: bool = False


def validate_milestone(project: Project, data: dict) -> MilestoneInput:
    """Raise ValidationError with per-field messages; nothing is applied."""
    errors: Dict[str, str] = {}

    client_id = str(data.get("clientId") or "").strip()
    if not client_id:
        errors["clientId"] = "Client is required"
    elif client_id not in project.client_ids:
        errors["clientId"] = "Client is not part of this project"

    description = str(data.get("description") or "").strip()
    if not description:
        errors["description"] = "Description is required"

    amount = validate_positive_amount(errors, data.get("amount"))
    due_date = validate_due_date(errors, data.get("dueDate"))

    if errors:
        raise ValidationError(errors)

    return MilestoneInput(
        client_id=client_id,
        description=description,
        amount=amount,
        due_date=due_date,
        invoice_status=(str(data.get("invoiceStatus")).strip() if data.get("invoiceStatus") else None),
        confirmed=bool(data.get("confirm")),
    )


# ---------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------
def _find_project(projects: List[Project], project_id: str) -> Project:
    project = next((p for p in projects if p.id == project_id), None)
    if project is None:
        raise NotFound(f"Project {project_id} not found")
    return project


def _find_item(project: Project, billing_id: str) -> BillingItem:
    item = project.find_billing(billing_id)
    if item is None:
        raise NotFound(f"Billing milestone {billing_id} not found")
    return item


def add_milestone(store: LocalStore, project_id: str, data: dict) -> BillingItem:
    with store.transaction():
        projects = store.projects()
        project = _find_project(projects, project_id)
        values = validate_milestone(project, data)

        item = BillingItem(
            id=new_id("billing"),
            percentage=percentage_of_fee(values.amount, project.fee),
            client_id=values.client_id,
            client_name=customer_name(store.customers(), values.client_id),
            due_date=values.due_date,
            amount=format_amount(money(values.amount)),
            invoice_status=INVOICE_PENDING,
            description=values.description,
        )
        project.billing_schedule.append(item)
        store.save_projects(projects)
        audit.log_document_change(PROJECTS, f"{project.id}/{item.id}", audit.ACTION_CREATE, after=item.to_dict())

    logger.info("Added billing milestone %s to %s (%s)", item.id, project_id, item.amount)
    return item


def edit_milestone(
    store: LocalStore,
    project_id: str,
    billing_id: str,
    data: dict,
    *,
    worker: bool = False,
) -> BillingItem:
    """
    Re-validate and recompute the percentage from the (possibly changed) amount.

    Raises ConfirmationRequired (nothing saved) when Invoice_paid is requested
    without ``confirm: true``.
    """
    with store.transaction():
        projects = store.projects()
        project = _find_project(projects, project_id)
        item = _find_item(project, billing_id)
        if worker and is_locked_for_worker(item):
            raise PermissionDenied("Workers cannot edit milestones already sent or paid")

        values = validate_milestone(project, data)
        status = resolve_status(item.invoice_status, values.invoice_status, confirmed=values.confirmed)

        before = item.to_dict()
        item.client_id = values.client_id
        item.client_name = customer_name(store.customers(), values.client_id)
        item.description = values.description
        item.amount = format_amount(money(values.amount))
        item.percentage = percentage_of_fee(values.amount, project.fee)
        item.due_date = values.due_date
        item.invoice_status = status

        store.save_projects(projects)
        audit.log_document_change(
            PROJECTS, f"{project.id}/{item.id}", audit.ACTION_UPDATE, before=before, after=item.to_dict()
        )

    logger.info("Updated billing milestone %s of %s (status=%s)", billing_id, project_id, item.invoice_status)
    return item


def duplicate_milestone(store: LocalStore, project_id: str, billing_id: str) -> BillingItem:
    """New pending milestone pre-filled from an existing one."""
    with store.transaction():
        projects = store.projects()
        project = _find_project(projects, project_id)
        source = _find_item(project, billing_id)
        client_id = resolve_client_id(project, source, store.customers())
        amount = amount_or_zero(source.amount)

        copy = replace(
            source,
            id=new_id("billing"),
            client_id=client_id or None,
            client_name=customer_name(store.customers(), client_id) if client_id else source.client_name,
            percentage=percentage_of_fee(amount, project.fee),
            invoice_status=INVOICE_PENDING,
            extra=dict(source.extra),
        )
        project.billing_schedule.append(copy)
        store.save_projects(projects)
        audit.log_document_change(PROJECTS, f"{project.id}/{copy.id}", audit.ACTION_CREATE, after=copy.to_dict())

    logger.info("Duplicated billing milestone %s of %s as %s", billing_id, project_id, copy.id)
    return copy


def mark_invoice_sent(project: Project, billing_id: str) -> Optional[BillingItem]:
    """In-memory update used by invoice send; the caller persists."""
    item = project.find_billing(billing_id)
    if item is None:
        return None
    if is_regression(item.invoice_status, INVOICE_SENT):
        logger.info("Billing %s already %s; not moved back to sent", billing_id, item.invoice_status)
        return item
    item.invoice_status = INVOICE_SENT
    return item


def delete_milestone(store: LocalStore, project_id: str, billing_id: str) -> str:
    """Refused by policy: returns the notice, never mutates."""
    logger.info("Refused delete of billing milestone %s on %s", billing_id, project_id)
    return deletion_notice("billing")


def edit_form(project: Project, item: BillingItem, customers: List[dict]) -> dict:
    """Values an edit form starts from (dates as dd/mm/yyyy)."""
    return {
        "clientId": resolve_client_id(project, item, customers),
        "description": item.description or "",
        "amount": format_amount(amount_or_zero(item.amount)),
        "dueDate": iso_to_dmy(item.due_date),
        "invoiceStatus": item.invoice_status,
    }


# ---------------------------------------------------------------------
# Listing / statistics
# ---------------------------------------------------------------------
@dataclass
class BillingRow:
    project: Project
    item: BillingItem
    client_name: str = ""

    def to_dict(self) -> dict:
        data = self.item.to_dict()
        data.update(
            {
                "projectId": self.project.id,
                "projectName": self.project.title,
                "clientName": self.client_name or self.item.client_name,
            }
        )
        return data


def is_overdue(item: BillingItem, on: date) -> bool:
    due = parse_iso_date(item.due_date)
    return due is not None and due < on and item.invoice_status != INVOICE_PAID


def billing_rows(projects: List[Project], customers: List[dict]) -> List[BillingRow]:
    return [
        BillingRow(project, item, item.client_display_name(customers))
        for project in projects
        for item in project.billing_schedule
    ]


def filter_rows(
    rows: List[BillingRow],
    *,
    status: Optional[str] = None,
    overdue_only: bool = False,
    search: str = "",
    clock: Clock | None = None,
) -> List[BillingRow]:
    on = today(clock)
    needle = (search or "").strip().lower()
    out = []
    for row in rows:
        item = row.item
        if status and status != "All" and item.invoice_status != status:
            continue
        if overdue_only and not is_overdue(item, on):
            continue
        if needle:
            haystack = " ".join(
                [
                    row.project.title or "",
                    row.client_name or item.client_name or "",
                    item.description or "",
                    item.amount or "",
                    iso_to_dmy(item.due_date),
                    item.invoice_status or "",
                ]
            ).lower()
            if needle not in haystack:
                continue
        out.append(row)
    return out


@dataclass
class BillingStatistics:
    counts: Dict[str, int] = field(default_factory=dict)
    totals: Dict[str, Decimal] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "counts": dict(self.counts),
            "totals": {k: format_amount(money(v)) for k, v in self.totals.items()},
        }


def statistics(rows: List[BillingRow], *, clock: Clock | None = None) -> BillingStatistics:
    on = today(clock)
    buckets = {"pending": INVOICE_PENDING, "sent": INVOICE_SENT, "paid": INVOICE_PAID}
    stats = BillingStatistics(
        counts={name: 0 for name in (*buckets, "overdue")},
        totals={name: ZERO for name in (*buckets, "overdue")},
    )
    for row in rows:
        amount = amount_or_zero(row.item.amount)
        for name, status in buckets.items():
            if row.item.invoice_status == status:
                stats.counts[name] += 1
                stats.totals[name] += amount
        if is_overdue(row.item, on):
            stats.counts["overdue"] += 1
            stats.totals["overdue"] += amount
    return stats
