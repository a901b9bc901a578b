"""
backoffice/financials.py

Per-client financial line items of a Proposal, and the Proposal/Service save flows.

Rules:
- totalFunding = grant + loan + equity
- fee = grant*grantFee/100 + loan*loanFee/100 + equity*equityFee/100
- Missing/invalid inputs count as 0 in these sums only.
- Both outputs are stored with exactly 2 decimals.
- Proposal.budgetFunding / Proposal.fee are re-summed from the client records at
  save time (never adjusted incrementally).
"""

from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from . import audit
from .entities import (
    ClientFinancials,
    Proposal,
    PROPOSAL_STATUSES,
    Service,
    SERVICE_STATUSES,
    new_id,
)
from .errors import NotFound, ValidationError
from .numbers import ZERO, amount_or_zero, format_amount, money, parse_european_number
from .store import PROPOSALS, SERVICES, LocalStore
from .utils import Clock, to_iso, utcnow

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)

# Editable inputs of a client record (outputs are derived)
INPUT_FIELDS = ("budget", "grant", "grant_fee", "loan", "loan_fee", "equity", "equity_fee")


# ---------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------
def total_funding(record: ClientFinancials) -> Decimal:
    return amount_or_zero(record.grant) + amount_or_zero(record.loan) + amount_or_zero(record.equity)


def computed_fee(record: ClientFinancials) -> Decimal:
    return (
        amount_or_zero(record.grant) * amount_or_zero(record.grant_fee) / HUNDRED
        + amount_or_zero(record.loan) * amount_or_zero(record.loan_fee) / HUNDRED
        + amount_or_zero(record.equity) * amount_or_zero(record.equity_fee) / HUNDRED
    )


def recompute(record: ClientFinancials) -> ClientFinancials:
    """Return a copy with totalFunding and fee derived from the inputs."""
    return replace(
        record,
        total_funding=format_amount(money(total_funding(record))),
        fee=format_amount(money(computed_fee(record))),
    )


def edit_field(record: ClientFinancials, field_name: str, value: str) -> ClientFinancials:
    """Apply one field edit and recompute the outputs, as the form does on every keystroke."""
    if field_name not in INPUT_FIELDS:
        raise ValueError(f"Unknown financial field: {field_name}")
    return recompute(replace(record, **{field_name: "" if value is None else str(value)}))


def _financials_from_payload(client_id: str, raw) -> ClientFinancials:
    record = ClientFinancials.from_dict(raw if isinstance(raw, dict) else {})
    record.client_id = client_id
    return recompute(record)


# ---------------------------------------------------------------------
# Proposal aggregates
# ---------------------------------------------------------------------
def proposal_totals(proposal: Proposal) -> Tuple[Decimal, Decimal]:
    """(budgetFunding, fee) summed over every listed client's record."""
    budget = ZERO
    fee = ZERO
    for client_id in proposal.primary_clients:
        record = proposal.primary_clients_financials.get(client_id)
        if record is not None:
            budget += amount_or_zero(record.total_funding)
            fee += amount_or_zero(record.fee)
    for client_id in proposal.secondary_clients:
        record = proposal.secondary_clients_financials.get(client_id)
        if record is not None:
            budget += amount_or_zero(record.total_funding)
            fee += amount_or_zero(record.fee)
    return budget, fee


def apply_aggregates(proposal: Proposal) -> Proposal:
    """Recompute each client record, drop records of unlisted clients, then re-sum."""
    proposal.primary_clients_financials = {
        cid: recompute(proposal.primary_clients_financials[cid])
        for cid in proposal.primary_clients
        if cid in proposal.primary_clients_financials
    }
    proposal.secondary_clients_financials = {
        cid: recompute(proposal.secondary_clients_financials[cid])
        for cid in proposal.secondary_clients
        if cid in proposal.secondary_clients_financials
    }
    budget, fee = proposal_totals(proposal)
    proposal.budget_funding = format_amount(money(budget))
    proposal.fee = format_amount(money(fee))
    return proposal


def _id_list(value) -> List[str]:
    if not isinstance(value, list):
        return []
    seen: List[str] = []
    for item in value:
        text = str(item).strip() if item is not None else ""
        if text and text not in seen:
            seen.append(text)
    return seen


def validate_proposal(data: dict) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    if not str(data.get("proposal") or "").strip():
        errors["proposal"] = "Proposal Name is required"
    if not str(data.get("callId") or "").strip():
        errors["callId"] = "Associated Call is required"
    status = str(data.get("status") or "").strip()
    if not status:
        errors["status"] = "Status is required"
    elif status not in PROPOSAL_STATUSES:
        errors["status"] = "Status is not valid"
    if not _id_list(data.get("primaryClients")):
        errors["primaryClients"] = "At least one Primary Client is required"
    return errors


def save_proposal(
    store: LocalStore,
    data: dict,
    *,
    proposal_id: Optional[str] = None,
    clock: Clock | None = None,
) -> Proposal:
    """
    Create (proposal_id=None) or replace a Proposal.

    Raises ValidationError (nothing written) or NotFound.
    """
    errors = validate_proposal(data)
    if errors:
        raise ValidationError(errors)

    call_id = str(data.get("callId")).strip()
    primary = _id_list(data.get("primaryClients"))
    secondary = [cid for cid in _id_list(data.get("secondaryClients")) if cid not in primary]
    primary_raw = data.get("primaryClientsFinancials") or {}
    secondary_raw = data.get("secondaryClientsFinancials") or {}

    with store.transaction():
        proposals = store.proposals()
        existing = None
        if proposal_id is not None:
            existing = next((p for p in proposals if p.id == proposal_id), None)
            if existing is None:
                raise NotFound(f"Proposal {proposal_id} not found")

        call = next((c for c in store.calls() if str(c.get("id")) == call_id), None)
        proposal = Proposal(
            id=existing.id if existing else new_id("proposal"),
            title=str(data.get("proposal")).strip(),
            call=(call or {}).get("name") or call_id,
            call_id=call_id,
            primary_clients=primary,
            secondary_clients=secondary,
            status=str(data.get("status")).strip(),
            created_at=(existing.created_at if existing else None) or to_iso((clock or utcnow)()),
            internal_notes=str(data.get("internalNotes") or "").strip() or None,
            primary_clients_financials={
                cid: _financials_from_payload(cid, primary_raw.get(cid)) for cid in primary
            },
            secondary_clients_financials={
                cid: _financials_from_payload(cid, secondary_raw.get(cid)) for cid in secondary
            },
            extra=dict(existing.extra) if existing else {},
        )
        apply_aggregates(proposal)

        if existing:
            proposals = [proposal if p.id == existing.id else p for p in proposals]
        else:
            proposals.append(proposal)
        store.save_proposals(proposals)
        audit.log_document_change(
            PROPOSALS,
            proposal.id,
            audit.ACTION_UPDATE if existing else audit.ACTION_CREATE,
            before=existing.to_dict() if existing else None,
            after=proposal.to_dict(),
        )

    logger.info("Saved proposal %s (status=%s, fee=%s)", proposal.id, proposal.status, proposal.fee)
    return proposal


# ---------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------
def validate_service(data: dict) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    if not str(data.get("title") or "").strip():
        errors["title"] = "Title is required"
    if not str(data.get("primaryClient") or "").strip():
        errors["primaryClient"] = "Primary Client is required"
    if not str(data.get("service") or "").strip():
        errors["service"] = "Service is required"

    raw_fee = str(data.get("fee") or "").strip()
    if not raw_fee:
        errors["fee"] = "Fee is required"
    else:
        fee = parse_european_number(raw_fee)
        if fee is None or fee < 0:
            errors["fee"] = "Fee must be a valid positive number"

    status = str(data.get("status") or "").strip()
    if not status:
        errors["status"] = "Status is required"
    elif status not in SERVICE_STATUSES:
        errors["status"] = "Status is not valid"
    return errors


def save_service(store: LocalStore, data: dict, *, service_id: Optional[str] = None) -> Service:
    errors = validate_service(data)
    if errors:
        raise ValidationError(errors)

    primary = str(data.get("primaryClient")).strip()
    secondary = str(data.get("secondaryClient") or "").strip() or None
    if secondary == primary:
        secondary = None

    with store.transaction():
        services = store.services()
        existing = None
        if service_id is not None:
            existing = next((s for s in services if s.id == service_id), None)
            if existing is None:
                raise NotFound(f"Service {service_id} not found")

        service = Service(
            id=existing.id if existing else new_id("service"),
            title=str(data.get("title")).strip(),
            primary_client=primary,
            secondary_client=secondary,
            service=str(data.get("service")).strip(),
            fee=format_amount(money(parse_european_number(data.get("fee")))),
            status=str(data.get("status")).strip(),
            internal_notes=str(data.get("internalNotes") or "").strip() or None,
            extra=dict(existing.extra) if existing else {},
        )

        if existing:
            services = [service if s.id == existing.id else s for s in services]
        else:
            services.append(service)
        store.save_services(services)
        audit.log_document_change(
            SERVICES,
            service.id,
            audit.ACTION_UPDATE if existing else audit.ACTION_CREATE,
            before=existing.to_dict() if existing else None,
            after=service.to_dict(),
        )

    logger.info("Saved service %s (status=%s)", service.id, service.status)
    return service
