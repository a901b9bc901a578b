"""
backoffice/derivation.py

Project derivation: one Project per Granted Proposal/Service, created exactly once.

Rules:
- The Project id is derive_project_id(source.project_key); existence of that id is
  checked before insertion, so running a pass any number of times is idempotent.
- Existing projects are never overwritten or regenerated: new projects are appended
  to the stored collection, whose existing items are written back untouched.
- Nothing is written when a pass creates nothing.
- One-shot: a Project is a snapshot of its source at derivation time. Later edits
  of the source (fee, clients...) do not flow into it.

Triggers:
- document_changed for "proposals" / "otherServices" (in-process writes).
- A coarse poll (DERIVATION_POLL_SECONDS) for writes made by other processes.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Set

from flask import current_app, has_app_context

from . import audit
from .entities import (
    PROJECT_ONGOING,
    Project,
    Proposal,
    Service,
    SourceKind,
    STATUS_GRANTED,
    derive_project_id,
)
from .events import document_changed
from .store import PROJECTS, PROPOSALS, SERVICES, LocalStore
from .utils import Clock, to_iso, today_iso, utcnow

logger = logging.getLogger(__name__)

TRIGGER_KEYS = (PROPOSALS, SERVICES)


def project_from_proposal(proposal: Proposal, calls: List[dict], *, clock: Clock | None = None) -> Project:
    call = next((c for c in calls if str(c.get("id")) == proposal.call_id), {})
    return Project(
        id=derive_project_id(proposal.project_key),
        title=proposal.title,
        source=SourceKind.PROPOSAL.value,
        source_id=proposal.id,
        call=proposal.call,
        call_id=proposal.call_id,
        call_year=str(call.get("year") or ""),
        funding_body=call.get("fundingBody") or "",
        primary_clients=list(proposal.primary_clients),
        secondary_clients=list(proposal.secondary_clients),
        budget_funding=proposal.budget_funding,
        fee=proposal.fee,
        status=PROJECT_ONGOING,
        start_date=today_iso(clock),
        created_at=to_iso((clock or utcnow)()),
    )


def project_from_service(service: Service, *, clock: Clock | None = None) -> Project:
    return Project(
        id=derive_project_id(service.project_key),
        title=service.title,
        source=SourceKind.SERVICE.value,
        source_id=service.id,
        service=service.service,
        primary_clients=[service.primary_client],
        secondary_clients=[service.secondary_client] if service.secondary_client else None,
        fee=service.fee,
        status=PROJECT_ONGOING,
        start_date=today_iso(clock),
        created_at=to_iso((clock or utcnow)()),
    )


def new_projects(
    proposals: Iterable[Proposal],
    services: Iterable[Service],
    existing_ids: Set[str],
    calls: List[dict],
    *,
    clock: Clock | None = None,
) -> List[Project]:
    """Pure part of a pass: the projects missing for Granted sources."""
    seen = set(existing_ids)
    created: List[Project] = []

    for proposal in proposals:
        if proposal.status != STATUS_GRANTED:
            continue
        if derive_project_id(proposal.project_key) in seen:
            continue
        project = project_from_proposal(proposal, calls, clock=clock)
        seen.add(project.id)
        created.append(project)

    for service in services:
        if service.status != STATUS_GRANTED:
            continue
        if derive_project_id(service.project_key) in seen:
            continue
        project = project_from_service(service, clock=clock)
        seen.add(project.id)
        created.append(project)

    return created


def derive_projects(store: LocalStore, *, clock: Clock | None = None) -> List[Project]:
    """
    One derivation pass. Read, compute and write happen under the store's
    mutation lock, so a concurrent snapshot pull cannot be clobbered.

    Returns the projects created by this pass.
    """
    with store.transaction():
        existing = store.load_collection(PROJECTS)
        existing_ids = {str(item.get("id")) for item in existing if item.get("id")}
        created = new_projects(store.proposals(), store.services(), existing_ids, store.calls(), clock=clock)
        if not created:
            return []

        store.save_collection(PROJECTS, existing + [project.to_dict() for project in created])
        for project in created:
            audit.log_document_change(PROJECTS, project.id, audit.ACTION_CREATE, after=project.to_dict())

    logger.info("Derived %d project(s): %s", len(created), ", ".join(p.id for p in created))
    return created


def on_document_changed(sender, key: str = "", **extra) -> None:
    """Re-run derivation when proposals or services were written in this process."""
    if key not in TRIGGER_KEYS or not has_app_context():
        return
    if not current_app.config.get("DERIVE_ON_CHANGE", True):
        return
    try:
        derive_projects(sender if isinstance(sender, LocalStore) else LocalStore())
    except Exception:
        logger.exception("Project derivation after %r change failed", key)


def init_app(app) -> None:
    document_changed.connect(on_document_changed)
