"""
backoffice/entities.py

Typed records for the documents held in the local store.

The persisted form is the camelCase JSON the snapshot store exchanges; every record
maps to and from it losslessly (unknown keys are kept in ``extra`` and written back).

Customers and Calls stay plain dicts: only their ids and display names are used here.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import ClassVar, Dict, List, Optional

# Proposal / Service lifecycle
STATUS_GRANTED = "Granted"
STATUS_DISMISSED = "Dismissed"
PROPOSAL_STATUSES = ("In Progress", "Pending", STATUS_GRANTED, STATUS_DISMISSED)
SERVICE_STATUSES = ("In progress", "Offer sent", STATUS_GRANTED, STATUS_DISMISSED)

# Project
PROJECT_ONGOING = "Ongoing"
PROJECT_ENDED = "Ended"
PROJECT_STATUSES = (PROJECT_ONGOING, PROJECT_ENDED)

# Billing milestone invoice lifecycle (monotonic)
INVOICE_PENDING = "Invoice_pending"
INVOICE_SENT = "Invoice_sent"
INVOICE_PAID = "Invoice_paid"
INVOICE_STATUSES = (INVOICE_PENDING, INVOICE_SENT, INVOICE_PAID)

# Tasks
TASK_PRIORITIES = ("Low", "Medium", "High")
TASK_STATUSES = ("Pending", "In progress", "Completed")

# Invoice document
INVOICE_DOC_SENT = "sent"
VAT_21 = "21"
VAT_EXEMPT = "exempt"
VAT_OPTIONS = (VAT_21, VAT_EXEMPT)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class Record:
    """camelCase dict <-> dataclass mapping with passthrough of unknown keys."""

    # field name -> record class, for lists of nested records
    _nested_lists: ClassVar[Dict[str, type]] = {}
    # field name -> record class, for {id: record} mappings
    _nested_maps: ClassVar[Dict[str, type]] = {}

    @classmethod
    def _json_key(cls, f) -> str:
        return f.metadata.get("json", _camel(f.name))

    @classmethod
    def from_dict(cls, data: dict | None):
        remaining = dict(data or {})
        kwargs = {}
        for f in fields(cls):
            if f.name == "extra":
                continue
            key = cls._json_key(f)
            if key not in remaining:
                continue
            raw = remaining.pop(key)
            if f.name in cls._nested_lists:
                item_cls = cls._nested_lists[f.name]
                raw = [item_cls.from_dict(x) for x in (raw or []) if isinstance(x, dict)]
            elif f.name in cls._nested_maps:
                item_cls = cls._nested_maps[f.name]
                raw = {
                    str(k): item_cls.from_dict(v)
                    for k, v in (raw or {}).items()
                    if isinstance(v, dict)
                }
            kwargs[f.name] = raw
        return cls(**kwargs, extra=remaining)

    def to_dict(self) -> dict:
        out = dict(self.extra)
        for f in fields(self):
            if f.name == "extra":
                continue
            key = self._json_key(f)
            value = getattr(self, f.name)
            if value is None:
                out.pop(key, None)
                continue
            if f.name in self._nested_lists:
                value = [item.to_dict() for item in value]
            elif f.name in self._nested_maps:
                value = {k: item.to_dict() for k, item in value.items()}
            out[key] = value
        return out


# ---------------------------------------------------------------------
# Project identity
# ---------------------------------------------------------------------
class SourceKind(str, Enum):
    PROPOSAL = "proposal"
    SERVICE = "service"


@dataclass(frozen=True)
class ProjectKey:
    """Tagged identity of the source a Project was derived from."""

    kind: SourceKind
    source_id: str

    @classmethod
    def parse(cls, project_id: str) -> Optional["ProjectKey"]:
        kind, sep, source_id = (project_id or "").partition("-")
        if not sep or not source_id:
            return None
        try:
            return cls(SourceKind(kind), source_id)
        except ValueError:
            return None


def derive_project_id(key: ProjectKey) -> str:
    """Pure: the Project id is a function of its source only."""
    return f"{key.kind.value}-{key.source_id}"


# ---------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------
@dataclass
class ClientFinancials(Record):
    client_id: str = ""
    budget: str = ""
    grant: str = ""
    grant_fee: str = ""
    loan: str = ""
    loan_fee: str = ""
    equity: str = ""
    equity_fee: str = ""
    total_funding: str = "0,00"
    fee: str = "0,00"
    extra: dict = field(default_factory=dict, repr=False)


@dataclass
class Proposal(Record):
    _nested_maps: ClassVar[Dict[str, type]] = {
        "primary_clients_financials": ClientFinancials,
        "secondary_clients_financials": ClientFinancials,
    }

    id: str = ""
    title: str = field(default="", metadata={"json": "proposal"})
    call: str = ""
    call_id: str = ""
    primary_clients: List[str] = field(default_factory=list)
    secondary_clients: List[str] = field(default_factory=list)
    budget_funding: str = "0,00"
    fee: str = "0,00"
    status: str = "In Progress"
    created_at: Optional[str] = None
    internal_notes: Optional[str] = None
    primary_clients_financials: Dict[str, ClientFinancials] = field(default_factory=dict)
    secondary_clients_financials: Dict[str, ClientFinancials] = field(default_factory=dict)
    extra: dict = field(default_factory=dict, repr=False)

    @property
    def project_key(self) -> ProjectKey:
        return ProjectKey(SourceKind.PROPOSAL, self.id)


@dataclass
class Service(Record):
    id: str = ""
    title: str = ""
    primary_client: str = ""
    secondary_client: Optional[str] = None
    service: str = ""
    fee: str = "0,00"
    status: str = "In progress"
    internal_notes: Optional[str] = None
    extra: dict = field(default_factory=dict, repr=False)

    @property
    def project_key(self) -> ProjectKey:
        return ProjectKey(SourceKind.SERVICE, self.id)


@dataclass
class BillingItem(Record):
    id: str = ""
    percentage: str = "0%"
    client_id: Optional[str] = None
    client_name: str = ""
    due_date: str = ""
    amount: str = "0,00"
    invoice_status: str = INVOICE_PENDING
    description: Optional[str] = None
    extra: dict = field(default_factory=dict, repr=False)

    def client_display_name(self, customers: List[dict]) -> str:
        """Resolve the client name by id first; the stored name is a fallback."""
        if self.client_id:
            for customer in customers:
                if str(customer.get("id")) == self.client_id:
                    return customer.get("name") or self.client_name
        return self.client_name


@dataclass
class Task(Record):
    id: str = ""
    title: str = ""
    description: Optional[str] = None
    due_date: str = ""
    priority: str = "Medium"
    status: str = "Pending"
    extra: dict = field(default_factory=dict, repr=False)


@dataclass
class Project(Record):
    _nested_lists: ClassVar[Dict[str, type]] = {
        "billing_schedule": BillingItem,
        "tasks": Task,
    }

    id: str = ""
    title: str = ""
    source: str = SourceKind.PROPOSAL.value
    source_id: str = ""
    call: Optional[str] = None
    call_id: Optional[str] = None
    call_year: Optional[str] = None
    funding_body: Optional[str] = None
    service: Optional[str] = None
    primary_clients: List[str] = field(default_factory=list)
    secondary_clients: Optional[List[str]] = None
    budget_funding: Optional[str] = None
    fee: Optional[str] = None
    status: str = PROJECT_ONGOING
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    payment_conditions: Optional[str] = None
    created_at: Optional[str] = None
    billing_schedule: List[BillingItem] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)
    extra: dict = field(default_factory=dict, repr=False)

    @property
    def client_ids(self) -> List[str]:
        return list(self.primary_clients) + list(self.secondary_clients or [])

    def find_billing(self, billing_id: str) -> Optional[BillingItem]:
        return next((b for b in self.billing_schedule if b.id == billing_id), None)

    def find_task(self, task_id: str) -> Optional[Task]:
        return next((t for t in self.tasks if t.id == task_id), None)


@dataclass
class Invoice(Record):
    id: str = ""
    billing_id: str = ""
    project_id: str = ""
    project_name: Optional[str] = None
    description: Optional[str] = None
    amount: str = "0,00"
    client_name: str = ""
    date: str = ""
    number: str = ""
    status: Optional[str] = None
    vat_option: str = VAT_21
    vat_amount: Optional[str] = None
    total: Optional[str] = None
    extra: dict = field(default_factory=dict, repr=False)

    @property
    def is_sent(self) -> bool:
        return self.status == INVOICE_DOC_SENT
