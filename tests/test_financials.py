"""Tests for client financial line items and the proposal/service save flows."""

import pytest

from backoffice.entities import ClientFinancials, Proposal
from backoffice.errors import NotFound, ValidationError
from backoffice.financials import (
    apply_aggregates,
    edit_field,
    recompute,
    save_proposal,
    save_service,
)
from backoffice.numbers import amount_or_zero
from conftest import CALLS, CUSTOMERS


def _record(**values):
    return ClientFinancials(**values)


def _proposal_payload(**overrides):
    payload = {
        "proposal": "Green Retrofit",
        "callId": "call-1",
        "status": "In Progress",
        "primaryClients": ["c1"],
        "secondaryClients": ["c2"],
        "primaryClientsFinancials": {
            "c1": {"grant": "100.000,00", "grantFee": "10", "loan": "50.000,00", "loanFee": "5"},
        },
        "secondaryClientsFinancials": {
            "c2": {"equity": "20.000,00", "equityFee": "2,5", "totalFunding": "999", "fee": "999"},
        },
    }
    payload.update(overrides)
    return payload


class TestLineItems:
    def test_total_and_fee(self):
        record = recompute(
            _record(grant="100.000,00", grant_fee="10", loan="50.000,00", loan_fee="5", equity="", equity_fee="")
        )
        assert record.total_funding == "150.000,00"
        assert record.fee == "12.500,00"

    def test_invalid_inputs_count_as_zero(self):
        record = recompute(_record(grant="abc", grant_fee="10", loan="1.000,00", loan_fee="x"))
        assert record.total_funding == "1.000,00"
        assert record.fee == "0,00"

    def test_every_edit_recomputes(self):
        record = recompute(_record(grant="1.000,00", grant_fee="10"))
        assert record.fee == "100,00"
        record = edit_field(record, "grant_fee", "12,5")
        assert record.fee == "125,00"
        record = edit_field(record, "equity", "500")
        assert record.total_funding == "1.500,00"

    def test_outputs_are_not_editable(self):
        with pytest.raises(ValueError):
            edit_field(_record(), "fee", "10")


class TestAggregates:
    def test_sum_of_client_records(self):
        proposal = Proposal(
            id="p1",
            primary_clients=["c1"],
            secondary_clients=["c2"],
            primary_clients_financials={"c1": _record(grant="1.000,00", grant_fee="10")},
            secondary_clients_financials={
                "c2": _record(loan="500,00", loan_fee="4"),
                "c3": _record(grant="9.999,00", grant_fee="50"),
            },
        )
        apply_aggregates(proposal)

        records = list(proposal.primary_clients_financials.values()) + list(
            proposal.secondary_clients_financials.values()
        )
        assert "c3" not in proposal.secondary_clients_financials
        assert amount_or_zero(proposal.fee) == sum(amount_or_zero(r.fee) for r in records)
        assert amount_or_zero(proposal.budget_funding) == sum(amount_or_zero(r.total_funding) for r in records)
        assert proposal.fee == "120,00"
        assert proposal.budget_funding == "1.500,00"


class TestSaveProposal:
    def test_create_recomputes_server_side(self, store, clock):
        store.save_collection("calls", CALLS)
        store.save_collection("customers", CUSTOMERS)

        proposal = save_proposal(store, _proposal_payload(), clock=clock)

        assert proposal.id.startswith("proposal-")
        assert proposal.call == "Horizon Green"
        assert proposal.secondary_clients_financials["c2"].fee == "500,00"
        assert proposal.budget_funding == "170.000,00"
        assert proposal.fee == "13.000,00"
        assert proposal.created_at == "2025-03-14T10:30:00.000Z"
        assert [p.id for p in store.proposals()] == [proposal.id]

    def test_update_keeps_created_at(self, store, clock):
        store.save_collection("calls", CALLS)
        created = save_proposal(store, _proposal_payload(), clock=clock)

        updated = save_proposal(store, _proposal_payload(status="Granted"), proposal_id=created.id)

        assert updated.created_at == created.created_at
        assert [p.status for p in store.proposals()] == ["Granted"]

    def test_validation_blocks_save(self, store):
        with pytest.raises(ValidationError) as excinfo:
            save_proposal(store, {"proposal": " ", "status": "", "primaryClients": []})

        assert set(excinfo.value.errors) == {"proposal", "callId", "status", "primaryClients"}
        assert store.get_raw("proposals") is None

    def test_unknown_proposal(self, store):
        with pytest.raises(NotFound):
            save_proposal(store, _proposal_payload(), proposal_id="missing")


class TestSaveService:
    def test_fee_is_normalized(self, store):
        service = save_service(
            store,
            {"title": "Audit", "primaryClient": "c1", "service": "Consulting", "fee": "1.500,5", "status": "Offer sent"},
        )
        assert service.fee == "1.500,50"
        assert service.secondary_client is None

    def test_negative_fee_rejected(self, store):
        with pytest.raises(ValidationError) as excinfo:
            save_service(
                store,
                {"title": "Audit", "primaryClient": "c1", "service": "Consulting", "fee": "-5", "status": "Granted"},
            )
        assert excinfo.value.errors == {"fee": "Fee must be a valid positive number"}
        assert store.get_raw("otherServices") is None
