"""Tests for project derivation from granted proposals and services."""

import json

from backoffice.derivation import derive_projects, new_projects
from backoffice.entities import Proposal, Service
from backoffice.financials import save_proposal
from backoffice.models import AuditLog
from backoffice.store import PROJECTS, PROPOSALS, SERVICES
from conftest import CALLS, CUSTOMERS


def seed_sources(store, *, proposal_status="Granted", service_status="Granted"):
    store.save_collection("customers", CUSTOMERS)
    store.save_collection("calls", CALLS)
    store.save_collection(
        PROPOSALS,
        [
            {
                "id": "p1",
                "proposal": "Green Retrofit",
                "call": "Horizon Green",
                "callId": "call-1",
                "primaryClients": ["c1"],
                "secondaryClients": ["c2"],
                "budgetFunding": "150.000,00",
                "fee": "12.500,00",
                "status": proposal_status,
            },
            {"id": "p2", "proposal": "Still Open", "callId": "call-1", "primaryClients": ["c3"], "status": "Pending"},
        ],
    )
    store.save_collection(
        SERVICES,
        [
            {
                "id": "s1",
                "title": "Audit",
                "primaryClient": "c2",
                "service": "Consulting",
                "fee": "3.000,00",
                "status": service_status,
            }
        ],
    )


class TestNewProjects:
    def test_only_granted_sources(self, clock):
        proposals = [Proposal(id="p1", status="Granted"), Proposal(id="p2", status="Dismissed")]
        services = [Service(id="s1", status="Granted", primary_client="c1")]

        created = new_projects(proposals, services, set(), [], clock=clock)

        assert [p.id for p in created] == ["proposal-p1", "service-s1"]

    def test_existing_ids_are_skipped(self, clock):
        created = new_projects([Proposal(id="p1", status="Granted")], [], {"proposal-p1"}, [], clock=clock)
        assert created == []

    def test_duplicate_sources_create_one_project(self, clock):
        proposals = [Proposal(id="p1", status="Granted"), Proposal(id="p1", status="Granted")]
        assert len(new_projects(proposals, [], set(), [], clock=clock)) == 1


class TestDeriveProjects:
    def test_fields_copied_from_sources(self, store, clock):
        seed_sources(store)

        created = derive_projects(store, clock=clock)

        by_id = {p.id: p for p in created}
        assert set(by_id) == {"proposal-p1", "service-s1"}

        project = by_id["proposal-p1"]
        assert project.title == "Green Retrofit"
        assert project.source == "proposal"
        assert project.source_id == "p1"
        assert project.call_year == "2025"
        assert project.funding_body == "EU"
        assert project.primary_clients == ["c1"]
        assert project.secondary_clients == ["c2"]
        assert project.fee == "12.500,00"
        assert project.budget_funding == "150.000,00"
        assert project.status == "Ongoing"
        assert project.start_date == "2025-03-14"
        assert project.billing_schedule == []
        assert project.tasks == []

        service_project = by_id["service-s1"]
        assert service_project.service == "Consulting"
        assert service_project.primary_clients == ["c2"]
        assert service_project.secondary_clients is None
        assert "secondaryClients" not in service_project.to_dict()

    def test_idempotent(self, store, clock):
        seed_sources(store)
        derive_projects(store, clock=clock)
        raw = store.get_raw(PROJECTS)

        assert derive_projects(store, clock=clock) == []
        assert derive_projects(store, clock=clock) == []
        assert store.get_raw(PROJECTS) == raw
        assert len(json.loads(raw)) == 2

    def test_nothing_granted_writes_nothing(self, store, clock):
        seed_sources(store, proposal_status="Pending", service_status="Offer sent")

        assert derive_projects(store, clock=clock) == []
        assert store.get_raw(PROJECTS) is None

    def test_existing_projects_are_never_rewritten(self, store, clock):
        seed_sources(store, service_status="In progress")
        derive_projects(store, clock=clock)

        projects = json.loads(store.get_raw(PROJECTS))
        projects[0]["title"] = "Renamed by hand"
        projects[0]["customNote"] = "kept"
        store.save_collection(PROJECTS, projects)

        services = json.loads(store.get_raw(SERVICES))
        services[0]["status"] = "Granted"
        store.save_collection(SERVICES, services)

        created = derive_projects(store, clock=clock)

        assert [p.id for p in created] == ["service-s1"]
        stored = json.loads(store.get_raw(PROJECTS))
        assert stored[0] == projects[0]
        assert [p["id"] for p in stored] == ["proposal-p1", "service-s1"]

    def test_one_shot_after_source_edit(self, store, clock):
        seed_sources(store, service_status="Dismissed")
        derive_projects(store, clock=clock)

        proposals = json.loads(store.get_raw(PROPOSALS))
        proposals[0]["fee"] = "99.999,00"
        proposals[0]["primaryClients"] = ["c3"]
        store.save_collection(PROPOSALS, proposals)
        derive_projects(store, clock=clock)

        project = store.projects()[0]
        assert project.fee == "12.500,00"
        assert project.primary_clients == ["c1"]

    def test_creations_are_audited(self, store, clock):
        seed_sources(store)
        derive_projects(store, clock=clock)

        entries = AuditLog.query.filter_by(entity_type=PROJECTS, action="CREATE").all()
        assert sorted(e.entity_id for e in entries) == ["proposal-p1", "service-s1"]


class TestDerivationTrigger:
    def test_granting_a_proposal_derives_its_project(self, app, clock):
        app.config["DERIVE_ON_CHANGE"] = True
        with app.app_context():
            from backoffice.store import LocalStore

            store = LocalStore()
            store.save_collection("calls", CALLS)
            store.save_collection("customers", CUSTOMERS)

            proposal = save_proposal(
                store,
                {"proposal": "Granted Work", "callId": "call-1", "status": "Granted", "primaryClients": ["c1"]},
                clock=clock,
            )

            assert [p.id for p in store.projects()] == [f"proposal-{proposal.id}"]

    def test_disabled_trigger(self, store, clock):
        save_proposal(
            store,
            {"proposal": "Granted Work", "callId": "call-1", "status": "Granted", "primaryClients": ["c1"]},
            clock=clock,
        )
        assert store.projects() == []
