"""
Projects, their billing schedules and tasks.

Rules enforced:
- Customers only see projects listed in their projectIds (404 otherwise).
- Workers cannot edit milestones already sent or paid (engine raises PermissionDenied).
- Setting a milestone to Invoice_paid needs "confirm": true; without it the answer is
  409 and nothing is saved.
- Deletes of projects, milestones and tasks are refused with a notice.
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user

from ... import billing
from ... import projects as project_ops
from ...derivation import derive_projects
from ...errors import NotFound
from ...security import api_login_required, project_visible_required, staff_required
from ...store import LocalStore
from ...utils import json_body

logger = logging.getLogger(__name__)

projects_bp = Blueprint("projects", __name__)


def _visible_projects(store: LocalStore):
    return [p for p in store.projects() if current_user.can_see_project(p.id)]


def _project_payload(project) -> dict:
    data = project.to_dict()
    data["reconciliation"] = billing.reconciliation_summary(project)
    return data


# ---------------------------------------------------------------------
# PROJECTS
# ---------------------------------------------------------------------

@projects_bp.route("/projects", methods=["GET"])
@api_login_required
def list_projects():
    return jsonify([_project_payload(p) for p in _visible_projects(LocalStore())])


@projects_bp.route("/projects/derive", methods=["POST"])
@staff_required
def derive():
    created = derive_projects(LocalStore())
    return jsonify({"created": [p.to_dict() for p in created]})


@projects_bp.route("/projects/<project_id>", methods=["GET"])
@project_visible_required
def get_project(project_id: str):
    project = project_ops.find_project(LocalStore().projects(), project_id)
    return jsonify(_project_payload(project))


@projects_bp.route("/projects/<project_id>", methods=["PUT"])
@staff_required
def update_project(project_id: str):
    project = project_ops.edit_project(LocalStore(), project_id, json_body())
    return jsonify(_project_payload(project))


@projects_bp.route("/projects/<project_id>", methods=["DELETE"])
@staff_required
def delete_project(project_id: str):
    return jsonify({"notice": project_ops.delete_project(LocalStore(), project_id)}), 403


# ---------------------------------------------------------------------
# BILLING SCHEDULE
# ---------------------------------------------------------------------

@projects_bp.route("/projects/<project_id>/billing", methods=["GET"])
@project_visible_required
def project_billing(project_id: str):
    store = LocalStore()
    project = project_ops.find_project(store.projects(), project_id)
    rows = billing.billing_rows([project], store.customers())
    return jsonify(
        {
            "billing": [row.to_dict() for row in rows],
            "reconciliation": billing.reconciliation_summary(project),
        }
    )


@projects_bp.route("/projects/<project_id>/billing", methods=["POST"])
@staff_required
def add_billing(project_id: str):
    item = billing.add_milestone(LocalStore(), project_id, json_body())
    return jsonify(item.to_dict()), 201


@projects_bp.route("/projects/<project_id>/billing/<billing_id>", methods=["GET"])
@staff_required
def billing_form(project_id: str, billing_id: str):
    store = LocalStore()
    project = project_ops.find_project(store.projects(), project_id)
    item = project.find_billing(billing_id)
    if item is None:
        raise NotFound(f"Billing milestone {billing_id} not found")
    return jsonify({"billing": item.to_dict(), "form": billing.edit_form(project, item, store.customers())})


@projects_bp.route("/projects/<project_id>/billing/<billing_id>", methods=["PUT"])
@staff_required
def update_billing(project_id: str, billing_id: str):
    item = billing.edit_milestone(
        LocalStore(), project_id, billing_id, json_body(), worker=current_user.is_worker
    )
    return jsonify(item.to_dict())


@projects_bp.route("/projects/<project_id>/billing/<billing_id>/duplicate", methods=["POST"])
@staff_required
def duplicate_billing(project_id: str, billing_id: str):
    item = billing.duplicate_milestone(LocalStore(), project_id, billing_id)
    return jsonify(item.to_dict()), 201


@projects_bp.route("/projects/<project_id>/billing/<billing_id>", methods=["DELETE"])
@staff_required
def delete_billing(project_id: str, billing_id: str):
    return jsonify({"notice": billing.delete_milestone(LocalStore(), project_id, billing_id)}), 403


# ---------------------------------------------------------------------
# TASKS
# ---------------------------------------------------------------------

@projects_bp.route("/projects/<project_id>/tasks", methods=["POST"])
@staff_required
def add_task(project_id: str):
    task = project_ops.add_task(LocalStore(), project_id, json_body())
    return jsonify(task.to_dict()), 201


@projects_bp.route("/projects/<project_id>/tasks/<task_id>", methods=["PUT"])
@staff_required
def update_task(project_id: str, task_id: str):
    task = project_ops.edit_task(LocalStore(), project_id, task_id, json_body())
    return jsonify(task.to_dict())


@projects_bp.route("/projects/<project_id>/tasks/<task_id>/duplicate", methods=["POST"])
@staff_required
def duplicate_task(project_id: str, task_id: str):
    task = project_ops.duplicate_task(LocalStore(), project_id, task_id)
    return jsonify(task.to_dict()), 201


@projects_bp.route("/projects/<project_id>/tasks/<task_id>", methods=["DELETE"])
@staff_required
def delete_task(project_id: str, task_id: str):
    return jsonify({"notice": project_ops.delete_task(LocalStore(), project_id, task_id)}), 403


# ---------------------------------------------------------------------
# ALL MILESTONES
# ---------------------------------------------------------------------

@projects_bp.route("/billing", methods=["GET"])
@api_login_required
def all_billing():
    """
    Every visible milestone, filtered by ?status=, ?overdue=1 and ?search=.

    Statistics are computed over all visible milestones, not the filtered ones.
    """
    store = LocalStore()
    rows = billing.billing_rows(_visible_projects(store), store.customers())
    filtered = billing.filter_rows(
        rows,
        status=request.args.get("status") or None,
        overdue_only=request.args.get("overdue", "").lower() in ("1", "true", "yes"),
        search=request.args.get("search", ""),
    )
    return jsonify(
        {
            "items": [row.to_dict() for row in filtered],
            "statistics": billing.statistics(rows).to_dict(),
        }
    )
