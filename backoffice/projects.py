"""
Project edits and project tasks.

Dates are typed as dd/mm/yyyy and stored as ISO. Tasks are never deleted.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, List, Optional

from . import audit
from .entities import (
    PROJECT_STATUSES,
    Project,
    Task,
    TASK_PRIORITIES,
    TASK_STATUSES,
    new_id,
)
from .errors import NotFound, ValidationError, deletion_notice
from .store import PROJECTS, LocalStore
from .validation import dmy_to_iso, is_valid_date, require_text, validate_due_date

logger = logging.getLogger(__name__)


def find_project(projects: List[Project], project_id: str) -> Project:
    project = next((p for p in projects if p.id == project_id), None)
    if project is None:
        raise NotFound(f"Project {project_id} not found")
    return project


def _optional_date(errors: Dict[str, str], data: dict, field: str, label: str) -> Optional[str]:
    value = str(data.get(field) or "").strip()
    if not value:
        return None
    if not is_valid_date(value):
        errors[field] = f"{label} must be valid (dd/mm/yyyy)"
        return None
    return dmy_to_iso(value)


def edit_project(store: LocalStore, project_id: str, data: dict) -> Project:
    """Title, status, start/end dates and payment conditions; the rest stays as derived."""
    errors: Dict[str, str] = {}
    title = require_text(errors, data, "title", "Title is required")
    status = str(data.get("status") or "").strip()
    if status not in PROJECT_STATUSES:
        errors["status"] = "Status must be Ongoing or Ended"
    start_date = _optional_date(errors, data, "startDate", "Start Date")
    end_date = _optional_date(errors, data, "endDate", "End Date")
    if errors:
        raise ValidationError(errors)

    with store.transaction():
        projects = store.projects()
        project = find_project(projects, project_id)
        before = project.to_dict()

        project.title = title
        project.status = status
        project.start_date = start_date
        project.end_date = end_date
        project.payment_conditions = str(data.get("paymentConditions") or "").strip() or None

        store.save_projects(projects)
        audit.log_document_change(PROJECTS, project.id, audit.ACTION_UPDATE, before=before, after=project.to_dict())

    logger.info("Updated project %s (status=%s)", project_id, status)
    return project


# ---------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------
def validate_task(data: dict) -> Task:
    errors: Dict[str, str] = {}
    title = require_text(errors, data, "title", "Task Title is required")
    due_date = validate_due_date(errors, data.get("dueDate"))

    priority = str(data.get("priority") or "Medium").strip()
    if priority not in TASK_PRIORITIES:
        errors["priority"] = "Priority must be Low, Medium or High"
    status = str(data.get("status") or "Pending").strip()
    if status not in TASK_STATUSES:
        errors["status"] = "Status is not valid"

    if errors:
        raise ValidationError(errors)

    return Task(
        title=title,
        description=str(data.get("description") or "").strip() or None,
        due_date=due_date,
        priority=priority,
        status=status,
    )


def add_task(store: LocalStore, project_id: str, data: dict) -> Task:
    values = validate_task(data)
    with store.transaction():
        projects = store.projects()
        project = find_project(projects, project_id)
        task = replace(values, id=new_id("task"))
        project.tasks.append(task)
        store.save_projects(projects)
        audit.log_document_change(PROJECTS, f"{project.id}/{task.id}", audit.ACTION_CREATE, after=task.to_dict())

    logger.info("Added task %s to %s", task.id, project_id)
    return task


def edit_task(store: LocalStore, project_id: str, task_id: str, data: dict) -> Task:
    values = validate_task(data)
    with store.transaction():
        projects = store.projects()
        project = find_project(projects, project_id)
        task = project.find_task(task_id)
        if task is None:
            raise NotFound(f"Task {task_id} not found")
        before = task.to_dict()

        task.title = values.title
        task.description = values.description
        task.due_date = values.due_date
        task.priority = values.priority
        task.status = values.status

        store.save_projects(projects)
        audit.log_document_change(
            PROJECTS, f"{project.id}/{task.id}", audit.ACTION_UPDATE, before=before, after=task.to_dict()
        )
    return task


def duplicate_task(store: LocalStore, project_id: str, task_id: str) -> Task:
    """Copy of a task with a new id, starting again as Pending."""
    with store.transaction():
        projects = store.projects()
        project = find_project(projects, project_id)
        source = project.find_task(task_id)
        if source is None:
            raise NotFound(f"Task {task_id} not found")
        copy = replace(source, id=new_id("task"), status="Pending", extra=dict(source.extra))
        project.tasks.append(copy)
        store.save_projects(projects)
        audit.log_document_change(PROJECTS, f"{project.id}/{copy.id}", audit.ACTION_CREATE, after=copy.to_dict())
    return copy


def delete_task(store: LocalStore, project_id: str, task_id: str) -> str:
    logger.info("Refused delete of task %s on %s", task_id, project_id)
    return deletion_notice("task")


def delete_project(store: LocalStore, project_id: str) -> str:
    logger.info("Refused delete of project %s", project_id)
    return deletion_notice("project")
