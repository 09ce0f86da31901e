"""Mutators for the module-status maps and the checklist.

Two checklist mutators exist side by side. ``set_checklist_item`` writes the
requested status unconditionally and is what most workflow steps call.
``validate_checklist_if_ready`` only promotes an item to ``validated`` when
all of its dependencies are validated. Workflow code may therefore leave an
item validated while a dependency is still pending; callers that need the
dependency guarantee must use the gated mutator.
"""

from __future__ import annotations

import logging

from models.checklist import ChecklistStatus, utc_now
from models.project import Project

logger = logging.getLogger(__name__)


def _value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


def set_module_status(project: Project, module_name: str, status) -> None:
    project.module_status[module_name] = _value(status)


def set_sourcing_module_status(project: Project, module_name: str, status) -> None:
    project.sourcing.module_status[module_name] = _value(status)


def set_checklist_item(
    project: Project,
    key: str,
    status,
    evidence: str = "",
    next_action: str = "",
) -> None:
    item = project.find_checklist_item(key)
    if item is None:
        logger.debug("Ignoring update for unknown checklist key %s", key)
        return
    item.status = _value(status)
    if evidence:
        item.evidence = evidence
    item.next_action = next_action
    item.updated_at = utc_now()


def validate_checklist_if_ready(project: Project, key: str, evidence: str = "") -> None:
    item = project.find_checklist_item(key)
    if item is None:
        return

    deps_valid = True
    for dependency_key in item.depends_on:
        dependency = project.find_checklist_item(dependency_key)
        if dependency is None or dependency.status != ChecklistStatus.VALIDATED.value:
            deps_valid = False
            break

    item.status = ChecklistStatus.VALIDATED.value if deps_valid else ChecklistStatus.IN_PROGRESS.value
    if evidence:
        item.evidence = evidence
    item.updated_at = utc_now()
