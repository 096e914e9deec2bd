"""Load workflow templates from YAML definition files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml

from .contracts import StepDefinition, WorkflowTemplate

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIXES = (".yaml", ".yml")


def _step_from_mapping(data: Dict[str, Any]) -> StepDefinition:
    return StepDefinition(
        name=data.get("step") or data.get("name"),
        agent=data.get("agent"),
        action=data.get("action"),
        uses=data.get("uses"),
        creates=data.get("creates"),
        requires=data.get("requires"),
        condition=data.get("condition"),
        validation_gates=data.get("validation_gates") or data.get("validationGates"),
        notes=data.get("notes"),
    )


def _sequence(workflow: Dict[str, Any]) -> List[Dict[str, Any]]:
    if workflow.get("sequence"):
        return list(workflow["sequence"])
    steps: List[Dict[str, Any]] = []
    for phase in workflow.get("phases") or []:
        steps.extend(phase.get("sequence") or [])
    return steps


def parse_template(
    data: Dict[str, Any], default_id: str, source: Optional[str] = None
) -> WorkflowTemplate:
    """Build a template from a parsed ``workflow:`` document."""
    workflow = data.get("workflow")
    if not isinstance(workflow, dict):
        raise ValueError("Template document has no 'workflow' mapping")
    steps = [
        _step_from_mapping(step) for step in _sequence(workflow) if isinstance(step, dict)
    ]
    return WorkflowTemplate(
        id=str(workflow.get("id") or default_id),
        name=workflow.get("name"),
        description=workflow.get("description"),
        steps=steps,
        source=source,
    )


def load_template_file(path: Path) -> WorkflowTemplate:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return parse_template(data, default_id=path.stem, source=str(path))


def _iter_template_files(directory: Path) -> Iterable[Path]:
    for path in sorted(directory.iterdir()):
        if path.is_file() and path.suffix in TEMPLATE_SUFFIXES:
            yield path


def load_templates(directory: str | Path) -> List[WorkflowTemplate]:
    """Return every template defined in ``directory``.

    Files that cannot be parsed are logged and skipped.
    """
    directory = Path(directory).expanduser()
    if not directory.is_dir():
        logger.warning(f"Template directory does not exist: {directory}")
        return []
    templates: List[WorkflowTemplate] = []
    for path in _iter_template_files(directory):
        try:
            templates.append(load_template_file(path))
        except (OSError, ValueError, yaml.YAMLError) as exc:
            logger.warning(f"Could not load workflow template {path}: {exc}")
    logger.info(f"Loaded {len(templates)} workflow templates from {directory}")
    return templates
