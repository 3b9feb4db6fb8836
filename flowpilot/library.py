"""Load workflow definitions from YAML or JSON files and check their wiring."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import yaml
from pydantic import ValidationError

from .contracts import FlowpilotError, Workflow

logger = logging.getLogger(__name__)

WORKFLOW_SUFFIXES = (".yaml", ".yml", ".json")


class WorkflowDefinitionError(FlowpilotError):
    """A workflow file could not be read or does not describe a valid workflow."""


def load_workflow(path: str | Path) -> Workflow:
    """Parse a single workflow definition file.

    Raises:
        WorkflowDefinitionError: Unreadable file, bad syntax or invalid shape.
    """
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as exc:
        raise WorkflowDefinitionError(f"Cannot read {path}: {exc}") from exc

    try:
        if path.suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as exc:
        raise WorkflowDefinitionError(f"Cannot parse {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise WorkflowDefinitionError(f"{path} does not contain a workflow mapping")
    data.setdefault("id", path.stem)
    data.setdefault("name", path.stem)
    try:
        return Workflow.model_validate(data)
    except ValidationError as exc:
        raise WorkflowDefinitionError(f"Invalid workflow in {path}: {exc}") from exc


def iter_workflow_files(directory: str | Path) -> Iterable[Path]:
    root = Path(directory)
    for candidate in sorted(root.rglob("*")):
        if candidate.is_file() and candidate.suffix in WORKFLOW_SUFFIXES:
            yield candidate


def load_workflows(directory: str | Path) -> Dict[str, Workflow]:
    """Load every definition below ``directory`` keyed by workflow id.

    Files that fail to load are logged and skipped.
    """
    workflows: Dict[str, Workflow] = {}
    for path in iter_workflow_files(directory):
        try:
            workflow = load_workflow(path)
        except WorkflowDefinitionError as exc:
            logger.warning(f"Skipping workflow file: {exc}")
            continue
        if workflow.id in workflows:
            logger.warning(f"Duplicate workflow id {workflow.id} in {path}, keeping the first")
            continue
        workflows[workflow.id] = workflow
    return workflows


def _successors(workflow: Workflow, step_id: str) -> List[Optional[str]]:
    step = workflow.get_step(step_id)
    if step is None:
        return []
    if step.decision is not None:
        targets = [step.decision.true_branch, step.decision.false_branch]
    else:
        targets = [step.next_step]
    if step.next_step:
        targets.append(step.next_step)
    if None in targets:
        following = workflow.next_in_order(step)
        targets.append(following.id if following else None)
    return targets


def validate_workflow(workflow: Workflow) -> List[str]:
    """Return human-readable problems with ``workflow``; empty when it is sound."""
    problems: List[str] = []
    if not workflow.steps:
        return ["Workflow has no steps"]

    ids = [s.id for s in workflow.steps]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    for dup in duplicates:
        problems.append(f"Duplicate step id: {dup}")

    if not any(s.order == 1 for s in workflow.steps):
        problems.append("No step has order 1; the lowest ordered step is used as the start")

    known = set(ids)
    for step in workflow.steps:
        refs = {"next_step": step.next_step}
        if step.decision is not None:
            refs["true_branch"] = step.decision.true_branch
            refs["false_branch"] = step.decision.false_branch
        for field, target in refs.items():
            if target is not None and target not in known:
                problems.append(f"Step {step.id}: {field} references unknown step {target}")

    first = workflow.first_step()
    reachable: Set[str] = set()
    pending = [first.id] if first else []
    while pending:
        current = pending.pop()
        if current in reachable or current not in known:
            continue
        reachable.add(current)
        pending.extend(t for t in _successors(workflow, current) if t)
    for step in workflow.ordered_steps():
        if step.id not in reachable:
            problems.append(f"Step {step.id} is unreachable from the first step")
    return problems
