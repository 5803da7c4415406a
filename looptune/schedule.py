"""Transformation schedules: formatting, persistence and replay.

A schedule is the history of a tuned node, an ordered list of
``TransformationRecord``. Saving it lets a tuned result be reapplied to
the untransformed kernel later without searching again.
"""

import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from looptune.context import TargetInfo
from looptune.ir.types import LoopNest
from looptune.node import Node, TransformationRecord
from looptune.transforms import IllegalTransformError, TransformOperator, default_operators

logger = logging.getLogger(__name__)


class ScheduleError(ValueError):
    """A schedule cannot be applied to a kernel."""


def format_schedule(function_name: str, records: Sequence[TransformationRecord]) -> str:
    """Render a schedule as a readable transform script.

    Args:
        function_name: Function the schedule applies to.
        records: Transformations in application order.

    Returns:
        Multi-line script, one transformation per line.
    """
    lines = [f"schedule @{function_name} {{"]
    lines.extend(f"  {record.describe()}" for record in records)
    lines.append("}")
    return "\n".join(lines)


def schedule_to_dict(
    function_name: str, records: Sequence[TransformationRecord], cost: float | None = None
) -> dict[str, Any]:
    return {"function": function_name, "cost_ms": cost, "schedule": [record.to_dict() for record in records]}


def save_schedule(
    path: Path, function_name: str, records: Sequence[TransformationRecord], cost: float | None = None
) -> None:
    """Write a schedule to a JSON file.

    Args:
        path: Destination file.
        function_name: Function the schedule applies to.
        records: Transformations in application order.
        cost: Measured cost of the schedule, if known.
    """
    Path(path).write_text(json.dumps(schedule_to_dict(function_name, records, cost), indent=2) + "\n")


def load_schedule(path: Path) -> tuple[str, list[TransformationRecord]]:
    """Read a schedule written by ``save_schedule``.

    Returns:
        Tuple of (function name, records).

    Raises:
        ScheduleError: If the file is not a valid schedule.
    """
    try:
        data = json.loads(Path(path).read_text())
        return data["function"], [TransformationRecord.from_dict(entry) for entry in data["schedule"]]
    except (KeyError, TypeError, ValueError) as e:
        raise ScheduleError(f"Invalid schedule file {path}: {e}") from e


def apply_schedule(
    state: LoopNest,
    records: Sequence[TransformationRecord],
    operators: Sequence[TransformOperator] | None = None,
    target: TargetInfo | None = None,
) -> LoopNest:
    """Replay a schedule onto an IR state.

    Every step goes through the operator's legality check, so a schedule
    recorded for a different kernel or target is rejected rather than
    producing an invalid nest.

    Args:
        state: Starting IR state, normally the untransformed kernel.
        records: Transformations to apply, in order.
        operators: Operators to dispatch on; ``default_operators(target)``
            when None.
        target: Target for the default operators.

    Returns:
        The transformed IR state.

    Raises:
        ScheduleError: If a step has no operator or is illegal.
    """
    ops = list(operators) if operators is not None else default_operators(target)
    by_kind = {}
    for op in ops:
        by_kind.setdefault(op.kind, op)
    node = Node(state)
    for step, record in enumerate(records, start=1):
        op = by_kind.get(record.kind)
        if op is None:
            raise ScheduleError(f"Step {step}: no operator for {record.kind.value}")
        try:
            new_state = op.apply(node, record.params)
        except IllegalTransformError as e:
            raise ScheduleError(f"Step {step}: {e}") from e
        node = node.derive(new_state, record, step)
        logger.debug("Step %d: applied %s", step, record.describe())
    return node.state
