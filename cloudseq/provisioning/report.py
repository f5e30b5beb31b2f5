"""
Run summaries.

Gives the operator a complete account of a run: what was created, what
failed, what was rolled back and which deletions need manual follow-up.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional, Union

from cloudseq.provisioning.state import RunState, WorkflowResult

logger = logging.getLogger(__name__)


def format_summary(result: WorkflowResult) -> str:
    """
    Render a human-readable summary of a run.

    Args:
        result: Final result of the run

    Returns:
        Multi-line text suitable for printing
    """
    lines: List[str] = []
    lines.append(f"Run {result.correlation_id}: {result.state.value}")
    lines.append(f"Steps completed: {result.completed_steps}")

    if result.failure is not None:
        lines.append(f"ERROR: {result.failure}")

    for warning in result.warnings:
        lines.append(f"WARNING: {warning}")

    if result.ledger_snapshot:
        lines.append("Resources created:")
        for handle in result.ledger_snapshot:
            lines.append(f"- {handle.kind}: {handle.resource_id}")
    else:
        lines.append("No resources were created.")

    if result.rollback_performed:
        if result.rolled_back:
            lines.append("Resources deleted (in order):")
            for handle in result.rolled_back:
                lines.append(f"- {handle.kind}: {handle.resource_id}")

        if result.rollback_errors:
            lines.append("Cleanup incomplete. The following resources must be deleted manually:")
            for error in result.rollback_errors:
                handle = getattr(error, "handle", None)
                label = f"{handle.kind}: {handle.resource_id}" if handle else "unknown resource"
                lines.append(f"- {label} ({error})")
        else:
            lines.append("All created resources were cleaned up.")
    elif result.ledger_snapshot:
        if result.state is RunState.SUCCEEDED:
            lines.append("Resources were kept. Delete them when you are done.")
        else:
            lines.append("Rollback was not performed. The resources above still exist.")

    return "\n".join(lines)


def write_report(
    result: WorkflowResult,
    path: Union[str, Path],
    events: Optional[list] = None,
) -> Path:
    """
    Write a run result as JSON.

    Written atomically through a temp file so a reader never sees a
    half-written report.

    Args:
        result: Final result of the run
        path: Target file (parent directories are created)
        events: Optional recorded observer events to include

    Returns:
        Path of the written report
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = result.to_dict()
    if events is not None:
        data["events"] = events

    temp_file = path.with_suffix(path.suffix + ".tmp")
    with open(temp_file, "w") as f:
        json.dump(data, f, indent=2)
    temp_file.replace(path)

    logger.info(f"[{result.correlation_id}] Run report written to {path}")
    return path
