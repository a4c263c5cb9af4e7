"""Concise summaries of restic maintenance command output."""

import re


_REMOVE_SUMMARY = re.compile(r"^remove\s+(\d+)\s+snapshots?:?$", re.IGNORECASE)
_NO_ERRORS = re.compile(r"no errors (were )?found", re.IGNORECASE)


def summarize(task: str, output: str) -> str:
    """Summarize the output of one maintenance task (unlock, forget, prune, check)."""
    task = task.lower()
    if task == "prune":
        return _summarize_prune(output)
    if task == "forget":
        return _summarize_forget(output)
    if task == "check":
        return _summarize_check(output)
    if task == "unlock":
        return _summarize_unlock(output)
    return output


def _non_blank(output: str):
    return [line for line in output.splitlines() if line.strip()]


def _summarize_prune(output: str) -> str:
    summary = "\n".join(_non_blank(output)[-3:])
    return summary or "Prune operation completed."


def _summarize_forget(output: str) -> str:
    lines = [line.strip() for line in output.splitlines()]

    for line in lines:
        match = _REMOVE_SUMMARY.search(line)
        if match:
            return f"Removed {match.group(1)} snapshot(s)."

    for line in reversed(lines):
        lowered = line.lower()
        if ("snapshots have been removed" in lowered or lowered.startswith("removed")) \
                and "snapshots" in lowered:
            return line

    removed = sum(1 for line in lines if line.lower().startswith("remove snapshot"))
    if removed:
        return f"Removed {removed} snapshot(s)."

    return "No snapshots matched the policy to be removed."


def _summarize_check(output: str) -> str:
    lines = _non_blank(output)
    for line in reversed(lines):
        if _NO_ERRORS.search(line):
            return line
    return lines[-1] if lines else "Check operation completed."


def _summarize_unlock(output: str) -> str:
    for line in output.splitlines():
        if "successfully removed" in line.lower():
            return line
    return "Unlock operation finished."
