"""Generate text summaries of a scan for logs and tooling."""

from datetime import datetime

from .scanner import ParseFailure, VaultIndex


def generate_scan_summary(index: VaultIndex, max_failures: int = 20) -> str:
    """Generate a readable report of the last scan.

    Shows:
    1. Indexed / skipped / failed counts
    2. Note counts per type and status
    3. The failed files with their reasons
    """
    failures = index.failures
    lines = ["## Vault Index\n"]

    lines.append(
        f"**{index.total_notes} indexed**, {index.excluded_count} skipped, "
        f"{len(failures)} failed\n"
    )

    if index.last_indexed:
        when = datetime.fromtimestamp(index.last_indexed).strftime("%Y-%m-%d %H:%M:%S")
        lines.append(f"Last indexed: {when}\n")

    if index.notes_by_type:
        lines.append("**Types:**")
        for note_type, count in _ranked(index.notes_by_type):
            lines.append(f"- {note_type} ({count})")
        lines.append("")

    if index.notes_by_status:
        status_str = ", ".join(f"{s} ({c})" for s, c in _ranked(index.notes_by_status))
        lines.append(f"**Statuses:** {status_str}\n")

    if failures:
        lines.append("**Failed:**")
        for failure in failures[:max_failures]:
            lines.append(_format_failure(failure))
        if len(failures) > max_failures:
            lines.append(f"  ... and {len(failures) - max_failures} more")

    return "\n".join(lines).rstrip()


def _ranked(groups: dict[str, set[str]]) -> list[tuple[str, int]]:
    """Largest groups first, ties by name."""
    return sorted(((name, len(ids)) for name, ids in groups.items()), key=lambda x: (-x[1], x[0]))


def _format_failure(failure: ParseFailure) -> str:
    return f"- {failure.file_path}: {failure.reason}"


def generate_compact_summary(index: VaultIndex) -> str:
    """Generate a one-line summary for log output."""
    parts = [
        f"Vault: {index.total_notes} indexed, {index.excluded_count} skipped, "
        f"{len(index.failures)} failed"
    ]

    top_types = _ranked(index.notes_by_type)[:5]
    if top_types:
        parts.append(f"Types: {', '.join(f'{t}({c})' for t, c in top_types)}")

    return " | ".join(parts)
