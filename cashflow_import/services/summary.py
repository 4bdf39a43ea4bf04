from __future__ import annotations

from ..models.processing_result import BatchResult

"""SUMMARY line rendering for the end of a CLI run."""


def _format_seconds(value: float) -> str:
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        # avoid scientific notation for tiny values
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(batch: BatchResult) -> str:
    """Render the SUMMARY line for a batch.

    Format:
    SUMMARY files={n}/{n} success={ok} failed={failed} contracts={c}
    receivables={r} expenses={e} errors={errors} elapsed_sec={elapsed}

    Examples:
        >>> from datetime import datetime, timezone
        >>> t = datetime(2024, 1, 1, tzinfo=timezone.utc)
        >>> render_summary_line(BatchResult(start_time=t, end_time=t))
        'SUMMARY files=0/0 success=0 failed=0 contracts=0 receivables=0 expenses=0 errors=0 elapsed_sec=0'
    """
    totals = batch.totals()
    return (
        f"SUMMARY files={batch.total_files}/{batch.total_files} "
        f"success={batch.successful_files} "
        f"failed={batch.failed_files} "
        f"contracts={totals['contractsCreated']} "
        f"receivables={totals['receivablesCreated']} "
        f"expenses={totals['expensesCreated']} "
        f"errors={len(totals['errors'])} "
        f"elapsed_sec={_format_seconds(batch.elapsed_seconds)}"
    )
