"""
Terminal styling for the pipeline CLI and worker.
"""

from typing import Optional

from llmstxt_pipeline.models import SubjectRecord
from llmstxt_pipeline.status import OrderStatus

ANSI_COLORS = {
    "red": "\033[91m",
    "green": "\033[92m",
    "yellow": "\033[93m",
    "blue": "\033[94m",
    "reset": "\033[0m",
}

STATUS_PREFIXES = {
    "processing": ("blue", "[...]"),
    "info": ("blue", "[i]"),
    "warning": ("yellow", "[~]"),
    "error": ("red", "[!]"),
    "success": ("green", "[✓]"),
}

STATUS_COLORS = {
    OrderStatus.COMPLETED: "green",
    OrderStatus.FAILED: "red",
    OrderStatus.PAYMENT_FAILED: "red",
    OrderStatus.CANCELLED: "yellow",
    OrderStatus.REFUNDED: "yellow",
    OrderStatus.PROCESSING: "blue",
    OrderStatus.QUEUED: "blue",
}


def color_text(text: str, color: str) -> str:
    """Wrap text in ANSI color codes."""
    code = ANSI_COLORS.get(color, "")
    if not code:
        return text
    return f"{code}{text}{ANSI_COLORS['reset']}"


def draw_box(text: str, padding: int = 1) -> str:
    """Draw a box around one or more lines of text."""
    pad = " " * padding
    lines = [f"{pad}{line}{pad}" for line in text.splitlines() or [""]]
    width = max(len(line) for line in lines)
    rows = ["┌" + "─" * width + "┐"]
    rows.extend("│" + line.ljust(width) + "│" for line in lines)
    rows.append("└" + "─" * width + "┘")
    return "\n".join(rows)


def status_message(text: str, status_type: str) -> str:
    """Format a status message with a colored prefix."""
    color, prefix = STATUS_PREFIXES.get(status_type, STATUS_PREFIXES["info"])
    return f"{color_text(prefix, color)} {text}"


def _progress_bar(processed: int, total: int, width: int = 30) -> str:
    if total <= 0:
        return "[" + " " * width + "]"
    filled = min(width, round(width * processed / total))
    return "[" + "#" * filled + " " * (width - filled) + f"] {processed}/{total}"


def generate_summary_report(subject: SubjectRecord, position: Optional[int] = None) -> str:
    """Render the state of one subject for the ``status`` command."""
    status = OrderStatus(subject.status)
    lines = [
        color_text(f"─── Subject {subject.id} ───", "green"),
        f"  Site:      {subject.hostname}",
        f"  Provider:  {subject.provider}",
        f"  Status:    {color_text(status.value, STATUS_COLORS.get(status, 'reset'))}",
        f"  Progress:  {_progress_bar(subject.processed_units or 0, subject.total_units or 0)}",
    ]
    if position is not None:
        lines.append(f"  Queue:     position {position}")
    if status == OrderStatus.COMPLETED:
        lines.append(f"  Entries:   {subject.entry_count}")
    if subject.errors:
        lines.append(color_text(f"  Errors:    {len(subject.errors)}", "yellow"))
        for error in subject.errors:
            lines.append(color_text(f"    - {error}", "yellow"))
    return "\n".join(lines)
