"""UI layer -- Rich dashboard and output formatters."""

from .dashboard import (
    PhaseProgress,
    SequenceView,
    console,
    print_final_results,
    print_header,
    print_history,
    print_phase_error,
    print_phase_result,
)
from .output import (
    append_csv,
    create_result_json,
    format_csv_header,
    format_csv_row,
    format_text_result,
    save_json,
)

__all__ = [
    "PhaseProgress",
    "SequenceView",
    "append_csv",
    "console",
    "create_result_json",
    "format_csv_header",
    "format_csv_row",
    "format_text_result",
    "print_final_results",
    "print_header",
    "print_history",
    "print_phase_error",
    "print_phase_result",
    "save_json",
]
