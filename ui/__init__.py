"""UI layer -- Rich dashboard, output formatters and logging setup."""

from .dashboard import (
    ProgressDisplay,
    console,
    err_console,
    create_histogram,
    print_client_info,
    print_final_results,
    print_header,
    print_history,
    print_latency_details,
    print_speed_result,
)
from .logging_setup import configure_logging
from .output import (
    create_result_json,
    format_csv_header,
    format_csv_row,
    format_text_result,
    save_json,
)

__all__ = [
    "ProgressDisplay",
    "configure_logging",
    "console",
    "err_console",
    "create_histogram",
    "create_result_json",
    "format_csv_header",
    "format_csv_row",
    "format_text_result",
    "print_client_info",
    "print_final_results",
    "print_header",
    "print_history",
    "print_latency_details",
    "print_speed_result",
    "save_json",
]
