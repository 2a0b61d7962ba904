"""Per-api diagnostic switches and one-shot warning state."""

from dataclasses import dataclass


@dataclass
class Diagnostics:
    development: bool = True
    middleware_warning_done: bool = False
    missing_state_warning_done: bool = False
