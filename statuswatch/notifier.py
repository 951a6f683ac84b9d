"""
Console notifier with clean, structured console output.

Renders monitor events as timestamped console lines with ANSI colors.
This is the local alert sink; webhook and hook collaborators consume the
same events through ``to_payload()`` / ``hook_environment()``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from statuswatch.models import (
    RefreshCompleted,
    Source,
    SourceChanged,
    SourceState,
    TransitionEvent,
    TransitionKind,
)

# ANSI color codes for terminal styling
_RESET = "\033[0m"
_BOLD = "\033[1m"
_DIM = "\033[2m"
_RED = "\033[91m"
_GREEN = "\033[92m"
_YELLOW = "\033[93m"
_BLUE = "\033[94m"
_MAGENTA = "\033[95m"
_CYAN = "\033[96m"
_WHITE = "\033[97m"
_GRAY = "\033[90m"

_INDICATOR_COLORS = {
    "none": _GREEN,
    "minor": _YELLOW,
    "major": _MAGENTA,
    "critical": _RED,
}

_KIND_TAGS = {
    TransitionKind.DEGRADED: "STATUS DEGRADED",
    TransitionKind.RECOVERED: "RECOVERED",
    TransitionKind.INCIDENT: "ACTIVE INCIDENT",
}


def _indicator_color(indicator: str) -> str:
    return _INDICATOR_COLORS.get(indicator, _GRAY)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def print_banner() -> None:
    """Print the startup banner."""
    banner = f"""
{_BOLD}{_CYAN}+------------------------------------------------------------------+
|          StatusWatch -- Status Page Aggregator                   |
|          Async * Multi-provider * Transition alerts              |
+------------------------------------------------------------------+{_RESET}
"""
    print(banner)


def print_monitoring_start(sources: Iterable[Source], refresh_interval: float) -> None:
    """Print one line per monitored source."""
    for source in sources:
        group = f"  {_DIM}[{source.group}]{_RESET}" if source.group else ""
        print(
            f"  {_BOLD}{_BLUE}> Monitoring:{_RESET} {_WHITE}{source.name}{_RESET}"
            f"  {_DIM}({source.base_url}){_RESET}{group}"
        )
    print(f"  {_DIM}Refreshing every {refresh_interval:g}s{_RESET}\n")


def print_separator() -> None:
    """Print a visual separator line."""
    print(f"{_DIM}{'─' * 68}{_RESET}")


def print_transition(event: TransitionEvent) -> None:
    """Print a status transition with affected components."""
    color = _indicator_color(event.indicator)
    ts = event.timestamp.strftime("%Y-%m-%d %H:%M:%S")

    print_separator()
    print(f"  {_GRAY}[{ts}]{_RESET} {_BOLD}{color}{_KIND_TAGS[event.kind]}{_RESET}")
    print(f"    {_BOLD}Source   :{_RESET} {event.source_name}")
    print(f"    {_BOLD}Title    :{_RESET} {event.title}")
    print(f"    {_BOLD}Status   :{_RESET} {color}{event.indicator}{_RESET} - {event.body}")
    if event.components:
        print(f"    {_BOLD}Affected :{_RESET} {', '.join(event.components)}")
    print(f"    {_BOLD}Link     :{_RESET} {_DIM}{event.source_url}{_RESET}")
    print()


def print_source_state(source: Source, state: SourceState) -> None:
    """One status line for a source, marking stale data."""
    color = _indicator_color(state.indicator)
    stale = f" {_YELLOW}(stale){_RESET}" if state.is_stale else ""
    print(
        f"  {color}●{_RESET} {_BOLD}{source.name}{_RESET}: "
        f"{state.description}{stale}"
    )
    if state.last_error:
        print(f"      {_DIM}{_RED}{state.last_error}{_RESET}")


def print_refresh_complete(event: RefreshCompleted) -> None:
    color = _indicator_color(event.worst_indicator)
    print(
        f"  {_GRAY}[{_now()}]{_RESET} Refreshed {event.source_count} source(s); "
        f"worst: {color}{event.worst_indicator}{_RESET}"
    )


def print_source_changed(event: SourceChanged) -> None:
    verb = "Added" if event.hook_event.endswith("add") else "Removed"
    print(f"  {_DIM}[{_now()}] {verb} source {event.source.name}{_RESET}")


def print_error(source_name: str, message: str) -> None:
    """Print an error message."""
    print(
        f"  {_GRAY}[{_now()}]{_RESET} {_RED}ERROR{_RESET} "
        f"{_BOLD}{source_name}:{_RESET} {message}"
    )


def print_shutdown() -> None:
    """Print shutdown message."""
    print(f"\n{_BOLD}{_CYAN}StatusWatch stopped. Goodbye!{_RESET}\n")


class ConsoleNotifier:
    """Monitor subscriber that prints events as they arrive."""

    def __init__(self, transitions_enabled: bool = True) -> None:
        self.transitions_enabled = transitions_enabled

    def __call__(self, event: object) -> None:
        if isinstance(event, TransitionEvent):
            if self.transitions_enabled:
                print_transition(event)
        elif isinstance(event, RefreshCompleted):
            print_refresh_complete(event)
        elif isinstance(event, SourceChanged):
            print_source_changed(event)
