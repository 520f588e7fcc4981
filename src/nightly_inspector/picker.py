"""Interactive nightly picker: choose two consecutive nightlies to diff."""

from datetime import datetime, timedelta
from typing import Optional

from textual import on
from textual.app import App, ComposeResult
from textual.containers import Vertical
from textual.screen import Screen
from textual.widgets import Footer, Header, Label, OptionList, Static

from nightly_inspector.correlator import sort_newest_first
from nightly_inspector.models import Nightly


# ── Consecutive-nightly helpers ───────────────────────────────────────────

def _is_weekend(ts: datetime) -> bool:
    return ts.weekday() >= 5


def business_days_between(start: datetime, end: datetime) -> int:
    """Calendar days between two timestamps minus the weekend days crossed."""
    days = (end - start).days
    if days <= 0:
        return days
    weekends = 0
    current = start
    while current <= end:
        if _is_weekend(current):
            weekends += 1
        current += timedelta(days=1)
    return days - weekends


def _within_one_day(from_ts: datetime, ts: datetime, skip_weekends: bool) -> bool:
    earlier, later = sorted((from_ts, ts))
    if skip_weekends:
        if _is_weekend(ts):
            return False
        return business_days_between(earlier, later) <= 1
    return (later - earlier).days <= 1


def find_next_consecutive(
    nightlies: list[Nightly], from_ts: datetime, skip_weekends: bool
) -> Optional[Nightly]:
    """Earliest nightly after ``from_ts`` that is at most one (business) day away."""
    later = [
        n
        for n in nightlies
        if n.effective_timestamp > from_ts
        and _within_one_day(from_ts, n.effective_timestamp, skip_weekends)
    ]
    return min(later, key=lambda n: n.effective_timestamp, default=None)


def find_prev_consecutive(
    nightlies: list[Nightly], from_ts: datetime, skip_weekends: bool
) -> Optional[Nightly]:
    """Latest nightly before ``from_ts`` that is at most one (business) day away."""
    earlier = [
        n
        for n in nightlies
        if n.effective_timestamp < from_ts
        and _within_one_day(from_ts, n.effective_timestamp, skip_weekends)
    ]
    return max(earlier, key=lambda n: n.effective_timestamp, default=None)


def chronological_pair(a: Nightly, b: Nightly) -> tuple[str, str]:
    """``(older_sha, newer_sha)`` for two nightlies."""
    if a.effective_timestamp > b.effective_timestamp:
        return b.sha, a.sha
    return a.sha, b.sha


def format_nightly_for_display(nightly: Nightly) -> str:
    ts = nightly.effective_timestamp
    marker = " (weekend)" if nightly.is_weekend_build else ""
    return f"{ts:%Y-%m-%d %H:%M} {ts:%a}  nightly-{nightly.sha}  {nightly.tag.name}{marker}"


# ── Screens ───────────────────────────────────────────────────────────────

class SelectNightlyScreen(Screen):
    """First step: pick the nightly to compare."""

    CSS = """
    #picker-title {
        text-style: bold;
        margin: 1 2;
    }
    #nightly-list {
        height: 1fr;
        margin: 0 2;
    }
    #picker-error {
        color: $error;
        margin: 0 2;
    }
    """

    def __init__(self, nightlies: list[Nightly]) -> None:
        super().__init__()
        self.nightlies = nightlies

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with Vertical():
            yield Static("Select a nightly to compare", id="picker-title")
            yield OptionList(
                *(format_nightly_for_display(n) for n in self.nightlies),
                id="nightly-list",
            )
            yield Label("", id="picker-error")
        yield Footer()

    def show_error(self, message: str) -> None:
        self.query_one("#picker-error", Label).update(f"⚠  {message}")

    @on(OptionList.OptionSelected, "#nightly-list")
    def nightly_selected(self, event: OptionList.OptionSelected) -> None:
        self.app.choose_base(self.nightlies[event.option_index])  # type: ignore[attr-defined]


class DirectionScreen(Screen):
    """Second step: compare with the previous or the next nightly."""

    BINDINGS = [
        ("b", "go_back", "Back"),
    ]

    CSS = """
    #direction-title {
        text-style: bold;
        margin: 1 2;
    }
    #direction-list {
        margin: 0 2;
    }
    """

    def __init__(self, base: Nightly, choices: list[tuple[str, Nightly]]) -> None:
        super().__init__()
        self.base = base
        self.choices = choices

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with Vertical():
            yield Static(
                f"Select comparison direction for nightly-{self.base.sha}",
                id="direction-title",
            )
            yield OptionList(*(label for label, _ in self.choices), id="direction-list")
        yield Footer()

    @on(OptionList.OptionSelected, "#direction-list")
    def direction_selected(self, event: OptionList.OptionSelected) -> None:
        _, other = self.choices[event.option_index]
        self.app.exit(chronological_pair(self.base, other))

    def action_go_back(self) -> None:
        self.app.pop_screen()


class NightlyPickerApp(App[Optional[tuple[str, str]]]):
    """Returns ``(older_sha, newer_sha)`` or None when the user quits."""

    TITLE = "Nightly Inspector"
    SUB_TITLE = "Pick two consecutive nightlies to diff"

    BINDINGS = [
        ("q", "quit", "Quit"),
    ]

    def __init__(self, nightlies: list[Nightly], skip_weekends: bool = True) -> None:
        super().__init__()
        self.skip_weekends = skip_weekends
        ordered = sort_newest_first(nightlies)
        if skip_weekends:
            ordered = [n for n in ordered if not n.is_weekend_build]
        self.nightlies = ordered

    def on_mount(self) -> None:
        self.push_screen(SelectNightlyScreen(self.nightlies))

    def direction_choices(self, base: Nightly) -> list[tuple[str, Nightly]]:
        ts = base.effective_timestamp
        choices: list[tuple[str, Nightly]] = []
        prev = find_prev_consecutive(self.nightlies, ts, self.skip_weekends)
        if prev is not None:
            choices.append(("Compare with previous nightly", prev))
        nxt = find_next_consecutive(self.nightlies, ts, self.skip_weekends)
        if nxt is not None:
            choices.append(("Compare with next nightly", nxt))
        return choices

    def choose_base(self, base: Nightly) -> None:
        choices = self.direction_choices(base)
        if not choices:
            screen = self.screen
            if isinstance(screen, SelectNightlyScreen):
                screen.show_error("No consecutive nightlies available to compare with")
            return
        self.push_screen(DirectionScreen(base, choices))
