"""TUI Dashboard for oneach."""

from __future__ import annotations

from textual.app import App, ComposeResult
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import DataTable, Footer, Header, Static
from textual.worker import Worker

from .dispatcher import Dispatcher, DispatcherState
from .errors import OneachError
from .results import Completed, ExecutionResult


def _status_cell(result: ExecutionResult) -> str:
    if isinstance(result.outcome, Completed):
        if result.outcome.exit_status == 0:
            return "ok"
        return f"exit {result.outcome.exit_status}"
    return "error"


def _last_line(result: ExecutionResult) -> str:
    lines = [line for line in result.output_text().split("\n") if line.strip()]
    return lines[-1] if lines else ""


class StatusBar(Static):
    """Bottom status bar showing overall progress."""

    completed: reactive[int] = reactive(0)
    failed: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    stage: reactive[str] = reactive(DispatcherState.CREATED.value)

    def render(self) -> str:
        return (
            f"Progress: {self.completed}/{self.total} targets complete "
            f"({self.failed} failed) | {self.stage} | Press 'q' to quit"
        )


class ResultArrived(Message):
    """Message for a finished target."""

    def __init__(self, result: ExecutionResult) -> None:
        super().__init__()
        self.result = result


class StageChanged(Message):
    """Message for a dispatcher state change."""

    def __init__(self, state: DispatcherState) -> None:
        super().__init__()
        self.state = state


class Dashboard(App):
    """Shows the results of a run as they arrive."""

    CSS = """
    DataTable {
        height: 1fr;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "quit", "Quit"),
    ]

    def __init__(self, dispatcher: Dispatcher, **kwargs) -> None:
        super().__init__(**kwargs)
        self.dispatcher = dispatcher
        self.dispatcher.on_status = self._on_status
        self.error: OneachError | None = None
        self._worker: Worker | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield DataTable(id="results", zebra_stripes=True)
        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start execution when the app mounts."""
        table = self.query_one("#results", DataTable)
        table.add_columns("SERVICE", "ZONE", "HOSTNAME", "STATUS", "OUTPUT")
        self._worker = self.run_worker(self._run_execution(), exclusive=True)

    async def _run_execution(self) -> None:
        """Consume the dispatcher's results, posting each to the UI."""
        try:
            async for result in self.dispatcher.stream():
                self.post_message(ResultArrived(result))
        except OneachError as e:
            self.error = e
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.stage = f"error: {e}"

    def _on_status(self, state: DispatcherState) -> None:
        self.post_message(StageChanged(state))

    def on_stage_changed(self, message: StageChanged) -> None:
        status_bar = self.query_one("#status-bar", StatusBar)
        if self.error is None:
            status_bar.stage = message.state.value
        if message.state is DispatcherState.SCOPE_RESOLVED:
            status_bar.total = len(self.dispatcher.targets)

    def on_result_arrived(self, message: ResultArrived) -> None:
        result = message.result
        target = result.target
        table = self.query_one("#results", DataTable)
        table.add_row(
            target.service or "-",
            target.zonename or "(global)",
            target.hostname,
            _status_cell(result),
            _last_line(result),
        )

        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.completed += 1
        if result.failed:
            status_bar.failed += 1

    async def action_quit(self) -> None:
        """Quit the application."""
        if self._worker and self._worker.is_running:
            self._worker.cancel()
        self.exit()
