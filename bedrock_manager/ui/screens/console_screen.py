"""Console screen for sending commands to a running server."""

import logging

from textual.app import ComposeResult
from textual.screen import Screen
from textual.widgets import Static, RichLog, Button, Input
from textual.containers import Horizontal
from textual.binding import Binding

from ...core.commands import CommandExecutor
from ...errors import ManagerError

logger = logging.getLogger(__name__)


class ConsoleScreen(Screen):
    """Screen for running console commands on one server."""

    CSS = """
    ConsoleScreen {
        layout: vertical;
    }

    ConsoleScreen .screen-title {
        height: 1;
        dock: top;
    }

    ConsoleScreen .button-row {
        height: 3;
        dock: top;
        align: left middle;
    }

    ConsoleScreen .button-row Button {
        margin: 0 1;
    }

    ConsoleScreen #console-output {
        height: 1fr;
    }

    ConsoleScreen #console-input {
        dock: bottom;
    }
    """

    BINDINGS = [
        Binding("escape", "close", "Close", priority=True),
    ]

    def __init__(self, server_id: str, executor: CommandExecutor):
        """
        Initialize console screen.

        Args:
            server_id: Server to send commands to
            executor: CommandExecutor instance
        """
        super().__init__()
        self.server_id = server_id
        self.executor = executor

    def compose(self) -> ComposeResult:
        """Compose console UI."""
        yield Static(f"Console: {self.server_id}", classes="screen-title")

        yield Horizontal(
            Button("Clear", id="btn-clear"),
            Button("Close", id="btn-close", variant="error"),
            classes="button-row"
        )

        yield RichLog(id="console-output", highlight=False, markup=False)
        yield Input(placeholder='Command, e.g. say "Hello everyone"', id="console-input")

    def on_button_pressed(self, event):
        """Handle button presses."""
        if event.button.id == "btn-clear":
            self.query_one("#console-output", RichLog).clear()
        elif event.button.id == "btn-close":
            self.action_close()

    def action_close(self):
        """Close console."""
        self.app.pop_screen()

    def on_input_submitted(self, event: Input.Submitted):
        command_line = event.value.strip()
        event.input.value = ""
        if command_line:
            self.run_worker(self._send_worker(command_line), exclusive=False)

    async def _send_worker(self, command_line: str):
        """Background worker to run one console command."""
        output = self.query_one("#console-output", RichLog)
        output.write(f"> {command_line}")
        try:
            result = await self.executor.send_console(self.server_id, command_line)
        except ManagerError as e:
            logger.warning("Console command failed on %s: %s", self.server_id, e)
            output.write(f"Error: {e.message}")
            return
        if result.strip():
            output.write(result.rstrip())
