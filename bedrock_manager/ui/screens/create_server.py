"""Create server form screen."""

from textual.app import ComposeResult
from textual.screen import Screen
from textual.widgets import Static, Input, Button, Label
from textual.containers import Container, Vertical, Horizontal
from typing import Optional

from ...core.lifecycle import LifecycleManager
from ...errors import ManagerError, ValidationError


def parse_memory(value: str) -> Optional[int]:
    """
    Parse a memory size typed by the user.

    Accepts plain bytes or a number with an M/MB/G/GB suffix.

    Args:
        value: Text from the form, blank for the default

    Returns:
        Size in bytes, or None when blank

    Raises:
        ValidationError: If the text is not a size
    """
    text = (value or "").strip().upper()
    if not text:
        return None

    multipliers = {"GB": 1024 ** 3, "G": 1024 ** 3, "MB": 1024 ** 2, "M": 1024 ** 2}
    for suffix, multiplier in multipliers.items():
        if text.endswith(suffix):
            number = text[:-len(suffix)].strip()
            break
    else:
        number, multiplier = text, 1

    try:
        return int(float(number) * multiplier)
    except ValueError:
        raise ValidationError(f"Invalid memory size '{value}'", operation="create")


class CreateServerScreen(Screen):
    """Form for creating a new server."""

    def __init__(self, manager: LifecycleManager):
        """
        Initialize form.

        Args:
            manager: LifecycleManager instance
        """
        super().__init__()
        self.manager = manager

    def compose(self) -> ComposeResult:
        """Compose form UI."""
        yield Container(
            Vertical(
                Static("Create New Server", classes="wizard-title"),

                Label("Server Name:"),
                Input(placeholder="Bedrock Server", id="input-name"),

                Label("Version (default: LATEST):"),
                Input(placeholder="LATEST", id="input-version"),

                Label("Memory (e.g. 2G, 1536M):"),
                Input(placeholder="2G", id="input-memory"),

                Label("Docker network (blank for default):"),
                Input(placeholder="bridge", id="input-network"),

                Horizontal(
                    Button("Cancel", id="btn-cancel", variant="error"),
                    Button("Create", id="btn-create", variant="success"),
                    classes="wizard-buttons"
                ),

                Static("", id="form-error", classes="error-message hidden"),

                id="wizard-container"
            )
        )

    def on_button_pressed(self, event):
        """Handle button clicks."""
        if event.button.id == "btn-cancel":
            self.app.pop_screen()
        elif event.button.id == "btn-create":
            self._create_server()

    def _show_error(self, message: str):
        error_msg = self.query_one("#form-error", Static)
        error_msg.update(message)
        error_msg.remove_class("hidden")

    def _create_server(self):
        """Validate the form and create the server in the background."""
        try:
            values = {
                "name": self.query_one("#input-name", Input).value.strip() or None,
                "version": self.query_one("#input-version", Input).value.strip() or None,
                "memory": parse_memory(self.query_one("#input-memory", Input).value),
                "network": self.query_one("#input-network", Input).value.strip() or None,
            }
        except ValidationError as e:
            self._show_error(e.message)
            return

        self.app.notify("Creating server in background...", severity="information")
        self.run_worker(self._create_server_worker(values), exclusive=True)

    async def _create_server_worker(self, values: dict):
        """Background worker to create the server."""
        try:
            result = await self.manager.create(**values)
        except ManagerError as e:
            self._show_error(f"Failed to create server: {e.message}")
            return

        # Main screen refreshes itself from the broadcast event
        self.app.pop_screen()
        self.app.notify(f"Server {result.server_id} {result.status}", severity="information")
