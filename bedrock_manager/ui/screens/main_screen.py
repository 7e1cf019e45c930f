"""Main screen showing list of servers."""

from typing import Optional

import pyperclip
from textual.app import ComposeResult
from textual.screen import Screen
from textual.widgets import Static, DataTable, Button, Footer
from textual.containers import Horizontal
from textual.reactive import reactive
from textual.binding import Binding

from ...core.commands import CommandExecutor
from ...core.lifecycle import LifecycleManager, format_bytes
from ...core.server import BEDROCK_PORT, NetworkDecision, ServerStatus, ServerView
from ...config import Config
from ...errors import ManagerError


def connection_address(view: ServerView, decision: NetworkDecision) -> Optional[str]:
    """
    Address players enter to join a server.

    Args:
        view: Server view with the container's IP address
        decision: Network decision for the server

    Returns:
        "host:port", or None while a direct-address container has no IP yet
    """
    if decision.requires_port_mapping:
        return f"{Config.docker_host_name()}:{decision.exposed_port}"
    if view.ip_address:
        return f"{view.ip_address}:{BEDROCK_PORT}"
    return None


class MainScreen(Screen):
    """
    Server list kept current by broadcast events.

    The screen also re-reads through the manager's cache every
    STATUS_REFRESH_INTERVAL seconds, which covers events missed while the
    observer was detached.
    """

    BINDINGS = [
        Binding("s", "start_server", "Start", show=True),
        Binding("t", "stop_server", "Stop", show=True),
        Binding("x", "restart_server", "Restart", show=True),
        Binding("l", "open_console", "Console", show=True),
        Binding("y", "copy_address", "Copy address", show=True),
        Binding("u", "recreate_server", "Recreate", show=False),
        Binding("d", "delete_server", "Delete", show=True),
    ]

    selected_server_id = reactive(None)

    def __init__(self, manager: LifecycleManager, executor: CommandExecutor):
        """
        Initialize main screen.

        Args:
            manager: LifecycleManager instance
            executor: CommandExecutor instance
        """
        super().__init__()
        self.manager = manager
        self.executor = executor
        self._observer = None
        self._server_ids = []
        self._addresses = {}

    def compose(self) -> ComposeResult:
        """Compose main screen layout."""
        yield Static("Bedrock Server Manager", id="server-count")

        yield DataTable(id="server-table", zebra_stripes=True, show_header=True, show_cursor=True)

        yield Horizontal(
            Button("Create", id="btn-create", variant="success"),
            Button("Start", id="btn-start", variant="success"),
            Button("Stop", id="btn-stop", variant="warning"),
            Button("Restart", id="btn-restart"),
            Button("Recreate", id="btn-recreate"),
            Button("Console", id="btn-console", variant="primary"),
            Button("Copy Address", id="btn-copy"),
            Button("Delete", id="btn-delete", variant="error"),
            classes="action-buttons"
        )
        yield Footer()

    def on_mount(self):
        """Initialize table and attach to the broadcast hub."""
        table = self.query_one("#server-table", DataTable)
        table.add_columns("ID", "Name", "Status", "Network", "Port", "Memory")

        self._observer = self.manager.hub.subscribe()
        self.run_worker(self._watch_events(), exclusive=False, group="events")

        self.run_worker(self._load_servers(), exclusive=True, group="refresh")
        self.set_interval(Config.STATUS_REFRESH_INTERVAL, self.refresh_servers)

    def on_unmount(self):
        if self._observer is not None:
            self.manager.hub.unsubscribe(self._observer)
            self._observer = None

    async def _watch_events(self):
        """Refresh whenever the hub reports a change."""
        async for event in self._observer:
            if event.topic.startswith("server/") or event.topic == "reconcile":
                self.refresh_servers()

    def refresh_servers(self):
        """Reload the server list (served from cache when fresh)."""
        if self.is_mounted:
            self.run_worker(self._load_servers(), exclusive=True, group="refresh")

    async def _load_servers(self):
        try:
            views = await self.manager.list_servers()
        except ManagerError as e:
            self.app.notify(f"Failed to list servers: {e}", severity="error")
            return
        self.render_servers(views)

    def render_servers(self, views: list):
        """Replace table rows with the given server views."""
        table = self.query_one("#server-table", DataTable)
        table.clear()

        self._server_ids = []
        self._addresses = {}
        for view in views:
            decision = self.manager.builder.decide(view.metadata)
            self._addresses[view.server_id] = connection_address(view, decision)
            table.add_row(
                view.server_id,
                view.metadata.name,
                self._format_status(view.status),
                decision.network_mode or "-",
                str(decision.exposed_port) if decision.exposed_port else view.ip_address or "-",
                format_bytes(view.metadata.memory),
                key=view.server_id
            )
            self._server_ids.append(view.server_id)

        self.query_one("#server-count", Static).update(f"Servers: {len(views)}")

        if self._server_ids and self.selected_server_id not in self._server_ids:
            self.selected_server_id = self._server_ids[0]
            table.move_cursor(row=0)

    def _format_status(self, status: ServerStatus) -> str:
        """Format status with colored indicators."""
        colors = {
            ServerStatus.RUNNING: "green",
            ServerStatus.STOPPED: "red",
            ServerStatus.CREATED: "yellow",
            ServerStatus.RESTARTING: "yellow",
            ServerStatus.ERROR: "red bold",
            ServerStatus.ABSENT: "dim",
            ServerStatus.UNKNOWN: "dim",
        }
        color = colors.get(status, "white")
        return f"[{color}]{status.value.upper()}[/{color}]"

    def on_data_table_row_highlighted(self, event):
        """Handle row highlight (cursor movement or click)."""
        if event.row_key is not None:
            self.selected_server_id = event.row_key.value

    def on_button_pressed(self, event):
        """Handle button presses."""
        actions = {
            "btn-create": self.action_create_server,
            "btn-start": self.action_start_server,
            "btn-stop": self.action_stop_server,
            "btn-restart": self.action_restart_server,
            "btn-recreate": self.action_recreate_server,
            "btn-console": self.action_open_console,
            "btn-copy": self.action_copy_address,
            "btn-delete": self.action_delete_server,
        }
        action = actions.get(event.button.id)
        if action:
            action()

    def action_create_server(self):
        from .create_server import CreateServerScreen
        self.app.push_screen(CreateServerScreen(self.manager))

    def action_start_server(self):
        self._run_lifecycle("Start", self.manager.start)

    def action_stop_server(self):
        self._run_lifecycle("Stop", self.manager.stop)

    def action_restart_server(self):
        self._run_lifecycle("Restart", self.manager.restart)

    def action_recreate_server(self):
        self._run_lifecycle("Recreate", self.manager.recreate)

    def action_delete_server(self):
        self._run_lifecycle("Delete", self.manager.delete)

    def action_open_console(self):
        if not self.selected_server_id:
            self.app.notify("Please select a server first", severity="warning")
            return

        from .console_screen import ConsoleScreen
        self.app.push_screen(ConsoleScreen(self.selected_server_id, self.executor))

    def action_copy_address(self):
        """Copy the selected server's connection address to the clipboard."""
        address = self._addresses.get(self.selected_server_id)
        if not address:
            self.app.notify("No address known for this server yet", severity="warning")
            return

        try:
            pyperclip.copy(address)
            self.app.notify(f"Copied {address} to clipboard", severity="information")
        except pyperclip.PyperclipException:
            # Clipboard not available (e.g., headless environment)
            self.app.notify(f"Clipboard not available. Address: {address}", severity="warning")

    def _run_lifecycle(self, label: str, operation):
        if not self.selected_server_id:
            self.app.notify("Please select a server first", severity="warning")
            return

        server_id = self.selected_server_id
        self.app.notify(f"{label}: {server_id} in background...", severity="information")
        self.run_worker(self._lifecycle_worker(label, operation, server_id), exclusive=False)

    async def _lifecycle_worker(self, label: str, operation, server_id: str):
        """Background worker for a lifecycle operation."""
        try:
            result = await operation(server_id)
        except ManagerError as e:
            self.app.notify(f"{label} failed: {e}", severity="error")
            return
        self.app.notify(f"{label} {server_id}: {result.status}", severity="information")
