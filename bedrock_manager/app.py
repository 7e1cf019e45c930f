"""Main Textual application for Bedrock Server Manager."""

from textual.app import App, ComposeResult
from textual.binding import Binding

from .core.commands import CommandExecutor
from .core.lifecycle import LifecycleManager


class BedrockManagerApp(App):
    """Terminal dashboard; one observer of the manager's broadcast hub."""

    ENABLE_COMMAND_PALETTE = False

    BINDINGS = [
        Binding("q", "quit", "Quit", priority=True, show=True),
        Binding("c", "create_server", "Create", show=True),
        Binding("r", "refresh", "Refresh", show=True),
    ]

    def __init__(self, manager: LifecycleManager, executor: CommandExecutor):
        """
        Initialize the application.

        Args:
            manager: LifecycleManager shared with any other front end
            executor: CommandExecutor for console commands
        """
        super().__init__()
        self.manager = manager
        self.executor = executor

    def compose(self) -> ComposeResult:
        """Create child widgets for the app."""
        # Footer is in each Screen instead
        return []

    def on_mount(self) -> None:
        """Set up the app when mounted."""
        # Import MainScreen here to avoid circular import
        from .ui.screens.main_screen import MainScreen
        self.push_screen(MainScreen(self.manager, self.executor))

    async def on_unmount(self) -> None:
        await self.manager.close()

    def action_create_server(self):
        from .ui.screens.main_screen import MainScreen
        if isinstance(self.screen, MainScreen):
            self.screen.action_create_server()

    def action_refresh(self):
        """Refresh server list."""
        from .ui.screens.main_screen import MainScreen
        # Access the current screen if it's MainScreen
        if isinstance(self.screen, MainScreen):
            self.screen.refresh_servers()
