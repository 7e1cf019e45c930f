"""Console and player commands executed inside server containers."""

import asyncio
import logging
import shlex
from typing import List, Optional, Sequence

from .server import ServerStatus
from ..config import Config
from ..errors import ExecutionError, NotFoundError, OrchestrationError, ValidationError

logger = logging.getLogger(__name__)

# Console bridge shipped in the itzg/minecraft-bedrock-server image
CONSOLE_COMMAND = "send-command"


def tokenize(command_line: str) -> List[str]:
    """
    Split a console line into arguments, keeping quoted substrings together.

    Args:
        command_line: Free-text command, e.g. 'ban "Player One"'

    Returns:
        Argument list, e.g. ["ban", "Player One"]

    Raises:
        ValidationError: On empty input or unbalanced quotes
    """
    try:
        tokens = shlex.split(command_line or "")
    except ValueError as e:
        raise ValidationError(f"Cannot parse command: {e}", operation="tokenize")
    if not tokens:
        raise ValidationError("Command is empty", operation="tokenize")
    return tokens


class CommandExecutor:
    """Runs argument vectors inside a server's container."""

    def __init__(self, docker_client, timeout: Optional[float] = None):
        """
        Initialize command executor.

        Args:
            docker_client: Shared DockerClient
            timeout: Seconds to wait for each runtime call (defaults to Config.DOCKER_API_TIMEOUT)
        """
        self.docker = docker_client
        self.timeout = timeout or Config.DOCKER_API_TIMEOUT

    async def exec(self, server_id: str, argv: Sequence[str]) -> str:
        """
        Execute a command in a running server.

        Args:
            server_id: Target server
            argv: Pre-tokenized argument vector

        Returns:
            Command output

        Raises:
            ExecutionError: If the server is not running, the exec is denied,
                or the command exits non-zero
        """
        if isinstance(argv, (str, bytes)) or not argv:
            raise ExecutionError("Expected a non-empty argument list", operation="exec", server_id=server_id)
        argv = [str(arg) for arg in argv]

        container = await self._call(self.docker.find_server_container, server_id, server_id=server_id)
        if container is None:
            raise ExecutionError("Server has no container", operation="exec", server_id=server_id)
        if ServerStatus.from_docker(container.get("status")) != ServerStatus.RUNNING:
            raise ExecutionError("Server is not running", operation="exec", server_id=server_id)

        exit_code, output = await self._call(self.docker.exec, container["id"], argv, server_id=server_id)
        if exit_code != 0:
            logger.warning("Command %s in %s exited with %s", argv[0], server_id, exit_code)
            raise ExecutionError(
                f"Command '{argv[0]}' exited with status {exit_code}: {output.strip()[:200]}",
                operation="exec", server_id=server_id,
            )
        return output

    async def send_console(self, server_id: str, command_line: str) -> str:
        """
        Send a free-text console command to the server.

        Args:
            server_id: Target server
            command_line: Console line, tokenized before execution

        Returns:
            Command output
        """
        return await self.exec(server_id, [CONSOLE_COMMAND, *tokenize(command_line)])

    async def console(self, server_id: str, *args: str) -> str:
        return await self.exec(server_id, [CONSOLE_COMMAND, *args])

    async def ban(self, server_id: str, player: str, reason: Optional[str] = None) -> str:
        args = ["ban", player]
        if reason:
            args.append(reason)
        return await self.console(server_id, *args)

    async def kick(self, server_id: str, player: str, reason: Optional[str] = None) -> str:
        args = ["kick", player]
        if reason:
            args.append(reason)
        return await self.console(server_id, *args)

    async def op(self, server_id: str, player: str) -> str:
        return await self.console(server_id, "op", player)

    async def deop(self, server_id: str, player: str) -> str:
        return await self.console(server_id, "deop", player)

    async def whitelist_add(self, server_id: str, player: str) -> str:
        return await self.console(server_id, "allowlist", "add", player)

    async def whitelist_remove(self, server_id: str, player: str) -> str:
        return await self.console(server_id, "allowlist", "remove", player)

    async def say(self, server_id: str, message: str) -> str:
        return await self.console(server_id, "say", message)

    async def _call(self, func, *args, server_id: str):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ExecutionError("Runtime did not answer in time", operation="exec", server_id=server_id)
        except (NotFoundError, OrchestrationError) as e:
            raise ExecutionError(f"Runtime denied exec: {e.message}", operation="exec", server_id=server_id, cause=e)
