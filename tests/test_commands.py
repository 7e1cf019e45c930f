import asyncio

import pytest

from bedrock_manager.core.commands import CommandExecutor, tokenize
from bedrock_manager.errors import ExecutionError, ValidationError


@pytest.fixture
def executor(docker):
    return CommandExecutor(docker, timeout=5)


@pytest.fixture
def running(docker):
    return docker.add_container("bedrock-0001", status="running", labels={"server-id": "bedrock-0001"})


def test_tokenize_keeps_quoted_names_together():
    assert tokenize('ban "Player One"') == ["ban", "Player One"]


def test_tokenize_single_quotes_and_extra_spaces():
    assert tokenize("  say  'hello   there'  ") == ["say", "hello   there"]


@pytest.mark.parametrize("line", ["", "   ", 'ban "Player One'])
def test_tokenize_rejects_bad_input(line):
    with pytest.raises(ValidationError):
        tokenize(line)


def test_exec_passes_argument_list(executor, docker, running):
    docker.exec_result = (0, "Banned Player One\n")

    output = asyncio.run(executor.exec("bedrock-0001", ["send-command", "ban", "Player One"]))

    assert output == "Banned Player One\n"
    assert docker.exec_calls == [(running, ["send-command", "ban", "Player One"])]


def test_exec_rejects_shell_strings(executor, docker, running):
    with pytest.raises(ExecutionError):
        asyncio.run(executor.exec("bedrock-0001", "send-command ban x"))
    assert docker.exec_calls == []


def test_send_console_tokenizes(executor, docker, running):
    asyncio.run(executor.send_console("bedrock-0001", 'kick "Player One" griefing'))

    assert docker.exec_calls[-1][1] == ["send-command", "kick", "Player One", "griefing"]


def test_player_helpers(executor, docker, running):
    async def scenario():
        await executor.ban("bedrock-0001", "Player One", "cheating")
        await executor.op("bedrock-0001", "Steve")
        await executor.whitelist_add("bedrock-0001", "Alex")
        await executor.say("bedrock-0001", "Restarting soon")

    asyncio.run(scenario())

    assert [call[1] for call in docker.exec_calls] == [
        ["send-command", "ban", "Player One", "cheating"],
        ["send-command", "op", "Steve"],
        ["send-command", "allowlist", "add", "Alex"],
        ["send-command", "say", "Restarting soon"],
    ]


def test_exec_requires_running_server(executor, docker):
    docker.add_container("bedrock-0001", status="exited", labels={"server-id": "bedrock-0001"})

    with pytest.raises(ExecutionError) as exc_info:
        asyncio.run(executor.say("bedrock-0001", "hi"))
    assert "not running" in exc_info.value.message


def test_exec_requires_container(executor):
    with pytest.raises(ExecutionError):
        asyncio.run(executor.say("bedrock-0001", "hi"))


def test_non_zero_exit_is_execution_error(executor, docker, running):
    docker.exec_result = (1, "Unknown command\n")

    with pytest.raises(ExecutionError) as exc_info:
        asyncio.run(executor.console("bedrock-0001", "frobnicate"))
    assert "status 1" in exc_info.value.message
    assert exc_info.value.server_id == "bedrock-0001"
