"""Unit tests for the agent server client and the server-mode runner.

The agent server is mocked with respx. Polling intervals are shortened so
completion detection runs in milliseconds.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
import respx

from reviewportal.agents.runner import ServerAgentRunner
from reviewportal.agents.server_client import AgentServerClient
from reviewportal.config import AgentConfig

SERVER = "http://agent.test"


def assistant_message(text: str, finished: bool = True) -> dict:
    return {
        "info": {
            "id": "msg_2",
            "role": "assistant",
            "time": {"created": 1, "completed": 2 if finished else None},
        },
        "parts": [{"id": "part_1", "type": "text", "text": text}],
    }


USER_MESSAGE = {
    "info": {"id": "msg_1", "role": "user", "time": {"created": 1}},
    "parts": [{"id": "part_0", "type": "text", "text": "/codereview 42 acme/widgets"}],
}


@pytest.fixture
def agent_config() -> AgentConfig:
    return AgentConfig(
        mode="server",
        server_url=SERVER,
        poll_interval_seconds=0.01,
        stability_timeout_seconds=1.0,
        timeout_seconds=5,
    )


@pytest_asyncio.fixture
async def server_client(agent_config: AgentConfig) -> AsyncIterator[AgentServerClient]:
    client = AgentServerClient(agent_config)
    yield client
    await client.close()


class TestCreateSession:
    @respx.mock
    async def test_returns_id(self, server_client: AgentServerClient) -> None:
        route = respx.post(f"{SERVER}/session").respond(json={"id": "ses_1"})

        session_id = await server_client.create_session("/tmp/ws", title="codereview 42")

        assert session_id == "ses_1"
        assert route.calls.last.request.url.params["directory"] == "/tmp/ws"

    @respx.mock
    async def test_wrapped_response(self, server_client: AgentServerClient) -> None:
        respx.post(f"{SERVER}/session").respond(json={"data": {"id": "ses_2"}})
        assert await server_client.create_session("/tmp/ws", title="t") == "ses_2"


class TestSessionStatus:
    """Test the coarse live status used by the sessions endpoint."""

    @respx.mock
    async def test_no_messages_is_running(self, server_client: AgentServerClient) -> None:
        respx.get(f"{SERVER}/session/ses_1/message").respond(json=[])
        assert await server_client.session_status("ses_1") == {
            "status": "running",
            "progress": "Initializing...",
        }

    @respx.mock
    async def test_user_message_last_is_running(self, server_client: AgentServerClient) -> None:
        respx.get(f"{SERVER}/session/ses_1/message").respond(json=[USER_MESSAGE])
        assert (await server_client.session_status("ses_1"))["status"] == "running"

    @respx.mock
    async def test_assistant_message_last_is_completed(
        self, server_client: AgentServerClient
    ) -> None:
        respx.get(f"{SERVER}/session/ses_1/message").respond(
            json=[USER_MESSAGE, assistant_message("done")]
        )
        assert await server_client.session_status("ses_1") == {"status": "completed"}

    @respx.mock
    async def test_unreachable_server_is_error(self, server_client: AgentServerClient) -> None:
        respx.get(f"{SERVER}/session/ses_1/message").mock(
            side_effect=httpx.ConnectError("refused")
        )

        status = await server_client.session_status("ses_1")

        assert status["status"] == "error"
        assert "Failed to connect" in status["progress"]


class TestPollUntilComplete:
    @respx.mock
    async def test_finished_assistant_message(self, server_client: AgentServerClient) -> None:
        respx.get(f"{SERVER}/session/ses_1/message").respond(
            json=[USER_MESSAGE, assistant_message("Review written.")]
        )
        texts: list[str] = []

        async def on_text(text: str) -> None:
            texts.append(text)

        status = await server_client.poll_until_complete("ses_1", on_text=on_text)

        assert status == "completed"
        assert texts == ["/codereview 42 acme/widgets", "Review written."]

    @respx.mock
    async def test_stability_window_completes(self, server_client: AgentServerClient) -> None:
        respx.get(f"{SERVER}/session/ses_1/message").respond(
            json=[USER_MESSAGE, assistant_message("thinking", finished=False)]
        )
        assert await server_client.poll_until_complete("ses_1") == "completed"

    @respx.mock
    async def test_session_error(self, server_client: AgentServerClient) -> None:
        failed = assistant_message("", finished=False)
        failed["info"]["error"] = {"name": "ProviderError"}
        respx.get(f"{SERVER}/session/ses_1/message").respond(json=[USER_MESSAGE, failed])

        assert await server_client.poll_until_complete("ses_1") == "error"


class TestServerAgentRunner:
    @respx.mock
    async def test_run(self, agent_config: AgentConfig, tmp_path: Path) -> None:
        respx.post(f"{SERVER}/session").respond(json={"id": "ses_9"})
        prompt = respx.post(f"{SERVER}/session/ses_9/message").respond(json={})
        respx.get(f"{SERVER}/session/ses_9/message").respond(
            json=[USER_MESSAGE, assistant_message("ok")]
        )
        runner = ServerAgentRunner(agent_config)
        started: list[str] = []

        async def on_started(agent_session_id: str) -> None:
            started.append(agent_session_id)

        try:
            result = await runner.run(
                "codereview", tmp_path, "42 acme/widgets", on_started=on_started
            )
        finally:
            await runner.close()

        assert result.succeeded is True
        assert result.agent_session_id == "ses_9"
        assert started == ["ses_9"]
        if prompt.called:
            body = prompt.calls.last.request.content.decode()
            assert "/codereview 42 acme/widgets" in body

    @respx.mock
    async def test_server_unavailable(self, agent_config: AgentConfig, tmp_path: Path) -> None:
        respx.post(f"{SERVER}/session").mock(side_effect=httpx.ConnectError("refused"))
        runner = ServerAgentRunner(agent_config)

        try:
            result = await runner.run("codereview", tmp_path, "42 acme/widgets")
        finally:
            await runner.close()

        assert result.succeeded is False
        assert result.spawn_error is not None

    @respx.mock
    async def test_rejected_prompt_fails_run(
        self, agent_config: AgentConfig, tmp_path: Path
    ) -> None:
        respx.post(f"{SERVER}/session").respond(json={"id": "s1"})
        respx.post(f"{SERVER}/session/s1/message").respond(500)
        respx.get(f"{SERVER}/session/s1/message").respond(json=[])
        runner = ServerAgentRunner(agent_config)

        try:
            result = await runner.run("codereview", tmp_path, "42 acme/widgets")
        finally:
            await runner.close()

        assert result.succeeded is False
        assert result.timed_out is False
        assert result.exit_code == 1

    @respx.mock
    async def test_timeout_aborts_session(self, tmp_path: Path) -> None:
        config = AgentConfig(
            mode="server",
            server_url=SERVER,
            poll_interval_seconds=0.01,
            stability_timeout_seconds=1.0,
            timeout_seconds=1,
        )
        respx.post(f"{SERVER}/session").respond(json={"id": "ses_slow"})
        prompt_started = asyncio.Event()

        async def hanging_prompt(request: httpx.Request) -> httpx.Response:
            prompt_started.set()
            await asyncio.sleep(60)
            return httpx.Response(200, json={})

        respx.post(f"{SERVER}/session/ses_slow/message").mock(side_effect=hanging_prompt)
        respx.get(f"{SERVER}/session/ses_slow/message").respond(json=[USER_MESSAGE])
        abort = respx.post(f"{SERVER}/session/ses_slow/abort").respond(json=True)
        runner = ServerAgentRunner(config)

        try:
            result = await runner.run("codereview", tmp_path, "42 acme/widgets")
            assert runner.client._prompts == set()
        finally:
            await runner.close()

        assert result.timed_out is True
        assert result.succeeded is False
        assert prompt_started.is_set()
        assert abort.call_count == 1


class TestPromptAndAbort:
    @respx.mock
    async def test_rejected_prompt_ends_poll(self, server_client: AgentServerClient) -> None:
        respx.post(f"{SERVER}/session/ses_1/message").respond(500)
        respx.get(f"{SERVER}/session/ses_1/message").respond(json=[])

        prompt = server_client.start_prompt("ses_1", "/codereview 42 acme/widgets")
        status = await server_client.poll_until_complete(
            "ses_1", timeout_seconds=5, prompt=prompt
        )

        assert status == "error"
        assert prompt.result() is not None

    @respx.mock
    async def test_no_answer_is_not_completed(self, server_client: AgentServerClient) -> None:
        respx.get(f"{SERVER}/session/ses_1/message").respond(json=[USER_MESSAGE])

        status = await server_client.poll_until_complete("ses_1", timeout_seconds=2)

        assert status == "timeout"

    @respx.mock
    async def test_abort(self, server_client: AgentServerClient) -> None:
        route = respx.post(f"{SERVER}/session/ses_1/abort").respond(json=True)

        assert await server_client.abort("ses_1") is True
        assert route.call_count == 1

    @respx.mock
    async def test_abort_failure_is_reported(self, server_client: AgentServerClient) -> None:
        respx.post(f"{SERVER}/session/ses_1/abort").mock(
            side_effect=httpx.ConnectError("refused")
        )

        assert await server_client.abort("ses_1") is False
