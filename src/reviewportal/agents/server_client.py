"""HTTP client for a running agent server.

The agent server hosts sessions bound to a working directory. A command
is started by posting a slash-command prompt to a session; completion is
detected by polling the session's messages until an assistant message
finishes, or an assistant has answered and no new output arrives for a
stability window.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog

from reviewportal.config import AgentConfig
from reviewportal.errors import AgentRunError

logger = structlog.get_logger(__name__)

TextSink = Callable[[str], Awaitable[None]]


def _message_role(message: dict[str, Any]) -> str | None:
    info = message.get("info") or {}
    return info.get("role")


def _message_finished(message: dict[str, Any]) -> bool:
    info = message.get("info") or {}
    return bool((info.get("time") or {}).get("completed"))


def _text_parts(message: dict[str, Any]) -> list[tuple[str, str]]:
    parts = []
    for index, part in enumerate(message.get("parts") or []):
        if part.get("type") == "text" and part.get("text"):
            part_id = part.get("id") or f"{(message.get('info') or {}).get('id')}:{index}"
            parts.append((part_id, part["text"]))
    return parts


class AgentServerClient:
    """Async client for the agent server session API.

    Attributes:
        config: Agent configuration with server URL and polling settings
    """

    def __init__(self, config: AgentConfig, timeout_seconds: float = 30.0) -> None:
        self.config = config
        self._timeout = timeout_seconds
        self._client: httpx.AsyncClient | None = None
        self._prompts: set[asyncio.Task[str | None]] = set()
        self.logger = logger.bind(component="agent_server_client")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.server_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Cancel outstanding prompts and close the HTTP client."""
        for task in list(self._prompts):
            task.cancel()
        if self._prompts:
            await asyncio.gather(*self._prompts, return_exceptions=True)
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def create_session(self, directory: str, title: str) -> str:
        """Create a session bound to ``directory`` and return its id."""
        client = self._get_client()
        response = await client.post(
            "/session", params={"directory": directory}, json={"title": title}
        )
        response.raise_for_status()
        data = response.json()
        session_id = (data.get("data") or data).get("id") if isinstance(data, dict) else None
        if not session_id:
            raise AgentRunError("Agent server did not return a session id")
        self.logger.info("agent_session_created", agent_session_id=session_id, directory=directory)
        return session_id

    def start_prompt(
        self, session_id: str, text: str, directory: str | None = None
    ) -> asyncio.Task[str | None]:
        """Send a prompt without waiting for the agent to answer.

        The prompt request blocks server-side until the agent finishes, so
        it runs as a background task while callers poll messages. The task
        result is the error message when the server rejected the prompt.
        """
        task = asyncio.create_task(self._post_prompt(session_id, text, directory))
        self._prompts.add(task)
        task.add_done_callback(self._prompts.discard)
        return task

    async def _post_prompt(
        self, session_id: str, text: str, directory: str | None
    ) -> str | None:
        client = self._get_client()
        params = {"directory": directory} if directory else None
        try:
            response = await client.post(
                f"/session/{session_id}/message",
                params=params,
                json={"parts": [{"type": "text", "text": text}]},
                timeout=None,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            self.logger.warning("agent_prompt_failed", agent_session_id=session_id, error=str(e))
            return str(e) or type(e).__name__
        return None

    async def abort(self, session_id: str) -> bool:
        """Ask the server to stop the agent working in ``session_id``."""
        client = self._get_client()
        try:
            response = await client.post(f"/session/{session_id}/abort")
            response.raise_for_status()
        except httpx.HTTPError as e:
            self.logger.warning("agent_abort_failed", agent_session_id=session_id, error=str(e))
            return False
        self.logger.info("agent_session_aborted", agent_session_id=session_id)
        return True

    async def messages(self, session_id: str) -> list[dict[str, Any]]:
        """Fetch all messages of a session."""
        client = self._get_client()
        response = await client.get(f"/session/{session_id}/message")
        response.raise_for_status()
        data = response.json()
        if isinstance(data, dict):
            data = data.get("data") or []
        return list(data)

    async def session_status(self, session_id: str) -> dict[str, str]:
        """Coarse status of a session: running, completed or error."""
        try:
            all_messages = await self.messages(session_id)
        except httpx.HTTPError as e:
            return {
                "status": "error",
                "progress": f"Failed to connect to agent server: {e}",
            }

        if not all_messages:
            return {"status": "running", "progress": "Initializing..."}
        if _message_role(all_messages[-1]) == "assistant":
            return {"status": "completed"}
        return {"status": "running", "progress": "Processing..."}

    async def poll_until_complete(
        self,
        session_id: str,
        on_text: TextSink | None = None,
        timeout_seconds: float | None = None,
        prompt: asyncio.Task[str | None] | None = None,
    ) -> str:
        """Poll messages until the session completes.

        New text parts are forwarded to ``on_text`` as they appear. The
        session is complete once the last message is a finished assistant
        message, or when an assistant has answered and nothing new has
        arrived for ``stability_timeout_seconds``. A rejected ``prompt``
        ends the poll with an error.

        Returns:
            "completed", "error" or "timeout".
        """
        seen_parts: set[str] = set()
        last_change = time.monotonic()
        started = last_change
        message_count = -1

        while True:
            try:
                all_messages = await self.messages(session_id)
            except httpx.HTTPError as e:
                self.logger.warning("agent_poll_failed", agent_session_id=session_id, error=str(e))
                return "error"

            changed = len(all_messages) != message_count
            message_count = len(all_messages)
            for message in all_messages:
                for part_id, text in _text_parts(message):
                    if part_id in seen_parts:
                        continue
                    seen_parts.add(part_id)
                    changed = True
                    if on_text is not None:
                        await on_text(text)

            now = time.monotonic()
            if changed:
                last_change = now

            if all_messages:
                last = all_messages[-1]
                if _message_role(last) == "assistant" and _message_finished(last):
                    return "completed"
                if (info := last.get("info") or {}).get("error"):
                    self.logger.warning(
                        "agent_session_error", agent_session_id=session_id, error=info["error"]
                    )
                    return "error"

            if prompt is not None and prompt.done() and not prompt.cancelled():
                if error := prompt.result():
                    self.logger.warning(
                        "agent_prompt_rejected", agent_session_id=session_id, error=error
                    )
                    return "error"

            answered = any(_message_role(m) == "assistant" for m in all_messages)
            if answered and now - last_change >= self.config.stability_timeout_seconds:
                self.logger.info("agent_session_stable", agent_session_id=session_id)
                return "completed"

            if timeout_seconds and now - started >= timeout_seconds:
                return "timeout"

            await asyncio.sleep(self.config.poll_interval_seconds)
