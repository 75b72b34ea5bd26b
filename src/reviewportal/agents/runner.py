"""Review agent invocation.

Two runners share one interface:

- ``SubprocessAgentRunner`` spawns the agent executable as
  ``<executable> run --command <cmd> --dir <dir> [--model <m>] <args>``
  with the workspace as its working directory and streams stdout/stderr
  lines to a sink while the process runs.
- ``ServerAgentRunner`` drives a long-running agent server over HTTP.

A run that exceeds the configured timeout is terminated, then killed
after a grace period. In server mode the session is aborted instead.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import httpx

from reviewportal.agents.server_client import AgentServerClient
from reviewportal.config import AgentConfig
from reviewportal.errors import AgentRunError
from reviewportal.logging import get_logger

OutputSink = Callable[[str], Awaitable[None]]
StartedCallback = Callable[[str], Awaitable[None]]

STDERR_PREFIX = "[stderr] "
READ_CHUNK_SIZE = 64 * 1024


@dataclass
class AgentRunResult:
    """Outcome of one agent invocation.

    Attributes:
        exit_code: Process exit code (None if the process never started)
        spawn_error: Error message if the agent could not be started
        timed_out: True if the run was stopped by the timeout
        agent_session_id: Agent server session id (server mode only)
    """

    exit_code: int | None
    spawn_error: str | None = None
    timed_out: bool = False
    agent_session_id: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.spawn_error is None and not self.timed_out and self.exit_code == 0

    def describe(self) -> str:
        """Human-readable failure reason."""
        if self.spawn_error is not None:
            return f"Failed to start agent: {self.spawn_error}"
        if self.timed_out:
            return "Agent timed out"
        return f"Agent exited with code {self.exit_code}"

    def raise_for_failure(self) -> None:
        """Raise AgentRunError unless the run succeeded."""
        if not self.succeeded:
            raise AgentRunError(self.describe())


class AgentRunner(Protocol):
    """Interface shared by the subprocess and server runners."""

    async def run(
        self,
        command: str,
        directory: Path,
        arguments: str,
        sink: OutputSink | None = None,
        model: str | None = None,
        on_started: StartedCallback | None = None,
    ) -> AgentRunResult: ...

    async def close(self) -> None: ...


class SubprocessAgentRunner:
    """Runs the agent as a child process."""

    def __init__(self, config: AgentConfig) -> None:
        self.config = config
        self.logger = get_logger(__name__).bind(component="subprocess_agent_runner")

    def build_argv(
        self,
        command: str,
        directory: Path,
        arguments: str,
        model: str | None = None,
    ) -> list[str]:
        argv = [self.config.executable, "run", "--command", command, "--dir", str(directory)]
        if model:
            argv.extend(["--model", model])
        if arguments:
            argv.append(arguments)
        return argv

    async def run(
        self,
        command: str,
        directory: Path,
        arguments: str,
        sink: OutputSink | None = None,
        model: str | None = None,
        on_started: StartedCallback | None = None,
    ) -> AgentRunResult:
        """Run the agent and wait for it to exit.

        Args:
            command: Agent command name (e.g. "codereview")
            directory: Working directory passed as --dir and used as cwd
            arguments: Positional argument string (e.g. "42 acme/widgets")
            sink: Receives each output line; stderr lines are prefixed
            model: Optional model override
            on_started: Not called; subprocess runs have no remote session

        Returns:
            AgentRunResult describing how the run ended.
        """
        argv = self.build_argv(command, directory, arguments, model)
        self.logger.info("agent_process_starting", command=command, directory=str(directory))

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(directory),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self.logger.error("agent_spawn_failed", executable=self.config.executable, error=str(e))
            return AgentRunResult(exit_code=None, spawn_error=str(e))

        pumps = asyncio.gather(
            self._pump(process.stdout, "", sink),
            self._pump(process.stderr, STDERR_PREFIX, sink),
        )
        timed_out = False
        try:
            timeout = self.config.timeout_seconds or None
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            timed_out = True
            self.logger.warning(
                "agent_process_timeout", timeout_seconds=self.config.timeout_seconds
            )
            await self._terminate(process)
        except asyncio.CancelledError:
            await self._terminate(process)
            pumps.cancel()
            raise
        finally:
            if not pumps.done():
                try:
                    await asyncio.wait_for(
                        asyncio.shield(pumps), timeout=self.config.terminate_grace_seconds
                    )
                except asyncio.TimeoutError:
                    pumps.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await pumps

        self.logger.info(
            "agent_process_exited",
            exit_code=process.returncode,
            timed_out=timed_out,
        )
        return AgentRunResult(exit_code=process.returncode, timed_out=timed_out)

    async def _pump(
        self,
        stream: asyncio.StreamReader | None,
        prefix: str,
        sink: OutputSink | None,
    ) -> None:
        if stream is None:
            return
        # Split lines by hand; StreamReader line iteration fails on long lines.
        pending = b""
        while chunk := await stream.read(READ_CHUNK_SIZE):
            *lines, pending = (pending + chunk).split(b"\n")
            for raw in lines:
                await self._forward(raw, prefix, sink)
        await self._forward(pending, prefix, sink)

    async def _forward(self, raw: bytes, prefix: str, sink: OutputSink | None) -> None:
        line = raw.decode("utf-8", errors="replace").rstrip()
        if line and sink is not None:
            await sink(f"{prefix}{line}")

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Terminate, then kill after the grace period."""
        if process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self.config.terminate_grace_seconds)
        except asyncio.TimeoutError:
            self.logger.warning("agent_process_kill", pid=process.pid)
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()

    async def close(self) -> None:
        return None


class ServerAgentRunner:
    """Runs the agent command in a session on the agent server."""

    def __init__(self, config: AgentConfig, client: AgentServerClient | None = None) -> None:
        self.config = config
        self.client = client or AgentServerClient(config)
        self.logger = get_logger(__name__).bind(component="server_agent_runner")

    async def run(
        self,
        command: str,
        directory: Path,
        arguments: str,
        sink: OutputSink | None = None,
        model: str | None = None,
        on_started: StartedCallback | None = None,
    ) -> AgentRunResult:
        try:
            agent_session_id = await self.client.create_session(
                str(directory), title=f"{command} {arguments}"
            )
        except (httpx.HTTPError, AgentRunError) as e:
            self.logger.error("agent_server_unavailable", url=self.config.server_url, error=str(e))
            return AgentRunResult(exit_code=None, spawn_error=str(e))

        if on_started is not None:
            await on_started(agent_session_id)

        prompt = self.client.start_prompt(
            agent_session_id, f"/{command} {arguments}", str(directory)
        )
        try:
            status = await self.client.poll_until_complete(
                agent_session_id,
                on_text=sink,
                timeout_seconds=self.config.timeout_seconds or None,
                prompt=prompt,
            )
        except asyncio.CancelledError:
            await self._abort(agent_session_id, prompt)
            raise
        if status == "timeout":
            self.logger.warning(
                "agent_server_run_timeout",
                agent_session_id=agent_session_id,
                timeout_seconds=self.config.timeout_seconds,
            )
            await self._abort(agent_session_id, prompt)
        self.logger.info(
            "agent_server_run_finished", agent_session_id=agent_session_id, status=status
        )
        return AgentRunResult(
            exit_code=0 if status == "completed" else 1,
            timed_out=status == "timeout",
            agent_session_id=agent_session_id,
        )

    async def _abort(self, agent_session_id: str, prompt: asyncio.Task[str | None]) -> None:
        """Stop the remote agent and drop the outstanding prompt request."""
        prompt.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await prompt
        await self.client.abort(agent_session_id)

    async def close(self) -> None:
        await self.client.close()


def create_agent_runner(config: AgentConfig) -> SubprocessAgentRunner | ServerAgentRunner:
    """Build the runner selected by ``config.mode``."""
    if config.mode == "server":
        return ServerAgentRunner(config)
    return SubprocessAgentRunner(config)
