"""
Agent runtime backed by the Codex CLI.

Each turn runs `codex exec --json` as a subprocess in the project directory
(`codex exec --json resume <id>` for an existing thread). The prompt is
written to stdin and the JSONL event stream is read from stdout.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

from codexrelay.agent.base import AgentEvent, parse_agent_event
from codexrelay.exceptions import AgentRuntimeError

logger = logging.getLogger(__name__)

# Single events (aggregated command output) can be large
STREAM_LIMIT = 16 * 1024 * 1024


class CodexExecThread:
    """One Codex thread driven through `codex exec`."""

    def __init__(
        self,
        runtime: "CodexExecRuntime",
        working_directory: str,
        thread_id: Optional[str] = None,
        model: Optional[str] = None,
        approval_mode: Optional[str] = None,
    ):
        self.runtime = runtime
        self.working_directory = working_directory
        self.id = thread_id
        self.model = model
        self.approval_mode = approval_mode

    def build_command(self) -> list[str]:
        cmd = [
            self.runtime.codex_bin,
            "exec",
            "--json",
            "--skip-git-repo-check",
            "--cd",
            self.working_directory,
            "--sandbox",
            self.runtime.sandbox_mode,
            "--config",
            f'approval_policy="{self.approval_mode or self.runtime.approval_mode}"',
        ]
        model = self.model or self.runtime.default_model
        if model:
            cmd.extend(["--model", model])
        if self.id:
            cmd.extend(["resume", self.id])
        return cmd

    async def run_streamed(self, prompt: str) -> AsyncIterator[AgentEvent]:
        """
        Run one turn and yield its events.

        Raises:
            AgentRuntimeError: If the CLI cannot be started or exits non-zero
        """
        cmd = self.build_command()
        logger.debug(f"Running {' '.join(cmd[:3])} in {self.working_directory}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise AgentRuntimeError(f"Failed to start {cmd[0]}: {e}") from e

        if proc.stdin is None or proc.stdout is None or proc.stderr is None:
            proc.kill()
            await proc.wait()
            raise AgentRuntimeError(f"{cmd[0]} started without stdio pipes")
        stderr_task = asyncio.create_task(proc.stderr.read())

        try:
            proc.stdin.write(prompt.encode("utf-8"))
            await proc.stdin.drain()
            proc.stdin.close()

            async for raw in proc.stdout:
                event = parse_agent_event(raw.decode("utf-8", errors="replace"))
                if event is None:
                    continue
                if event.type == "thread.started" and event.thread_id:
                    self.id = event.thread_id
                yield event

            returncode = await proc.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace").strip()
            if returncode != 0:
                raise AgentRuntimeError(
                    f"codex exec exited with status {returncode}: {stderr[:500]}"
                )
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            if not stderr_task.done():
                stderr_task.cancel()


class CodexExecRuntime:
    """AgentRuntime running turns through the `codex` CLI."""

    def __init__(
        self,
        codex_bin: str = "codex",
        sandbox_mode: str = "workspace-write",
        approval_mode: str = "on-failure",
        default_model: Optional[str] = None,
    ):
        self.codex_bin = codex_bin
        self.sandbox_mode = sandbox_mode
        self.approval_mode = approval_mode
        self.default_model = default_model

    def open_thread(
        self,
        working_directory: str,
        thread_id: Optional[str] = None,
        model: Optional[str] = None,
        approval_mode: Optional[str] = None,
    ) -> CodexExecThread:
        if thread_id:
            logger.info(f"Resuming Codex thread {thread_id[:12]} in {working_directory}")
        else:
            logger.info(f"Starting Codex thread in {working_directory}")
        return CodexExecThread(
            self,
            working_directory,
            thread_id=thread_id,
            model=model,
            approval_mode=approval_mode,
        )
