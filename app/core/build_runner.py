"""
Build Worker - runs one deploy job to completion.

START -> CLONE -> INSTALL -> BUILD -> COLLECT -> UPLOAD -> DONE, with FAILED
reachable from every non-terminal stage. Each transition publishes exactly
one log line on logs:<slug>; subprocess output is streamed line by line as
it arrives.

Security:
- No shell=True anywhere; commands are argv lists
- The worker's own secrets are removed from the build environment
- Partial build state is never uploaded
"""
import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

from app.core.artifact_store import ArtifactStore, collect_files
from app.core.broker import LogPublisher
from app.core.errors import BuildError, UploadError
from app.core.jobs import Job, JobStage

logger = logging.getLogger(__name__)

# Final log line of a successful deploy. Prefer the typed event on
# status:<slug>; this line stays for consoles that match on text.
COMPLETION_SENTINEL = "Deployment process completed successfully."

SOURCE_DIR_NAME = "output"
DEFAULT_UPLOAD_CONCURRENCY = 8
MAX_LINE_BYTES = 1024 * 1024  # bundlers print very long single lines
READ_CHUNK_BYTES = 64 * 1024

# Removed from the environment handed to install/build commands
WORKER_SECRET_ENV = (
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
    "REDIS_URL",
)


@dataclass
class CommandResult:
    """Result of a subprocess command."""
    command: list[str]
    exit_code: int
    duration_ms: int
    lines: int = 0


def _build_env(env_override: Optional[dict] = None) -> dict:
    """Environment for user build commands, without worker secrets."""
    env = {k: v for k, v in os.environ.items() if k not in WORKER_SECRET_ENV}
    env["CI"] = "true"
    if env_override:
        env.update(env_override)
    return env


async def run_command(
    cmd: Sequence[str],
    cwd: Path,
    on_line: Callable[[str], Awaitable[None]],
    env_override: Optional[dict] = None,
) -> CommandResult:
    """
    Execute a command with no shell, streaming merged stdout/stderr lines.

    Raises:
        BuildError: If the command is malformed or cannot be started
    """
    if isinstance(cmd, str) or not isinstance(cmd, (list, tuple)):
        raise BuildError("Command must be a list, not a string")
    if len(cmd) == 0:
        raise BuildError("Command cannot be empty")

    cmd = [str(part) for part in cmd]
    start = time.perf_counter()

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd),
            env=_build_env(env_override),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        raise BuildError(f"Command {cmd[0]} could not be started: {e}") from e

    lines = 0

    async def emit(raw: bytes) -> None:
        nonlocal lines
        line = raw.decode("utf-8", errors="replace").rstrip("\r")
        if line:
            lines += 1
            await on_line(line)

    try:
        # Lines longer than MAX_LINE_BYTES are published in pieces
        buffer = b""
        while True:
            chunk = await process.stdout.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            buffer += chunk
            *complete, buffer = buffer.split(b"\n")
            for raw in complete:
                await emit(raw)
            while len(buffer) >= MAX_LINE_BYTES:
                await emit(buffer[:MAX_LINE_BYTES])
                buffer = buffer[MAX_LINE_BYTES:]
        if buffer:
            await emit(buffer)

        exit_code = await process.wait()
    finally:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

    return CommandResult(
        command=cmd,
        exit_code=exit_code,
        duration_ms=int((time.perf_counter() - start) * 1000),
        lines=lines,
    )


class BuildWorker:
    """Runs one job: clone, install, build, then upload the output tree."""

    def __init__(
        self,
        job: Job,
        publisher: LogPublisher,
        store: ArtifactStore,
        workspace: Path,
        output_dir: str = "dist",
        install_command: Sequence[str] = ("npm", "install"),
        build_command: Sequence[str] = ("npm", "run", "build"),
        upload_concurrency: int = DEFAULT_UPLOAD_CONCURRENCY,
    ):
        self.job = job
        self.publisher = publisher
        self.store = store
        self.workspace = Path(workspace)
        self.source_dir = self.workspace / SOURCE_DIR_NAME
        self.output_dir = output_dir
        self.install_command = list(install_command)
        self.build_command = list(build_command)
        self.upload_concurrency = max(1, upload_concurrency)
        self.uploaded: list[str] = []

    @property
    def stage(self) -> JobStage:
        return self.job.stage

    async def _transition(self, stage: JobStage, line: str) -> None:
        self.job.stage = stage
        logger.debug(f"stage_changed stage={stage.value}", extra={"job_id": self.job.slug, "stage": stage.value})
        await self.publisher.log(line)

    async def _run_step(self, cmd: Sequence[str], cwd: Path) -> None:
        result = await run_command(cmd, cwd, self.publisher.log)
        if result.exit_code != 0:
            raise BuildError(f"Command {result.command[0]} exited with code {result.exit_code}")

    async def run(self) -> int:
        """
        Run the job to a terminal stage.

        Returns:
            Process exit code: 0 on DONE, 1 on FAILED
        """
        try:
            await self._transition(JobStage.START, "Starting the build process...")

            await self._transition(JobStage.CLONE, "Cloning repository...")
            await self._run_step(["git", "clone", self.job.source_url, str(self.source_dir)], self.workspace)
            if not self.source_dir.is_dir():
                raise BuildError("Output directory not found after cloning.")

            await self._transition(JobStage.INSTALL, f"Running {' '.join(self.install_command)}...")
            await self._run_step(self.install_command, self.source_dir)

            await self._transition(JobStage.BUILD, f"Running {' '.join(self.build_command)}...")
            await self._run_step(self.build_command, self.source_dir)

            build_output = self.source_dir / self.output_dir
            await self._transition(JobStage.COLLECT, "Build process completed successfully.")
            if not build_output.is_dir():
                raise BuildError(f"Build output directory ({self.output_dir}) not found.")
            files = collect_files(build_output)
            await self.publisher.log(f"Found {len(files)} files to upload.")

            await self._transition(JobStage.UPLOAD, "Uploading files...")
            await self.upload_files(files, build_output)

            await self._transition(JobStage.DONE, COMPLETION_SENTINEL)
            await self.publisher.terminal(JobStage.DONE.value)
            return 0

        except (BuildError, UploadError) as e:
            logger.error(f"job_failed error={e}", extra={"job_id": self.job.slug})
            return await self._fail(str(e))

        except Exception as e:
            logger.exception("job_error", extra={"job_id": self.job.slug, "stage": self.stage.value})
            if self.stage.is_terminal:
                # The outcome was already published
                return 0 if self.stage == JobStage.DONE else 1
            return await self._fail(f"Unexpected error: {type(e).__name__}")

    async def _fail(self, detail: str) -> int:
        await self._transition(JobStage.FAILED, f"Error: Build process failed. {detail}")
        await self.publisher.terminal(JobStage.FAILED.value, detail)
        return 1

    async def _upload_one(
        self,
        semaphore: asyncio.Semaphore,
        abort: asyncio.Event,
        path: Path,
        base: Path,
    ) -> Optional[str]:
        relative = path.relative_to(base).as_posix()
        async with semaphore:
            # A slot freed by a failed upload must not start a new one
            if abort.is_set():
                return None
            await self.publisher.log(f"Uploading: {relative}")
            try:
                key = await asyncio.to_thread(self.store.upload_file, self.job.slug, path, relative)
            except Exception as e:
                abort.set()
                await self.publisher.log(f"Error: Failed to upload {relative}. {e}")
                raise
            self.uploaded.append(key)
            await self.publisher.log(f"Upload successful: {relative}")
            return key

    async def upload_files(self, files: list[Path], base: Path) -> list[str]:
        """
        Upload files with bounded concurrency.

        The first failure cancels every upload that has not started yet;
        objects already written stay in the store.
        """
        semaphore = asyncio.Semaphore(self.upload_concurrency)
        abort = asyncio.Event()
        tasks = [
            asyncio.create_task(self._upload_one(semaphore, abort, path, base))
            for path in files
        ]

        try:
            return list(await asyncio.gather(*tasks))
        except Exception:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
