"""Code execution backends.

Each backend takes source text plus a language tag and returns an ordered list
of typed output lines. Backends report every failure as ``error`` lines so
callers never have to catch anything; execution results are never written
into room state.
"""
import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Protocol

import httpx
from pydantic import BaseModel, Field

from constants import (
    EXECUTION_BACKEND,
    EXECUTION_TIMEOUT_SECONDS,
    PISTON_URL,
    SUBPROCESS_COMMANDS,
)
from logging_config import get_logger

logger = get_logger(__name__)

OutputType = Literal["log", "error", "warn", "info", "result"]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class OutputLine(BaseModel):
    type: OutputType
    content: str
    timestamp: str = Field(default_factory=_now)


class ExecutionResult(BaseModel):
    success: bool
    outputs: List[OutputLine]


def error_result(message: str) -> ExecutionResult:
    return ExecutionResult(success=False, outputs=[OutputLine(type="error", content=message)])


def split_lines(kind: OutputType, text: str) -> List[OutputLine]:
    return [OutputLine(type=kind, content=line) for line in text.splitlines() if line.strip()]


class Executor(Protocol):
    async def execute(self, source: str, language: str) -> ExecutionResult:
        ...


class SubprocessExecutor:
    """Runs each request in a fresh interpreter process fed on stdin."""

    def __init__(self, commands: Optional[Dict[str, List[str]]] = None,
                 timeout: float = EXECUTION_TIMEOUT_SECONDS):
        self.commands = dict(SUBPROCESS_COMMANDS if commands is None else commands)
        self.timeout = timeout

    async def execute(self, source: str, language: str) -> ExecutionResult:
        command = self.commands.get(language)
        if not command:
            return error_result(f"Execution not supported for {language}")

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            logger.warning(f"Runtime for {language} not found: {command[0]}")
            return error_result(f"Runtime for {language} is not available")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(source.encode()), self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.info(f"{language} execution killed after {self.timeout}s")
            return error_result(f"Execution timed out after {self.timeout:g}s")

        outputs = split_lines("log", stdout.decode(errors="replace"))
        outputs += split_lines("error", stderr.decode(errors="replace"))
        if process.returncode != 0 and not stderr.strip():
            outputs.append(OutputLine(type="error", content=f"Process exited with code {process.returncode}"))
        logger.debug(f"{language} execution finished with code {process.returncode}, {len(outputs)} line(s)")
        return ExecutionResult(success=process.returncode == 0, outputs=outputs)


class PistonExecutor:
    """Delegates execution to a Piston-compatible HTTP service."""

    LANGUAGES = {"javascript": "javascript", "python": "python"}

    def __init__(self, url: str = PISTON_URL, timeout: float = EXECUTION_TIMEOUT_SECONDS,
                 client: Optional[httpx.AsyncClient] = None, version: str = "*"):
        self.url = url
        self.timeout = timeout
        self.version = version
        self._client = client

    async def execute(self, source: str, language: str) -> ExecutionResult:
        runtime = self.LANGUAGES.get(language)
        if runtime is None:
            return error_result(f"Execution not supported for {language}")

        payload = {
            "language": runtime,
            "version": self.version,
            "files": [{"content": source}],
        }
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Execution service error for {language}: {e}")
            return error_result(f"Execution service error: {e}")

        compile_stage = data.get("compile") or {}
        if compile_stage.get("code"):
            outputs = split_lines("error", compile_stage.get("stderr") or compile_stage.get("output", ""))
            return ExecutionResult(success=False, outputs=outputs or error_result("Compilation failed").outputs)

        run = data.get("run")
        if not run:
            return error_result(data.get("message", "Execution service returned no result"))

        outputs = split_lines("log", run.get("stdout", ""))
        outputs += split_lines("error", run.get("stderr", ""))
        code = run.get("code")
        if run.get("signal"):
            outputs.append(OutputLine(type="error", content=f"Process killed by {run['signal']}"))
        return ExecutionResult(success=code == 0 and not run.get("signal"), outputs=outputs)


class ExecutorRegistry:
    def __init__(self, executors: Optional[Dict[str, Executor]] = None):
        self._executors: Dict[str, Executor] = dict(executors or {})

    def register(self, language: str, executor: Executor):
        self._executors[language] = executor

    @property
    def languages(self) -> List[str]:
        return sorted(self._executors)

    async def execute(self, source: str, language: str) -> ExecutionResult:
        executor = self._executors.get(language)
        if executor is None:
            return error_result(f"Execution not supported for {language}")
        try:
            return await executor.execute(source, language)
        except Exception as e:
            logger.error(f"Executor for {language} failed: {e}", exc_info=True)
            return error_result(str(e) or e.__class__.__name__)


def build_registry(backend: str = EXECUTION_BACKEND) -> ExecutorRegistry:
    if backend == "piston":
        executor = PistonExecutor()
        languages = PistonExecutor.LANGUAGES
    elif backend == "subprocess":
        executor = SubprocessExecutor()
        languages = executor.commands
    else:
        raise ValueError(f"Unknown execution backend {backend!r}")
    logger.info(f"Execution backend: {backend} ({', '.join(languages)})")
    return ExecutorRegistry({language: executor for language in languages})
