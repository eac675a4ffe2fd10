import json
import sys

import httpx

from executors import ExecutionResult, ExecutorRegistry, PistonExecutor, SubprocessExecutor, build_registry

PYTHON = {"python": [sys.executable, "-I", "-"]}


async def test_subprocess_stdout_lines():
    executor = SubprocessExecutor(commands=PYTHON, timeout=10)
    result = await executor.execute("print('one')\nprint('two')", "python")
    assert result.success is True
    assert [(line.type, line.content) for line in result.outputs] == [("log", "one"), ("log", "two")]


async def test_subprocess_failure_becomes_error_lines():
    executor = SubprocessExecutor(commands=PYTHON, timeout=10)
    result = await executor.execute("print('before')\nraise ValueError('bad input')", "python")
    assert result.success is False
    assert result.outputs[0].type == "log"
    assert any(line.type == "error" and "ValueError: bad input" in line.content for line in result.outputs)


async def test_subprocess_timeout():
    executor = SubprocessExecutor(commands=PYTHON, timeout=0.5)
    result = await executor.execute("import time\ntime.sleep(10)", "python")
    assert result.success is False
    assert "timed out" in result.outputs[-1].content


async def test_subprocess_missing_runtime():
    executor = SubprocessExecutor(commands={"python": ["no-such-interpreter-codesync"]})
    result = await executor.execute("print(1)", "python")
    assert result.success is False
    assert result.outputs[0].content == "Runtime for python is not available"


async def test_subprocess_unsupported_language():
    result = await SubprocessExecutor(commands=PYTHON).execute("<h1></h1>", "html")
    assert result.success is False
    assert result.outputs[0].content == "Execution not supported for html"


def piston_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def test_piston_success():
    seen = {}

    def handler(request: httpx.Request):
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, json={
            "language": "python",
            "version": "3.10.0",
            "run": {"stdout": "hi\n", "stderr": "", "output": "hi\n", "code": 0, "signal": None},
        })

    async with piston_client(handler) as client:
        executor = PistonExecutor(url="http://piston.test/execute", client=client)
        result = await executor.execute("print('hi')", "python")

    assert seen["payload"]["language"] == "python"
    assert seen["payload"]["files"] == [{"content": "print('hi')"}]
    assert result.success is True
    assert [(line.type, line.content) for line in result.outputs] == [("log", "hi")]


async def test_piston_runtime_error():
    def handler(request):
        return httpx.Response(200, json={
            "run": {"stdout": "", "stderr": "ReferenceError: x is not defined\n", "code": 1, "signal": None},
        })

    async with piston_client(handler) as client:
        result = await PistonExecutor(url="http://piston.test/execute", client=client).execute("x", "javascript")

    assert result.success is False
    assert result.outputs[0].type == "error"
    assert "ReferenceError" in result.outputs[0].content


async def test_piston_service_failure():
    def handler(request):
        return httpx.Response(503, json={"message": "unavailable"})

    async with piston_client(handler) as client:
        result = await PistonExecutor(url="http://piston.test/execute", client=client).execute("1", "python")

    assert result.success is False
    assert result.outputs[0].content.startswith("Execution service error")


async def test_piston_reports_service_message():
    def handler(request):
        return httpx.Response(200, json={"message": "python-9.9 runtime is unknown"})

    async with piston_client(handler) as client:
        result = await PistonExecutor(url="http://piston.test/execute", client=client).execute("1", "python")

    assert result.success is False
    assert result.outputs[0].content == "python-9.9 runtime is unknown"


class ExplodingExecutor:
    async def execute(self, source, language):
        raise RuntimeError("sandbox crashed")


class EchoExecutor:
    async def execute(self, source, language):
        return ExecutionResult(success=True, outputs=[{"type": "result", "content": source}])


async def test_registry_dispatch_and_failures():
    registry = ExecutorRegistry({"python": EchoExecutor()})
    registry.register("javascript", ExplodingExecutor())
    assert registry.languages == ["javascript", "python"]

    ok = await registry.execute("1 + 1", "python")
    assert ok.success and ok.outputs[0].content == "1 + 1"

    crashed = await registry.execute("x", "javascript")
    assert crashed.success is False
    assert crashed.outputs[0].content == "sandbox crashed"

    unsupported = await registry.execute("<p>", "html")
    assert unsupported.outputs[0].content == "Execution not supported for html"


def test_build_registry():
    assert build_registry("subprocess").languages == ["javascript", "python"]
    assert build_registry("piston").languages == ["javascript", "python"]
