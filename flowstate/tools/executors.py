"""Concurrent execution of independent tool calls.

Every strategy submits all calls of a batch before waiting on any of them
and keys results by call id regardless of completion order. A failing call
becomes an error :class:`ToolResult` instead of aborting its siblings. The
process strategy starts every call at once; the thread and async strategies
run at most ``max_concurrency`` calls at a time, so larger batches queue
behind the running ones.

- ProcessToolExecutor: one OS process per call, result sent back over a pipe
- ThreadToolExecutor: thread pool
- AsyncToolExecutor: asyncio tasks limited by a semaphore (coroutine tools)

Example:
    >>> executor = ProcessToolExecutor(ToolExecutorConfig(timeout=30))
    >>> results = await executor.execute(
    ...     [ToolCall(id="1", name="add", arguments={"a": 1, "b": 2})],
    ...     {"add": add},
    ... )
    >>> results["1"].output
    3
"""

import asyncio
import functools
import inspect
import logging
import multiprocessing
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from multiprocessing.connection import wait
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from flowstate.tools.events import ToolCall, ToolResult
from flowstate.utils.config import get_tool_max_workers

logger = logging.getLogger(__name__)

Job = Tuple[ToolCall, Callable[..., Any]]


@dataclass
class ToolExecutorConfig:
    """Configuration for tool execution.

    Attributes:
        max_concurrency: Maximum calls running at once (thread and async
            strategies; FLOWSTATE_TOOL_MAX_WORKERS by default)
        timeout: Optional timeout in seconds for the whole batch. Calls still
            running when it expires get a timeout error result.
    """

    max_concurrency: int = field(default_factory=get_tool_max_workers)
    timeout: Optional[float] = None

    def __post_init__(self):
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")


def _timeout_result(call: ToolCall, timeout: Optional[float]) -> ToolResult:
    return ToolResult.failure(call, f"Tool call timed out after {timeout}s", "TimeoutError")


class ToolExecutor(ABC):
    """Base class for tool execution strategies."""

    def __init__(self, config: Optional[ToolExecutorConfig] = None):
        self.config = config or ToolExecutorConfig()

    async def execute(
        self,
        calls: Sequence[ToolCall],
        tools: Mapping[str, Callable[..., Any]],
    ) -> Dict[str, ToolResult]:
        """Run a batch of tool calls concurrently.

        Args:
            calls: Calls to run; ids must be distinct
            tools: Registered tools by name

        Returns:
            Results keyed by call id, in the order of ``calls``

        Raises:
            ValueError: If two calls share an id
        """
        ids = [call.id for call in calls]
        if len(set(ids)) != len(ids):
            raise ValueError("Tool call ids must be distinct")

        results: Dict[str, ToolResult] = {}
        jobs: List[Job] = []
        for call in calls:
            func = tools.get(call.name)
            if func is None:
                results[call.id] = ToolResult.failure(
                    call, f"Unknown tool: {call.name}", "UnknownToolError"
                )
            else:
                jobs.append((call, func))

        if jobs:
            logger.debug("%s running %d tool calls", type(self).__name__, len(jobs))
            results.update(await self._run(jobs))

        return {call.id: results[call.id] for call in calls}

    @abstractmethod
    async def _run(self, jobs: List[Job]) -> Dict[str, ToolResult]:
        """Run every job and return one result per call id."""
        pass

    async def _collect_futures(
        self, jobs: List[Job], futures: Dict[str, "asyncio.Future[Any]"]
    ) -> Dict[str, ToolResult]:
        done, not_done = await asyncio.wait(futures.values(), timeout=self.config.timeout)

        for future in not_done:
            future.cancel()
        if not_done:
            await asyncio.gather(*not_done, return_exceptions=True)

        results: Dict[str, ToolResult] = {}
        for call, _ in jobs:
            future = futures[call.id]
            if future not in done:
                results[call.id] = _timeout_result(call, self.config.timeout)
            elif future.exception() is not None:
                results[call.id] = ToolResult.from_exception(call, future.exception())
            else:
                results[call.id] = ToolResult.success(call, future.result())
        return results


def _run_in_child(conn, func: Callable[..., Any], arguments: Dict[str, Any]) -> None:
    """Process entry point: run one tool and send the outcome to the parent."""
    try:
        output = func(**arguments)
    except Exception as e:
        conn.send(("error", type(e).__name__, str(e) or type(e).__name__))
    else:
        try:
            conn.send(("ok", output))
        except Exception as e:
            conn.send(("error", type(e).__name__, f"Tool result could not be sent: {e}"))
    finally:
        conn.close()


class ProcessToolExecutor(ToolExecutor):
    """Runs each call in its own process.

    Tools and their arguments and results must be picklable. A process that
    dies without reporting (segfault, ``os._exit``) yields a
    ``ProcessCrashedError`` result for that call only.
    """

    def __init__(
        self,
        config: Optional[ToolExecutorConfig] = None,
        start_method: Optional[str] = None,
    ):
        super().__init__(config)
        self._context = multiprocessing.get_context(start_method)

    async def _run(self, jobs: List[Job]) -> Dict[str, ToolResult]:
        results: Dict[str, ToolResult] = {}
        running = []

        for call, func in jobs:
            reader, writer = self._context.Pipe(duplex=False)
            process = self._context.Process(
                target=_run_in_child,
                args=(writer, func, call.arguments),
                name=f"flowstate-tool-{call.name}",
                daemon=True,
            )
            try:
                process.start()
            except Exception as e:
                # Typically an unpicklable tool under the spawn start method
                reader.close()
                writer.close()
                results[call.id] = ToolResult.from_exception(call, e)
                continue
            writer.close()
            running.append((call, process, reader))

        if running:
            results.update(await asyncio.to_thread(self._wait_for_processes, running))
        return results

    def _wait_for_processes(self, running) -> Dict[str, ToolResult]:
        timeout = self.config.timeout
        deadline = time.monotonic() + timeout if timeout is not None else None
        pending = {reader: (call, process) for call, process, reader in running}
        results: Dict[str, ToolResult] = {}

        while pending:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            ready = wait(list(pending), timeout=remaining)
            if not ready:
                break

            for reader in ready:
                call, process = pending.pop(reader)
                try:
                    message = reader.recv()
                except EOFError:
                    process.join()
                    results[call.id] = ToolResult.failure(
                        call,
                        f"Tool process exited with code {process.exitcode} before returning a result",
                        "ProcessCrashedError",
                    )
                    continue
                finally:
                    reader.close()

                process.join()
                if message[0] == "ok":
                    results[call.id] = ToolResult.success(call, message[1])
                else:
                    results[call.id] = ToolResult.failure(call, message[2], message[1])

        for reader, (call, process) in pending.items():
            logger.warning("Terminating tool process for call %s after timeout", call.id)
            process.terminate()
            process.join()
            reader.close()
            results[call.id] = _timeout_result(call, timeout)

        return results


class ThreadToolExecutor(ToolExecutor):
    """Runs calls on a thread pool sized by ``max_concurrency``."""

    async def _run(self, jobs: List[Job]) -> Dict[str, ToolResult]:
        loop = asyncio.get_running_loop()
        pool = ThreadPoolExecutor(
            max_workers=min(len(jobs), self.config.max_concurrency),
            thread_name_prefix="flowstate-tool",
        )
        try:
            futures = {
                call.id: loop.run_in_executor(pool, functools.partial(func, **call.arguments))
                for call, func in jobs
            }
            return await self._collect_futures(jobs, futures)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)


class AsyncToolExecutor(ToolExecutor):
    """Runs calls as asyncio tasks.

    Coroutine functions are awaited on the event loop; plain functions run in
    a worker thread. A semaphore caps how many run at once.
    """

    async def _run(self, jobs: List[Job]) -> Dict[str, ToolResult]:
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def run_call(func: Callable[..., Any], arguments: Dict[str, Any]) -> Any:
            async with semaphore:
                if inspect.iscoroutinefunction(func):
                    return await func(**arguments)
                output = await asyncio.to_thread(func, **arguments)
                if inspect.isawaitable(output):
                    output = await output
                return output

        tasks: Dict[str, Awaitable[Any]] = {
            call.id: asyncio.create_task(run_call(func, call.arguments)) for call, func in jobs
        }
        return await self._collect_futures(jobs, tasks)
