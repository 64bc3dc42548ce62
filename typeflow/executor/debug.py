"""Breakpoints and step-through control for a run.

A ``RunHandle`` wraps one run task. The run suspends before any node
flagged as a breakpoint and then blocks on its control channel until the
caller resumes it, steps one node, or cancels it.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Set

import structlog

from .context import ExecutionContext
from .data import NodeResult, RunStatus, WorkflowExecutionResult
from .errors import ExecutionCancelledError

logger = structlog.get_logger()


class RunCommand(str, Enum):
    RESUME = "resume"
    STEP = "step"
    CANCEL = "cancel"


class RunControl:
    """Per-run command channel between the caller and the coordinator."""

    def __init__(self):
        self._queue: "asyncio.Queue[RunCommand]" = asyncio.Queue()

    def send(self, command: RunCommand) -> None:
        self._queue.put_nowait(command)

    async def receive(self) -> RunCommand:
        return await self._queue.get()

    def drain(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()


RunFunc = Callable[["RunHandle"], Awaitable[WorkflowExecutionResult]]


class RunHandle:
    """Caller-side view of a run that may pause at breakpoints."""

    def __init__(self, context: ExecutionContext, run: RunFunc):
        self.context = context
        self.control = RunControl()
        self.step_pending = False
        self._run = run
        self._task: Optional[asyncio.Task] = None
        self._suspended = asyncio.Event()
        self.logger = logger.bind(
            component="run_handle",
            execution_id=context.execution_id,
        )

    @property
    def execution_id(self) -> str:
        return self.context.execution_id

    @property
    def status(self) -> RunStatus:
        return self.context.status

    @property
    def suspended_node_id(self) -> Optional[str]:
        return self.context.suspended_node_id

    @property
    def node_results(self) -> Dict[str, NodeResult]:
        return dict(self.context.node_results)

    @property
    def breakpoints(self) -> Set[str]:
        return set(self.context.breakpoints)

    @property
    def started(self) -> bool:
        return self._task is not None

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def start(self) -> "RunHandle":
        if self._task is not None:
            raise RuntimeError(f"Run {self.execution_id} has already started")
        self._task = asyncio.ensure_future(self._run(self))
        return self

    def toggle_breakpoint(self, node_id: str) -> bool:
        """Flip the breakpoint flag for ``node_id`` and return the new state."""
        if node_id in self.context.breakpoints:
            self.context.breakpoints.discard(node_id)
            return False
        self.context.breakpoints.add(node_id)
        return True

    def _command(self, command: RunCommand) -> bool:
        if self.status != RunStatus.SUSPENDED:
            self.logger.warning(
                "Ignoring command for run that is not suspended",
                command=command.value,
                status=self.status.value,
            )
            return False
        self.control.send(command)
        self._suspended.clear()
        return True

    def resume(self) -> bool:
        """Continue until the next breakpoint or the end of the run."""
        return self._command(RunCommand.RESUME)

    def step(self) -> bool:
        """Execute exactly one more node, then suspend again."""
        return self._command(RunCommand.STEP)

    def cancel(self) -> None:
        self.context.cancel()
        if self.status == RunStatus.SUSPENDED:
            self.control.send(RunCommand.CANCEL)
            self._suspended.clear()

    async def suspend_at(self, node_id: str) -> None:
        """Park the run before ``node_id`` until a command arrives."""
        self.step_pending = False
        self.control.drain()
        self.context.suspended_node_id = node_id
        self.context.transition(RunStatus.SUSPENDED)
        self._suspended.set()
        self.logger.info("Run suspended", node_id=node_id)

        if self.context.cancelled:
            command = RunCommand.CANCEL
        else:
            command = await self.control.receive()

        self._suspended.clear()
        self.context.suspended_node_id = None
        if command == RunCommand.CANCEL:
            raise ExecutionCancelledError()

        self.context.transition(RunStatus.RUNNING)
        self.step_pending = command == RunCommand.STEP
        self.logger.info("Run resumed", node_id=node_id, command=command.value)

    async def wait_for_suspension(self) -> Optional[str]:
        """Wait until the run suspends or finishes; returns the suspended node id."""
        if self._task is None:
            self.start()
        waiter = asyncio.ensure_future(self._suspended.wait())
        try:
            await asyncio.wait({waiter, self._task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        return self.suspended_node_id

    async def wait(self) -> WorkflowExecutionResult:
        if self._task is None:
            self.start()
        return await self._task
