"""
Validates and executes tool calls.

``ToolDispatcher.dispatch`` never raises for a tool-level problem: every
outcome, including unknown tools, bad arguments, policy rejections,
timeouts and exceptions inside the tool, comes back as a ``ToolResult``
with an ``ErrorCode``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from aicli.llm.types import ToolCall
from aicli.tools.policy import PolicyEngine
from aicli.tools.registry import ToolRegistry
from aicli.tools.validation import validate_arguments
from aicli.tools.workspace import PathPolicyError, Workspace
from aicli.types import ErrorCode, ToolResult

if TYPE_CHECKING:
    from aicli.orchestrator.cancellation import CancelToken

logger = logging.getLogger(__name__)

DEFAULT_TOOL_TIMEOUT = 60.0


def failure(call: ToolCall, code: str, error: str) -> ToolResult:
    return ToolResult(
        success=False,
        content="",
        tool_call_id=call.id,
        error=error,
        error_code=code,
    )


def cancelled_result(call: ToolCall) -> ToolResult:
    return failure(call, ErrorCode.CANCELLED, "Tool call cancelled by user interrupt")


class ToolDispatcher:
    """
    Parameters
    ----------
    registry:
        Tools available to the model.
    policy:
        Risk ceiling, blocked patterns and audit log.  Optional.
    workspace:
        Path policy applied to every ``path_fields`` argument before the
        tool runs.  Optional.
    timeout:
        Default time budget per call, in seconds, for tools that do not
        declare their own.
    concurrent:
        Run the calls of one batch as concurrent tasks.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        policy: PolicyEngine | None = None,
        workspace: Workspace | None = None,
        timeout: float = DEFAULT_TOOL_TIMEOUT,
        concurrent: bool = True,
        session_id: str = "",
    ):
        self.registry = registry
        self.policy = policy
        self.workspace = workspace
        self.timeout = timeout
        self.concurrent = concurrent
        self.session_id = session_id

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def dispatch(self, call: ToolCall) -> ToolResult:
        tool = self.registry.get(call.name)
        if tool is None:
            return failure(call, ErrorCode.UNKNOWN_TOOL, f"Unknown tool: {call.name!r}")

        if call.parse_error:
            return failure(call, ErrorCode.INVALID_ARGUMENTS, call.parse_error)

        problem = validate_arguments(tool, call.arguments)
        if problem is not None:
            return failure(call, ErrorCode.INVALID_ARGUMENTS, problem)

        if self.policy is not None:
            decision = self.policy.check(tool, call.arguments)
            if not decision.allowed:
                return failure(call, ErrorCode.POLICY_BLOCK, f"Blocked by policy: {decision.reason}")

        if self.workspace is not None:
            for field in tool.path_fields:
                if field in call.arguments:
                    decision = self.workspace.check(call.arguments[field])
                    if not decision.allowed:
                        return failure(
                            call, ErrorCode.POLICY_BLOCK, f"Blocked by policy: {decision.reason}"
                        )

        budget = tool.time_budget(call.arguments) or self.timeout
        t0 = time.monotonic()
        try:
            result = await asyncio.wait_for(tool.execute(**call.arguments), timeout=budget)
        except asyncio.TimeoutError:
            result = failure(
                call, ErrorCode.TIMEOUT, f"Tool {call.name} exceeded its {budget:g}s time budget"
            )
        except PathPolicyError as e:
            result = failure(call, ErrorCode.POLICY_BLOCK, f"Blocked by policy: {e}")
        except FileNotFoundError as e:
            result = failure(call, ErrorCode.NOT_FOUND, _describe(e))
        except Exception as e:
            logger.warning("Tool %s raised %s: %s", call.name, type(e).__name__, e)
            result = failure(call, ErrorCode.EXECUTION_FAILED, _describe(e))
        duration_ms = round((time.monotonic() - t0) * 1000)

        result.tool_call_id = call.id
        logger.info(
            "TOOL: %s id=%s success=%s code=%s duration_ms=%d",
            call.name, call.id, result.success, result.error_code, duration_ms,
        )
        if self.policy is not None and self.policy.audit is not None:
            self.policy.audit.record(
                session_id=self.session_id,
                tool_call_id=call.id,
                tool=tool,
                arguments=call.arguments,
                result=result,
                duration_ms=duration_ms,
            )
        return result

    async def dispatch_batch(
        self,
        calls: list[ToolCall],
        cancel: CancelToken | None = None,
    ) -> list[ToolResult]:
        """
        Execute every call and return the results in request order.

        When *cancel* fires, running calls are cancelled and every call
        without a result gets a ``cancelled`` one.
        """
        if not calls:
            return []
        if not self.concurrent:
            return await self._dispatch_sequential(calls, cancel)

        tasks = [asyncio.ensure_future(self.dispatch(call)) for call in calls]
        gathered = asyncio.gather(*tasks)
        if cancel is None:
            return list(await gathered)

        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({gathered, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

        if gathered.done() and not gathered.cancelled():
            return list(gathered.result())

        gathered.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        results: list[ToolResult] = []
        for call, task in zip(calls, tasks):
            if task.cancelled() or task.exception() is not None:
                results.append(cancelled_result(call))
            else:
                results.append(task.result())
        logger.info(
            "Batch interrupted: %d of %d calls cancelled",
            sum(1 for r in results if r.error_code == ErrorCode.CANCELLED),
            len(calls),
        )
        return results

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _dispatch_sequential(
        self,
        calls: list[ToolCall],
        cancel: CancelToken | None,
    ) -> list[ToolResult]:
        results: list[ToolResult] = []
        for call in calls:
            if cancel is not None and cancel.is_set():
                results.append(cancelled_result(call))
                continue
            results.append(await self.dispatch(call))
        return results


def _describe(exc: Exception) -> str:
    if isinstance(exc, OSError) and exc.strerror:
        target = exc.filename if exc.filename else ""
        return f"{exc.strerror}: {target}" if target else exc.strerror
    return str(exc) or type(exc).__name__
