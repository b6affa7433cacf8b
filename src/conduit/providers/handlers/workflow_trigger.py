"""Workflow trigger handler: start a remote workflow run and poll until done.

Flow per attempt::

    POST {base_url}/task/create   {"apiKey", "workflowId", "params"} → taskId
    loop every poll_interval (interruptible):
        POST {base_url}/task/status  {"apiKey", "taskId"} → QUEUED|RUNNING|SUCCESS|FAILED
    SUCCESS → POST {base_url}/task/outputs {"apiKey", "taskId"} → outputs

Every response body is ``{"code": 0, "msg": "...", "data": ...}``; a
non-zero ``code`` is a failure.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from conduit.core.errors import ProviderErrorCode, ProviderExecutionError
from conduit.core.logging import get_logger
from conduit.execution.models import ExecutionContext, ExecutionResult
from conduit.execution.retry import DEFAULT_RETRY_POLICY, RetryPolicy
from conduit.execution.timeout import CancellationToken, sleep
from conduit.providers.kinds import ProviderKind

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://www.runninghub.cn"
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_POLL_TIME = 300.0
MIN_POLL_INTERVAL = 1.0
MIN_MAX_POLL_TIME = 10.0

SUCCESS_STATUSES = frozenset({"SUCCESS"})
FAILED_STATUSES = frozenset({"FAILED", "ERROR", "CANCELLED"})


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


class WorkflowTriggerHandler:
    """Trigger an external workflow and wait for its outputs.

    Args:
        retry_policy: Engine retry policy for this instance
        default_timeout: Seconds per execute() call
        transport: httpx transport override (tests use ``httpx.MockTransport``)
        sleep: Interruptible sleep used between polls
        clock: Monotonic clock bounding ``max_poll_time``
    """

    key = ProviderKind.WORKFLOW_TRIGGER.value
    name = "Workflow Trigger Provider"

    def __init__(
        self,
        *,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        default_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float, CancellationToken | None], Awaitable[None]] = sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.retry_policy = retry_policy
        self.default_timeout = default_timeout
        self._transport = transport
        self._sleep = sleep
        self._clock = clock

    def validate(self, input: Any) -> str | None:
        if not isinstance(input, dict):
            return "Input must be an object"
        if not input.get("workflow_id") or not isinstance(input["workflow_id"], str):
            return "Missing or invalid workflow_id"
        if not input.get("api_key") or not isinstance(input["api_key"], str):
            return "Missing or invalid api_key"
        if not isinstance(input.get("params"), dict):
            return "Missing or invalid params"

        poll_interval = input.get("poll_interval")
        if poll_interval is not None and (not _is_number(poll_interval) or poll_interval < MIN_POLL_INTERVAL):
            return f"poll_interval must be a number >= {MIN_POLL_INTERVAL}"
        max_poll_time = input.get("max_poll_time")
        if max_poll_time is not None and (not _is_number(max_poll_time) or max_poll_time < MIN_MAX_POLL_TIME):
            return f"max_poll_time must be a number >= {MIN_MAX_POLL_TIME}"
        base_url = input.get("base_url")
        if base_url is not None and (not isinstance(base_url, str) or not base_url.startswith(("http://", "https://"))):
            return "base_url must be an http(s) URL"
        return None

    async def invoke(self, context: ExecutionContext) -> ExecutionResult:
        spec: dict[str, Any] = context.input
        workflow_id = spec["workflow_id"]
        api_key = spec["api_key"]
        poll_interval = float(spec.get("poll_interval") or DEFAULT_POLL_INTERVAL)
        max_poll_time = float(spec.get("max_poll_time") or DEFAULT_MAX_POLL_TIME)
        base_url = (spec.get("base_url") or DEFAULT_BASE_URL).rstrip("/")
        token = context.cancellation_token

        log = logger.bind(provider=self.key, task_id=context.task_id, workflow_id=workflow_id)

        try:
            async with httpx.AsyncClient(
                base_url=base_url, transport=self._transport, timeout=self.default_timeout
            ) as client:
                remote_id = await self._call(
                    client,
                    "/task/create",
                    {"apiKey": api_key, "workflowId": workflow_id, "params": spec["params"]},
                )
                if isinstance(remote_id, dict):
                    remote_id = remote_id.get("taskId")
                if not remote_id:
                    raise ProviderExecutionError(
                        "Workflow service did not return a task id", {"workflow_id": workflow_id}
                    )
                log.info("workflow_triggered", remote_task_id=remote_id)

                started = self._clock()
                polls = 0
                while True:
                    status = str(
                        await self._call(client, "/task/status", {"apiKey": api_key, "taskId": remote_id})
                    ).upper()
                    polls += 1
                    log.debug("workflow_polled", remote_task_id=remote_id, status=status, polls=polls)

                    if status in SUCCESS_STATUSES:
                        outputs = await self._call(
                            client, "/task/outputs", {"apiKey": api_key, "taskId": remote_id}
                        )
                        log.info("workflow_succeeded", remote_task_id=remote_id, polls=polls)
                        return ExecutionResult.ok({
                            "workflow_id": workflow_id,
                            "remote_task_id": remote_id,
                            "status": status,
                            "outputs": outputs,
                            "polls": polls,
                        })

                    if status in FAILED_STATUSES:
                        log.warning("workflow_failed", remote_task_id=remote_id, status=status)
                        return ExecutionResult.fail(
                            ProviderErrorCode.EXECUTION_FAILED,
                            f"Workflow run {remote_id} finished with status {status}",
                            {"workflow_id": workflow_id, "remote_task_id": remote_id, "status": status},
                        )

                    elapsed = self._clock() - started
                    if elapsed + poll_interval > max_poll_time:
                        log.warning("workflow_poll_timed_out", remote_task_id=remote_id, polls=polls)
                        return ExecutionResult.fail(
                            ProviderErrorCode.TIMEOUT,
                            f"Workflow run {remote_id} did not finish within {max_poll_time}s",
                            {
                                "workflow_id": workflow_id,
                                "remote_task_id": remote_id,
                                "last_status": status,
                                "max_poll_time": max_poll_time,
                                "polls": polls,
                            },
                        )

                    await self._sleep(poll_interval, token)
        except httpx.TimeoutException as e:
            return ExecutionResult.fail(
                ProviderErrorCode.TIMEOUT,
                f"Workflow service request timed out: {e}",
                {"workflow_id": workflow_id, "base_url": base_url},
            )
        except httpx.HTTPError as e:
            return ExecutionResult.fail(
                ProviderErrorCode.EXECUTION_FAILED,
                f"Workflow service request failed: {e}",
                {"workflow_id": workflow_id, "base_url": base_url, "exception_type": type(e).__name__},
            )

    async def _call(self, client: httpx.AsyncClient, path: str, body: dict[str, Any]) -> Any:
        """POST to the workflow service and unwrap ``data``."""
        response = await client.post(path, json=body)
        if response.status_code >= 400:
            raise ProviderExecutionError(
                f"Workflow service returned HTTP {response.status_code} for {path}",
                {"status_code": response.status_code, "path": path, "response_data": response.text},
            )
        try:
            envelope = response.json()
        except ValueError as e:
            raise ProviderExecutionError(
                f"Workflow service returned invalid JSON for {path}", {"path": path}, cause=e
            ) from e
        if not isinstance(envelope, dict) or envelope.get("code", 0) != 0:
            message = envelope.get("msg") if isinstance(envelope, dict) else None
            raise ProviderExecutionError(
                f"Workflow service rejected {path}: {message or 'unknown error'}",
                {"path": path, "response_data": envelope},
            )
        return envelope.get("data")


__all__ = ["WorkflowTriggerHandler", "DEFAULT_BASE_URL"]
