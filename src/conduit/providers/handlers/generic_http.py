"""Generic HTTP handler: one templated HTTP request per attempt.

Input::

    {
        "req_template": {
            "method": "POST",
            "url": "https://api.example.com/users/{{user.id}}",
            "headers": {"Authorization": "Bearer {{token}}"},
            "params": {"lang": "{{lang}}"},
            "body": {"name": "{{user.name}}"},
            "extract_path": "result.url",
            "timeout": 10.0
        },
        "variables": {"user": {"id": 7, "name": "Ada"}, "token": "...", "lang": "en"}
    }

Only ``{{var}}`` placeholders are substituted; nothing is evaluated.
"""

from __future__ import annotations

from typing import Any

import httpx

from conduit.core.errors import ProviderErrorCode
from conduit.core.logging import get_logger
from conduit.core.template import extract_value, replace_variables
from conduit.execution.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from conduit.execution.models import ExecutionContext, ExecutionResult
from conduit.execution.retry import DEFAULT_RETRY_POLICY, RetryPolicy
from conduit.execution.timeout import run_with_token
from conduit.providers.kinds import ProviderKind

logger = get_logger(__name__)

VALID_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")
BODY_METHODS = ("POST", "PUT", "PATCH")


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class GenericHttpHandler:
    """Send an arbitrary templated HTTP request.

    Args:
        retry_policy: Engine retry policy for this instance
        default_timeout: Seconds per execute() call; also the request timeout
            when the template has none
        transport: httpx transport override (tests use ``httpx.MockTransport``)
        breaker: Circuit breaker shared by every call on this instance
    """

    key = ProviderKind.GENERIC_HTTP.value
    name = "Generic HTTP Provider"

    def __init__(
        self,
        *,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        default_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        breaker: CircuitBreaker | None = None,
    ):
        self.retry_policy = retry_policy
        self.default_timeout = default_timeout
        self._transport = transport
        self.breaker = breaker or CircuitBreaker(
            name=self.key,
            failure_threshold=3,
            recovery_timeout=30.0,
            success_threshold=2,
            half_open_max_calls=2,
        )

    def validate(self, input: Any) -> str | None:
        if not isinstance(input, dict):
            return "Input must be an object"

        template = input.get("req_template")
        if not template:
            return "Missing required field: req_template"
        if not isinstance(template, dict):
            return "req_template must be an object"
        if not template.get("method"):
            return "Missing required field: req_template.method"
        if not template.get("url"):
            return "Missing required field: req_template.url"

        method = str(template["method"]).upper()
        if method not in VALID_METHODS:
            return f"Unsupported HTTP method: {template['method']}"

        variables = input.get("variables")
        if variables is not None and not isinstance(variables, dict):
            return "variables must be an object"
        return None

    async def invoke(self, context: ExecutionContext) -> ExecutionResult:
        template: dict[str, Any] = context.input["req_template"]
        variables: dict[str, Any] = context.input.get("variables") or {}

        method = str(template["method"]).upper()
        url = replace_variables(template["url"], variables)
        headers = replace_variables(template.get("headers") or {}, variables)
        params = replace_variables(template.get("params") or {}, variables)
        body = template.get("body")
        timeout = template.get("timeout") or self.default_timeout

        request_kwargs: dict[str, Any] = {"headers": headers, "params": params}
        if method in BODY_METHODS and body is not None:
            body = replace_variables(body, variables)
            if isinstance(body, str | bytes):
                request_kwargs["content"] = body
            else:
                request_kwargs["json"] = body

        log = logger.bind(provider=self.key, task_id=context.task_id, method=method, url=url)

        if not self.breaker.allow_request():
            log.warning("http_circuit_open")
            raise CircuitOpenError(self.breaker.name, self.breaker.retry_after())

        log.debug("http_request_started", has_body="json" in request_kwargs or "content" in request_kwargs)
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
                send = client.request(method, url, **request_kwargs)
                if context.cancellation_token is not None:
                    response = await run_with_token(send, context.cancellation_token, "http_request")
                else:
                    response = await send
        except httpx.TimeoutException as e:
            self.breaker.record_failure()
            log.warning("http_request_timed_out", timeout=timeout)
            return ExecutionResult.fail(
                ProviderErrorCode.TIMEOUT,
                f"HTTP request timed out: {url}",
                {"request_url": url, "timeout": timeout, "exception_type": type(e).__name__},
            )
        except httpx.HTTPError as e:
            self.breaker.record_failure()
            log.warning("http_request_failed", error=str(e))
            return ExecutionResult.fail(
                ProviderErrorCode.EXECUTION_FAILED,
                f"Network error: {e}",
                {"request_url": url, "exception_type": type(e).__name__},
            )
        except BaseException:
            # cancelled by the token or the engine; no outcome to record
            self.breaker.release()
            raise

        payload = _decode_body(response)
        status_code = response.status_code

        if status_code >= 400:
            if status_code >= 500:
                self.breaker.record_failure()
                kind = "Server error"
            else:
                # the upstream answered; a 4xx says nothing about its health
                self.breaker.record_success()
                kind = "Client error"
            log.warning("http_request_rejected", status_code=status_code)
            return ExecutionResult.fail(
                ProviderErrorCode.EXECUTION_FAILED,
                f"{kind} ({status_code}): {response.reason_phrase or 'Unknown'}",
                {
                    "status_code": status_code,
                    "status_text": response.reason_phrase,
                    "response_data": payload,
                    "request_url": str(response.request.url),
                },
            )

        self.breaker.record_success()
        log.info("http_request_succeeded", status_code=status_code)

        extract_path = template.get("extract_path")
        data = payload
        if extract_path:
            data = extract_value(payload, extract_path)
            if data is None:
                log.warning("http_extract_path_missing", extract_path=extract_path)

        return ExecutionResult.ok({
            "status_code": status_code,
            "headers": dict(response.headers),
            "body": data,
            "full_response": payload,
        })

    async def health_check(self) -> bool:
        """Healthy unless the circuit is open."""
        return self.breaker.state != CircuitState.OPEN


__all__ = ["GenericHttpHandler", "VALID_METHODS"]
