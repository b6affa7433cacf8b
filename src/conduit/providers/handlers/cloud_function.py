"""Cloud function handler: invoke an AWS Lambda function.

boto3 is an optional dependency (``pip install conduit-core[aws]``) and is
imported only when a client is first needed. ``invoke`` is a plain function:
the engine runs it in a worker thread because the boto3 call blocks.

Input::

    {
        "auth": {
            "access_key_id": "AKIA...",
            "secret_access_key": "...",
            "session_token": "...",        # optional
            "region": "eu-west-1"
        },
        "params": {
            "function_name": "resize-image",
            "qualifier": "prod",           # optional, default $LATEST
            "invoke_type": "sync",         # sync | async
            "payload": {"key": "img.png"},
            "log_type": "Tail"             # optional, None | Tail
        }
    }
"""

from __future__ import annotations

import base64
import json
import re
import time
from collections.abc import Callable, Mapping
from typing import Any

from conduit.core.errors import ProviderErrorCode
from conduit.core.logging import get_logger
from conduit.execution.models import ExecutionContext, ExecutionResult
from conduit.execution.retry import DEFAULT_RETRY_POLICY, RetryPolicy
from conduit.providers.kinds import ProviderKind

logger = get_logger(__name__)

REGION_PATTERN = re.compile(r"^[a-z]+(-[a-z]+)+-\d+$")

INVOCATION_TYPES = {"sync": "RequestResponse", "async": "Event"}
LOG_TYPES = ("None", "Tail")

# error code -> (category, classified code)
_ERROR_CATEGORIES: dict[str, tuple[str, ProviderErrorCode]] = {
    "UnrecognizedClientException": ("auth", ProviderErrorCode.EXECUTION_FAILED),
    "InvalidSignatureException": ("auth", ProviderErrorCode.EXECUTION_FAILED),
    "InvalidClientTokenId": ("auth", ProviderErrorCode.EXECUTION_FAILED),
    "ExpiredTokenException": ("auth", ProviderErrorCode.EXECUTION_FAILED),
    "SignatureDoesNotMatch": ("auth", ProviderErrorCode.EXECUTION_FAILED),
    "AccessDeniedException": ("permission", ProviderErrorCode.EXECUTION_FAILED),
    "AccessDenied": ("permission", ProviderErrorCode.EXECUTION_FAILED),
    "InvalidParameterValueException": ("parameter", ProviderErrorCode.VALIDATION_FAILED),
    "InvalidRequestContentException": ("parameter", ProviderErrorCode.VALIDATION_FAILED),
    "RequestTooLargeException": ("parameter", ProviderErrorCode.VALIDATION_FAILED),
    "ValidationException": ("parameter", ProviderErrorCode.VALIDATION_FAILED),
    "ResourceNotFoundException": ("not_found", ProviderErrorCode.EXECUTION_FAILED),
    "ServiceQuotaExceededException": ("quota", ProviderErrorCode.EXECUTION_FAILED),
    "CodeStorageExceededException": ("quota", ProviderErrorCode.EXECUTION_FAILED),
    "TooManyRequestsException": ("throttling", ProviderErrorCode.EXECUTION_FAILED),
    "ThrottlingException": ("throttling", ProviderErrorCode.EXECUTION_FAILED),
    "ServiceException": ("internal", ProviderErrorCode.EXECUTION_FAILED),
    "InternalFailure": ("internal", ProviderErrorCode.EXECUTION_FAILED),
    "ServiceUnavailableException": ("internal", ProviderErrorCode.EXECUTION_FAILED),
}

_CATEGORY_LABELS = {
    "auth": "Authentication failed",
    "permission": "Permission denied",
    "parameter": "Invalid parameter",
    "not_found": "Resource not found",
    "quota": "Quota exceeded",
    "throttling": "Request throttled",
    "internal": "Internal error",
}

ClientFactory = Callable[[Mapping[str, Any]], Any]


def boto3_lambda_client(auth: Mapping[str, Any]) -> Any:
    """Create a boto3 Lambda client from the ``auth`` block."""
    import boto3  # noqa: PLC0415

    return boto3.client(
        "lambda",
        aws_access_key_id=auth["access_key_id"],
        aws_secret_access_key=auth["secret_access_key"],
        aws_session_token=auth.get("session_token"),
        region_name=auth["region"],
    )


def _encode_payload(payload: Any) -> bytes:
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


def _read_payload(response: Mapping[str, Any]) -> str | None:
    stream = response.get("Payload")
    if stream is None:
        return None
    raw = stream.read() if hasattr(stream, "read") else stream
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    return raw or None


def _parse_result(text: str | None) -> Any:
    if text is None:
        return None
    try:
        return json.loads(text)
    except ValueError:
        logger.warning("cloud_function_result_not_json", length=len(text))
        return text


class CloudFunctionHandler:
    """Invoke a cloud function synchronously or asynchronously.

    Args:
        retry_policy: Engine retry policy for this instance
        default_timeout: Seconds per execute() call
        client_factory: ``auth -> client`` (defaults to a boto3 Lambda client)
    """

    key = ProviderKind.CLOUD_FUNCTION.value
    name = "Cloud Function Provider"

    def __init__(
        self,
        *,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        default_timeout: float = 30.0,
        client_factory: ClientFactory | None = None,
    ):
        self.retry_policy = retry_policy
        self.default_timeout = default_timeout
        self._client_factory = client_factory or boto3_lambda_client

    def validate(self, input: Any) -> str | None:
        if not isinstance(input, dict):
            return "Input must be an object"

        auth = input.get("auth")
        if not auth:
            return "Missing required field: auth"
        if not isinstance(auth, dict):
            return "auth must be an object"
        for field in ("access_key_id", "secret_access_key", "region"):
            if not auth.get(field) or not isinstance(auth[field], str):
                return f"Missing or invalid auth.{field}"
        if auth.get("session_token") is not None and not isinstance(auth["session_token"], str):
            return "Invalid auth.session_token"
        if not REGION_PATTERN.match(auth["region"]):
            return f"Invalid region format: {auth['region']} (expected e.g. us-east-1, eu-west-2)"

        params = input.get("params")
        if not params:
            return "Missing required field: params"
        if not isinstance(params, dict):
            return "params must be an object"
        if not params.get("function_name") or not isinstance(params["function_name"], str):
            return "Missing or invalid params.function_name"
        if not params.get("invoke_type"):
            return "Missing required field: params.invoke_type"
        if params["invoke_type"] not in INVOCATION_TYPES:
            return f"Invalid invoke_type: {params['invoke_type']} (must be sync or async)"
        if "payload" not in params:
            return "Missing required field: params.payload"
        log_type = params.get("log_type")
        if log_type is not None and log_type not in LOG_TYPES:
            return f"Invalid log_type: {log_type} (must be None or Tail)"
        return None

    def invoke(self, context: ExecutionContext) -> ExecutionResult:
        auth: dict[str, Any] = context.input["auth"]
        params: dict[str, Any] = context.input["params"]
        function_name = params["function_name"]
        invoke_type = params["invoke_type"]
        qualifier = params.get("qualifier")

        log = logger.bind(
            provider=self.key,
            task_id=context.task_id,
            function_name=function_name,
            invoke_type=invoke_type,
        )

        request: dict[str, Any] = {
            "FunctionName": function_name,
            "InvocationType": INVOCATION_TYPES[invoke_type],
            "LogType": params.get("log_type") or "None",
            "Payload": _encode_payload(params["payload"]),
        }
        if qualifier:
            request["Qualifier"] = qualifier

        if context.cancellation_token is not None:
            context.cancellation_token.raise_if_cancelled("cloud_function_invoke")

        log.info("cloud_function_invoking", qualifier=qualifier or "$LATEST")
        client = self._client_factory(auth)
        started = time.monotonic()
        try:
            response = client.invoke(**request)
        except Exception as e:
            error_response = getattr(e, "response", None)
            if not isinstance(error_response, Mapping) or "Error" not in error_response:
                raise
            return self._client_error(e, error_response, context.task_id, function_name)
        duration = round(time.monotonic() - started, 3)

        metadata = response.get("ResponseMetadata") or {}
        request_id = metadata.get("RequestId")
        status_code = response.get("StatusCode")

        log_result = response.get("LogResult")
        log_text = base64.b64decode(log_result).decode("utf-8", errors="replace") if log_result else None

        if invoke_type == "async":
            result: Any = {"message": "Asynchronous invocation accepted", "request_id": request_id}
        else:
            result = _parse_result(_read_payload(response))

        function_error = response.get("FunctionError")
        if function_error:
            error_message = result.get("errorMessage") if isinstance(result, dict) else None
            log.warning("cloud_function_failed", function_error=function_error, request_id=request_id)
            return ExecutionResult.fail(
                ProviderErrorCode.EXECUTION_FAILED,
                f"Function error ({function_error}): {error_message or 'function raised'}",
                {
                    "function_name": function_name,
                    "function_error": function_error,
                    "error_payload": result,
                    "request_id": request_id,
                    "log": log_text,
                },
            )

        log.info("cloud_function_invoked", request_id=request_id, duration=duration, status_code=status_code)
        return ExecutionResult.ok({
            "invoke_type": invoke_type,
            "function_name": function_name,
            "qualifier": qualifier or "$LATEST",
            "request_id": request_id,
            "status_code": status_code,
            "result": result,
            "duration": duration,
            "log": log_text,
        })

    def _client_error(
        self,
        error: Exception,
        response: Mapping[str, Any],
        task_id: str,
        function_name: str,
    ) -> ExecutionResult:
        info = response.get("Error") or {}
        original_code = info.get("Code")
        original_message = info.get("Message") or str(error)

        category, code = _ERROR_CATEGORIES.get(
            original_code or "", ("unknown", ProviderErrorCode.EXECUTION_FAILED)
        )
        label = _CATEGORY_LABELS.get(category)
        message = (
            f"{label}: {original_message}"
            if label
            else f"Cloud function call failed: {original_message} ({original_code})"
        )

        details: dict[str, Any] = {
            "task_id": task_id,
            "function_name": function_name,
            "original_code": original_code,
            "original_message": original_message,
            "category": category,
        }
        if category == "internal":
            details["retryable"] = True

        logger.error("cloud_function_client_error", provider=self.key, **details)
        return ExecutionResult.fail(code, message, details)

    def health_check(self) -> bool:
        """No remote probe; credentials arrive per call."""
        return True


__all__ = ["CloudFunctionHandler", "boto3_lambda_client", "REGION_PATTERN"]
