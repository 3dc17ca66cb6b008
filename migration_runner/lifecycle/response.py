"""
Completion reporting for custom-resource lifecycles.

The outcome is PUT to the presigned ResponseURL that CloudFormation puts
in the event. CloudFormation waits on this response, so delivery is retried
a few times before giving up.
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx

from migration_runner.core.error_handler import (
    ErrorContext,
    ErrorHandler,
    RetryHandler,
    create_callback_retry_config,
)
from migration_runner.core.exceptions import CallbackError
from migration_runner.lifecycle.events import LifecycleEvent
from migration_runner.models.outcome import Outcome

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "SUCCESS"
STATUS_FAILED = "FAILED"
RESPONSE_BODY_LIMIT = 4096  # bytes


class CompletionReporter:
    """Builds and delivers the custom-resource response for an outcome."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        retry_handler: Optional[RetryHandler] = None,
        timeout: float = 10.0
    ):
        self._client = client
        self.timeout = timeout
        self.retry_handler = retry_handler or RetryHandler(ErrorHandler(logger))

    def build_body(
        self,
        event: LifecycleEvent,
        outcome: Outcome,
        physical_id: str,
        log_stream: Optional[str] = None
    ) -> Dict[str, Any]:
        """Build the response document for the lifecycle."""
        reason = outcome.reason
        if not outcome.succeeded and log_stream:
            reason = f"{reason} (see CloudWatch log stream {log_stream})"

        body = {
            "Status": STATUS_SUCCESS if outcome.succeeded else STATUS_FAILED,
            "Reason": reason,
            "PhysicalResourceId": physical_id,
            "StackId": event.stack_id,
            "RequestId": event.request_id,
            "LogicalResourceId": event.logical_resource_id,
            "NoEcho": False,
            "Data": {
                "TaskArn": outcome.task_id or "",
                "State": outcome.final_state.value,
                "ElapsedSeconds": f"{outcome.elapsed:.1f}",
                "ExitCode": "" if outcome.exit_code is None else str(outcome.exit_code),
            },
        }
        return self._fit(body)

    def _fit(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Shorten the reason until the serialized body fits the response limit."""
        overflow = len(json.dumps(body).encode("utf-8")) - RESPONSE_BODY_LIMIT
        if overflow > 0:
            reason = body["Reason"]
            keep = max(len(reason) - overflow - 3, 0)
            body["Reason"] = reason[:keep] + "..."
        return body

    async def _put(self, client: httpx.AsyncClient, url: str, payload: bytes) -> None:
        try:
            response = await client.put(
                url,
                content=payload,
                headers={"Content-Type": ""},
            )
        except httpx.HTTPError as e:
            raise CallbackError(f"Failed to deliver lifecycle response: {e}") from e

        if response.status_code >= 400:
            raise CallbackError(
                f"Lifecycle response rejected with HTTP {response.status_code}",
                details={"body": response.text[:500]}
            )

    async def send(self, url: str, body: Dict[str, Any]) -> bool:
        """
        Deliver the response document.

        Returns:
            True if the response was accepted, False if delivery failed for good
        """
        payload = json.dumps(body).encode("utf-8")
        context = ErrorContext(operation="send_response", request_token=body.get("RequestId"))

        try:
            if self._client is not None:
                await self.retry_handler.retry_with_backoff(
                    self._put, self._client, url, payload,
                    retry_config=create_callback_retry_config(), context=context,
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    await self.retry_handler.retry_with_backoff(
                        self._put, client, url, payload,
                        retry_config=create_callback_retry_config(), context=context,
                    )
        except CallbackError as e:
            logger.error(f"Giving up on lifecycle response: {e}")
            return False

        logger.info(f"Lifecycle response sent: {body['Status']}")
        return True
