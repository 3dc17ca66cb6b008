"""
Tests for the custom-resource lifecycle entry point.
"""

import json
from types import SimpleNamespace
from unittest.mock import patch

import httpx
import pytest

from migration_runner.config import OrchestratorSettings
from migration_runner.core.error_handler import RetryHandler
from migration_runner.core.exceptions import LaunchError, RequestValidationError
from migration_runner.lifecycle.events import LifecycleEvent, build_request
from migration_runner.lifecycle.handler import handle_event, remaining_budget
from migration_runner.lifecycle.response import RESPONSE_BODY_LIMIT, CompletionReporter
from migration_runner.models.outcome import OrchestrationState, Outcome, OutcomeResult
from migration_runner.models.request import LifecycleAction
from migration_runner.models.task import TaskStatus

from conftest import (
    CLUSTER,
    RUNNING,
    SUCCEEDED,
    TASK_ARN,
    TASK_DEFINITION,
    ScriptedScheduler,
    snapshot,
)


class RecordingTransport:
    """httpx transport handler that records requests and replays status codes."""

    def __init__(self, status_codes=(200,)):
        self.status_codes = list(status_codes)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        code = self.status_codes.pop(0) if len(self.status_codes) > 1 else self.status_codes[0]
        return httpx.Response(code)

    @property
    def bodies(self):
        return [json.loads(r.content) for r in self.requests]


async def no_sleep(seconds):
    return None


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def reporter(transport):
    client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
    return CompletionReporter(client=client, retry_handler=RetryHandler(sleep=no_sleep))


@pytest.fixture
def fast_settings():
    return OrchestratorSettings(poll_interval=0.01, timeout=5.0)


@pytest.fixture
def lambda_context():
    return SimpleNamespace(
        aws_request_id="c0ffee00-0000-4000-8000-000000000001",
        log_stream_name="2026/10/19/[$LATEST]abcdef0123456789",
        get_remaining_time_in_millis=lambda: 900_000,
    )


class TestHandleEvent:
    """End-to-end handling of lifecycle events."""

    @pytest.mark.asyncio
    async def test_create_success_reports_success(
        self, custom_resource_event, reporter, transport, fast_settings
    ):
        """A successful Create PUTs a SUCCESS response to the ResponseURL."""
        scheduler = ScriptedScheduler([RUNNING, SUCCEEDED])

        body = await handle_event(
            custom_resource_event, scheduler=scheduler, reporter=reporter,
            settings=fast_settings, environ={},
        )

        assert body["Status"] == "SUCCESS"
        assert body["PhysicalResourceId"] == f"migration-{custom_resource_event['RequestId']}"
        assert body["StackId"] == custom_resource_event["StackId"]
        assert body["LogicalResourceId"] == "RunMigration"
        assert body["Data"]["TaskArn"] == TASK_ARN
        assert body["Data"]["ExitCode"] == "0"

        assert len(transport.requests) == 1
        sent = transport.requests[0]
        assert sent.method == "PUT"
        assert str(sent.url) == custom_resource_event["ResponseURL"]
        assert sent.headers["content-type"] == ""
        assert transport.bodies[0] == body

    @pytest.mark.asyncio
    async def test_request_id_is_idempotency_token(
        self, custom_resource_event, reporter, fast_settings
    ):
        """The lifecycle RequestId is forwarded as the launch idempotency token."""
        scheduler = ScriptedScheduler([SUCCEEDED])

        await handle_event(
            custom_resource_event, scheduler=scheduler, reporter=reporter,
            settings=fast_settings, environ={},
        )

        request = scheduler.launch_calls[0]
        assert request.idempotency_token == custom_resource_event["RequestId"]
        assert request.cluster == CLUSTER
        assert request.task_definition == TASK_DEFINITION
        assert request.subnets == ("subnet-aaa111", "subnet-bbb222")

    @pytest.mark.asyncio
    async def test_failed_migration_reports_failed(
        self, custom_resource_event, reporter, transport, fast_settings, lambda_context
    ):
        """A non-zero exit reports FAILED with the log stream in the reason."""
        scheduler = ScriptedScheduler([snapshot(TaskStatus.SUCCEEDED, exit_code=1)])

        body = await handle_event(
            custom_resource_event, context=lambda_context, scheduler=scheduler,
            reporter=reporter, settings=fast_settings, environ={},
        )

        assert body["Status"] == "FAILED"
        assert "exit code 1" in body["Reason"]
        assert lambda_context.log_stream_name in body["Reason"]
        assert body["Data"]["State"] == OrchestrationState.EXIT_NONZERO.value
        assert transport.bodies[0]["Status"] == "FAILED"

    @pytest.mark.asyncio
    async def test_launch_failure_reports_failed(
        self, custom_resource_event, reporter, fast_settings
    ):
        """A launch error ends the lifecycle with FAILED."""
        scheduler = ScriptedScheduler(launch_error=LaunchError("Failed to run migration task: boom"))

        body = await handle_event(
            custom_resource_event, scheduler=scheduler, reporter=reporter,
            settings=fast_settings, environ={},
        )

        assert body["Status"] == "FAILED"
        assert body["Reason"] == "Failed to run migration task: boom"

    @pytest.mark.asyncio
    async def test_delete_is_noop(self, custom_resource_event, reporter, transport, fast_settings):
        """Delete succeeds without touching the scheduler and keeps the physical id."""
        event = dict(
            custom_resource_event,
            RequestType="Delete",
            PhysicalResourceId="migration-original",
        )
        scheduler = ScriptedScheduler([RUNNING])

        body = await handle_event(
            event, scheduler=scheduler, reporter=reporter, settings=fast_settings, environ={},
        )

        assert body["Status"] == "SUCCESS"
        assert body["PhysicalResourceId"] == "migration-original"
        assert body["Data"]["State"] == OrchestrationState.SKIPPED.value
        assert scheduler.launch_calls == []
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_delete_with_invalid_properties_succeeds(
        self, custom_resource_event, reporter, fast_settings
    ):
        """A broken resource definition never blocks deletion."""
        event = dict(
            custom_resource_event,
            RequestType="Delete",
            PhysicalResourceId="migration-original",
            ResourceProperties={},
        )

        body = await handle_event(
            event, scheduler=ScriptedScheduler([RUNNING]), reporter=reporter,
            settings=fast_settings, environ={},
        )

        assert body["Status"] == "SUCCESS"

    @pytest.mark.asyncio
    async def test_update_keeps_physical_id(self, custom_resource_event, reporter, fast_settings):
        """Update re-runs the migration under the existing physical id."""
        event = dict(
            custom_resource_event,
            RequestType="Update",
            PhysicalResourceId="migration-original",
        )
        scheduler = ScriptedScheduler([SUCCEEDED])

        body = await handle_event(
            event, scheduler=scheduler, reporter=reporter, settings=fast_settings, environ={},
        )

        assert body["Status"] == "SUCCESS"
        assert body["PhysicalResourceId"] == "migration-original"
        assert scheduler.launch_calls[0].action == LifecycleAction.UPDATE

    @pytest.mark.asyncio
    async def test_missing_properties_fail(self, custom_resource_event, reporter, transport, fast_settings):
        """A Create without subnets anywhere is an invalid request."""
        properties = dict(custom_resource_event["ResourceProperties"])
        del properties["Subnets"]
        event = dict(custom_resource_event, ResourceProperties=properties)
        scheduler = ScriptedScheduler([SUCCEEDED])

        body = await handle_event(
            event, scheduler=scheduler, reporter=reporter, settings=fast_settings, environ={},
        )

        assert body["Status"] == "FAILED"
        assert body["Data"]["State"] == OrchestrationState.INVALID_REQUEST.value
        assert "subnets" in body["Reason"]
        assert scheduler.launch_calls == []
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["Subnets", "SecurityGroups"])
    async def test_non_list_ids_fail_create(
        self, custom_resource_event, reporter, transport, fast_settings, field
    ):
        """A scalar where a list of ids belongs is answered with FAILED."""
        properties = dict(custom_resource_event["ResourceProperties"], **{field: 5})
        event = dict(custom_resource_event, ResourceProperties=properties)
        scheduler = ScriptedScheduler([SUCCEEDED])

        body = await handle_event(
            event, scheduler=scheduler, reporter=reporter, settings=fast_settings, environ={},
        )

        assert body["Status"] == "FAILED"
        assert body["Data"]["State"] == OrchestrationState.INVALID_REQUEST.value
        assert scheduler.launch_calls == []
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_non_list_ids_do_not_block_delete(
        self, custom_resource_event, reporter, transport, fast_settings
    ):
        """Delete still succeeds when the id properties are malformed."""
        properties = dict(custom_resource_event["ResourceProperties"], Subnets=5)
        event = dict(
            custom_resource_event,
            RequestType="Delete",
            PhysicalResourceId="migration-original",
            ResourceProperties=properties,
        )

        body = await handle_event(
            event, scheduler=ScriptedScheduler([RUNNING]), reporter=reporter,
            settings=fast_settings, environ={},
        )

        assert body["Status"] == "SUCCESS"
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_unexpected_request_error_still_answers(
        self, custom_resource_event, reporter, transport, fast_settings
    ):
        """Any failure while building the request is reported, never raised."""
        with patch(
            "migration_runner.lifecycle.handler.build_request",
            side_effect=TypeError("unhashable type: 'list'"),
        ):
            body = await handle_event(
                custom_resource_event, scheduler=ScriptedScheduler([SUCCEEDED]),
                reporter=reporter, settings=fast_settings, environ={},
            )

        assert body["Status"] == "FAILED"
        assert "unhashable type" in body["Reason"]
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_no_time_budget_does_not_launch(
        self, custom_resource_event, reporter, transport, fast_settings
    ):
        """With no invocation time left the task is never started."""
        context = SimpleNamespace(
            aws_request_id="req-1",
            log_stream_name="stream",
            get_remaining_time_in_millis=lambda: 4_000,
        )
        scheduler = ScriptedScheduler([SUCCEEDED])

        body = await handle_event(
            custom_resource_event, context=context, scheduler=scheduler,
            reporter=reporter, settings=fast_settings, environ={},
        )

        assert body["Status"] == "FAILED"
        assert body["Data"]["State"] == OrchestrationState.TIMED_OUT.value
        assert "No time budget left" in body["Reason"]
        assert scheduler.launch_calls == []
        assert scheduler.stop_calls == []
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_no_time_budget_delete_still_succeeds(
        self, custom_resource_event, reporter, fast_settings
    ):
        """Delete needs no budget."""
        context = SimpleNamespace(
            aws_request_id="req-1",
            log_stream_name="stream",
            get_remaining_time_in_millis=lambda: 1_000,
        )
        event = dict(custom_resource_event, RequestType="Delete", PhysicalResourceId="migration-original")

        body = await handle_event(
            event, context=context, scheduler=ScriptedScheduler([RUNNING]),
            reporter=reporter, settings=fast_settings, environ={},
        )

        assert body["Status"] == "SUCCESS"

    @pytest.mark.asyncio
    async def test_environment_fallback(self, custom_resource_event, reporter, fast_settings):
        """Properties absent from the event come from the function environment."""
        event = dict(custom_resource_event, ResourceProperties={})
        environ = {
            "CLUSTER_NAME": "env-cluster",
            "TASK_DEF": "env-migration:3",
            "SUBNETS": "subnet-env1, subnet-env2",
        }
        scheduler = ScriptedScheduler([SUCCEEDED])

        body = await handle_event(
            event, scheduler=scheduler, reporter=reporter, settings=fast_settings, environ=environ,
        )

        assert body["Status"] == "SUCCESS"
        request = scheduler.launch_calls[0]
        assert request.cluster == "env-cluster"
        assert request.task_definition == "env-migration:3"
        assert request.subnets == ("subnet-env1", "subnet-env2")
        assert request.security_groups == ()

    @pytest.mark.asyncio
    async def test_malformed_event(self, custom_resource_event, reporter, transport, fast_settings):
        """An unknown RequestType still gets a FAILED answer at the ResponseURL."""
        event = dict(custom_resource_event, RequestType="Rollback")

        body = await handle_event(
            event, scheduler=ScriptedScheduler([SUCCEEDED]), reporter=reporter,
            settings=fast_settings, environ={},
        )

        assert body["Status"] == "FAILED"
        assert body["RequestId"] == custom_resource_event["RequestId"]
        assert "Malformed lifecycle event" in body["Reason"]
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_direct_invocation_does_not_send(self, reporter, transport, fast_settings, lambda_context):
        """Without a ResponseURL the body is only returned."""
        event = {
            "ResourceProperties": {
                "Cluster": CLUSTER,
                "TaskDefinition": TASK_DEFINITION,
                "Subnets": "subnet-aaa111",
            }
        }
        scheduler = ScriptedScheduler([SUCCEEDED])

        body = await handle_event(
            event, context=lambda_context, scheduler=scheduler, reporter=reporter,
            settings=fast_settings, environ={},
        )

        assert body["Status"] == "SUCCESS"
        assert body["PhysicalResourceId"] == f"migration-{lambda_context.aws_request_id}"
        assert scheduler.launch_calls[0].idempotency_token == lambda_context.aws_request_id
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_unexpected_error_reports_failed(
        self, custom_resource_event, reporter, fast_settings
    ):
        """Anything the orchestrator does not handle still yields FAILED."""
        scheduler = ScriptedScheduler(launch_error=RuntimeError("executor shut down"))

        body = await handle_event(
            custom_resource_event, scheduler=scheduler, reporter=reporter,
            settings=fast_settings, environ={},
        )

        assert body["Status"] == "FAILED"
        assert body["Data"]["State"] == OrchestrationState.ERROR.value
        assert "executor shut down" in body["Reason"]

    @pytest.mark.asyncio
    async def test_invalid_settings_fail(self, custom_resource_event, reporter):
        """Bad MIGRATION_* settings are reported as an invalid request."""
        body = await handle_event(
            custom_resource_event, scheduler=ScriptedScheduler([SUCCEEDED]), reporter=reporter,
            environ={"MIGRATION_POLL_INTERVAL": "not-a-number"},
        )

        assert body["Status"] == "FAILED"
        assert "Invalid orchestrator settings" in body["Reason"]

    @pytest.mark.asyncio
    async def test_deadline_follows_lambda_budget(self, custom_resource_event, reporter):
        """The polling deadline is clamped to the remaining invocation time."""
        settings = OrchestratorSettings(poll_interval=0.01, timeout=600.0, response_margin=10.0)
        context = SimpleNamespace(
            aws_request_id="req-1",
            log_stream_name="stream",
            get_remaining_time_in_millis=lambda: 10_050,
        )

        body = await handle_event(
            custom_resource_event, context=context, scheduler=ScriptedScheduler([RUNNING]),
            reporter=reporter, settings=settings, environ={},
        )

        assert body["Status"] == "FAILED"
        assert body["Data"]["State"] == OrchestrationState.TIMED_OUT.value


class TestRemainingBudget:
    """Deadline clamping."""

    def test_no_context_uses_timeout(self):
        settings = OrchestratorSettings(timeout=120.0)
        assert remaining_budget(None, settings) == 120.0

    def test_short_invocation_clamps(self):
        settings = OrchestratorSettings(timeout=840.0, response_margin=10.0)
        context = SimpleNamespace(get_remaining_time_in_millis=lambda: 300_000)
        assert remaining_budget(context, settings) == pytest.approx(290.0)

    def test_long_invocation_keeps_timeout(self):
        settings = OrchestratorSettings(timeout=60.0)
        context = SimpleNamespace(get_remaining_time_in_millis=lambda: 900_000)
        assert remaining_budget(context, settings) == 60.0

    def test_never_negative(self):
        settings = OrchestratorSettings(response_margin=30.0)
        context = SimpleNamespace(get_remaining_time_in_millis=lambda: 5_000)
        assert remaining_budget(context, settings) == 0.0


class TestLifecycleEvent:
    """Event parsing and request building."""

    def test_defaults_to_create(self):
        event = LifecycleEvent.parse({"ResourceProperties": {"Cluster": CLUSTER}})
        assert event.request_type == LifecycleAction.CREATE
        assert not event.is_custom_resource

    def test_rejects_unknown_request_type(self):
        with pytest.raises(RequestValidationError, match="Malformed lifecycle event"):
            LifecycleEvent.parse({"RequestType": "Rollback"})

    def test_addressing_only_drops_non_strings(self):
        event = LifecycleEvent.addressing_only({
            "RequestType": "Rollback",
            "RequestId": "abc",
            "StackId": 42,
            "ResponseURL": "https://example.com/r",
        })
        assert event.request_id == "abc"
        assert event.stack_id is None
        assert event.is_custom_resource

    def test_create_ignores_existing_physical_id(self):
        event = LifecycleEvent.parse({"RequestId": "abc", "PhysicalResourceId": "old"})
        assert event.physical_id() == "migration-abc"

    def test_property_aliases(self):
        event = LifecycleEvent.parse({
            "RequestId": "abc",
            "ResourceProperties": {
                "ClusterName": CLUSTER,
                "TaskDef": TASK_DEFINITION,
                "Subnets": ["subnet-a", "subnet-a", " "],
            },
        })
        request = build_request(event, environ={})
        assert request.cluster == CLUSTER
        assert request.task_definition == TASK_DEFINITION
        assert request.subnets == ("subnet-a",)

    def test_event_properties_win_over_environment(self, custom_resource_event):
        event = LifecycleEvent.parse(custom_resource_event)
        request = build_request(event, environ={"CLUSTER_NAME": "other"})
        assert request.cluster == CLUSTER

    def test_blank_cluster_rejected(self):
        event = LifecycleEvent.parse({
            "ResourceProperties": {"Cluster": "  ", "TaskDefinition": "t", "Subnets": "s"}
        })
        with pytest.raises(RequestValidationError, match="cluster"):
            build_request(event, environ={})


class TestCompletionReporter:
    """Response document and delivery."""

    def outcome(self, reason="Migration task done", result=OutcomeResult.SUCCESS):
        state = (
            OrchestrationState.SUCCEEDED
            if result == OutcomeResult.SUCCESS
            else OrchestrationState.EXIT_NONZERO
        )
        return Outcome(result=result, reason=reason, elapsed=12.34, final_state=state,
                       task_id=TASK_ARN, poll_count=2, exit_code=0)

    def test_body_fields(self, reporter, custom_resource_event):
        event = LifecycleEvent.parse(custom_resource_event)
        body = reporter.build_body(event, self.outcome(), "migration-abc")

        assert body["Status"] == "SUCCESS"
        assert body["NoEcho"] is False
        assert body["Data"]["ElapsedSeconds"] == "12.3"
        assert all(isinstance(v, str) for v in body["Data"].values())

    def test_long_reason_is_truncated(self, reporter, custom_resource_event):
        event = LifecycleEvent.parse(custom_resource_event)
        outcome = self.outcome(reason="x" * 10_000, result=OutcomeResult.FAILURE)

        body = reporter.build_body(event, outcome, "migration-abc", log_stream="stream")

        assert len(json.dumps(body).encode("utf-8")) <= RESPONSE_BODY_LIMIT
        assert body["Reason"].endswith("...")

    def test_success_reason_has_no_log_stream(self, reporter, custom_resource_event):
        event = LifecycleEvent.parse(custom_resource_event)
        body = reporter.build_body(event, self.outcome(), "migration-abc", log_stream="stream")
        assert "stream" not in body["Reason"]

    @pytest.mark.asyncio
    async def test_send_retries_server_errors(self):
        transport = RecordingTransport([500, 503, 200])
        reporter = CompletionReporter(
            client=httpx.AsyncClient(transport=httpx.MockTransport(transport)),
            retry_handler=RetryHandler(sleep=no_sleep),
        )

        assert await reporter.send("https://example.com/r", {"Status": "SUCCESS"}) is True
        assert len(transport.requests) == 3

    @pytest.mark.asyncio
    async def test_send_gives_up(self):
        transport = RecordingTransport([403])
        reporter = CompletionReporter(
            client=httpx.AsyncClient(transport=httpx.MockTransport(transport)),
            retry_handler=RetryHandler(sleep=no_sleep),
        )

        assert await reporter.send("https://example.com/r", {"Status": "FAILED"}) is False
        assert len(transport.requests) == 3

    @pytest.mark.asyncio
    async def test_send_transport_error(self):
        def broken(request):
            raise httpx.ConnectError("connection refused", request=request)

        reporter = CompletionReporter(
            client=httpx.AsyncClient(transport=httpx.MockTransport(broken)),
            retry_handler=RetryHandler(sleep=no_sleep),
        )

        assert await reporter.send("https://example.com/r", {"Status": "FAILED"}) is False
