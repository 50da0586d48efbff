"""Dagster definitions for PaySync.

This module contains the main Definitions object that Dagster uses to discover
and run all jobs, schedules, and sensors in the project.

DuckDB allows a single writer per database file, so run these jobs with a
run queue limited to one concurrent run (`max_concurrent_runs: 1`).
"""

from dagster import (
    DefaultScheduleStatus,
    DefaultSensorStatus,
    Definitions,
    RunRequest,
    ScheduleDefinition,
    SensorEvaluationContext,
    sensor,
)

from pipelines.jobs import (  # noqa: TID252
    cleanup_outbox_job,
    publish_outbox_job,
    sync_connectors_job,
)

OUTBOX_POLL_SECONDS = 5


@sensor(
    job=publish_outbox_job,
    minimum_interval_seconds=OUTBOX_POLL_SECONDS,
    default_status=DefaultSensorStatus.RUNNING,
)
def outbox_sensor(context: SensorEvaluationContext):
    """Request an outbox publish every few seconds."""
    yield RunRequest()


sync_schedule = ScheduleDefinition(
    job=sync_connectors_job,
    cron_schedule="*/5 * * * *",
    default_status=DefaultScheduleStatus.RUNNING,
)

cleanup_schedule = ScheduleDefinition(
    job=cleanup_outbox_job,
    cron_schedule="0 3 * * *",
    default_status=DefaultScheduleStatus.RUNNING,
)

defs = Definitions(
    jobs=[sync_connectors_job, publish_outbox_job, cleanup_outbox_job],
    schedules=[sync_schedule, cleanup_schedule],
    sensors=[outbox_sensor],
)
