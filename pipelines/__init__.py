"""Dagster pipelines package for PaySync.

Dagster acts as the durable execution engine: every step shells out to the
PaySync CLI as an idempotent, individually retryable unit.
"""
