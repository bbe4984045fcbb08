from __future__ import annotations

import os

import pytest

from agent_runner.storage.postgres import PostgresRecordStore


@pytest.fixture
def postgres_store() -> PostgresRecordStore:
    if os.getenv("RUN_POSTGRES_INTEGRATION_TESTS") != "1":
        pytest.skip(
            "Set RUN_POSTGRES_INTEGRATION_TESTS=1 and AGENT_RUNNER_DATABASE_URL "
            "to run integration tests against PostgreSQL."
        )
    database_url = os.getenv("AGENT_RUNNER_DATABASE_URL")
    if not database_url:
        pytest.skip("AGENT_RUNNER_DATABASE_URL is required for integration tests.")

    record_store = PostgresRecordStore(database_url)
    record_store.migrate()
    return record_store
