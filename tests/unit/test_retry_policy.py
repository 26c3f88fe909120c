"""
Unit tests for DatabaseRetryPolicy.

Covers classification of transient vs. permanent errors, the backoff
formula and the retry loop itself (with sleeping patched out).
"""

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from guildhall.core.database.retry_policy import DatabaseRetryConfig, DatabaseRetryPolicy


class _DriverError(Exception):
    def __init__(self, sqlstate=None):
        super().__init__("driver error")
        self.sqlstate = sqlstate


def _policy(max_attempts: int = 3, jitter_ms: int = 0) -> DatabaseRetryPolicy:
    return DatabaseRetryPolicy(
        DatabaseRetryConfig(
            max_attempts=max_attempts,
            initial_backoff_ms=50,
            max_backoff_ms=1000,
            jitter_ms=jitter_ms,
        )
    )


def _dbapi_error(sqlstate):
    return DBAPIError("SELECT 1", {}, _DriverError(sqlstate))


@pytest.fixture
def no_sleep(mocker):
    return mocker.patch(
        "guildhall.core.database.retry_policy.asyncio.sleep", new=mocker.AsyncMock()
    )


@pytest.mark.unit
class TestClassification:
    def test_operational_error_is_retriable(self):
        exc = OperationalError("SELECT 1", {}, _DriverError())

        assert _policy().is_retriable(exc)

    @pytest.mark.parametrize("sqlstate", ["40001", "40P01"])
    def test_serialization_and_deadlock_are_retriable(self, sqlstate):
        assert _policy().is_retriable(_dbapi_error(sqlstate))

    def test_other_sqlstate_is_not_retriable(self):
        assert not _policy().is_retriable(_dbapi_error("22001"))

    def test_integrity_error_is_never_retriable(self):
        exc = IntegrityError("INSERT", {}, _DriverError("40001"))

        assert not _policy().is_retriable(exc)

    def test_plain_exception_is_not_retriable(self):
        assert not _policy().is_retriable(ValueError("boom"))


@pytest.mark.unit
class TestBackoff:
    def test_exponential_growth(self):
        policy = _policy()

        assert policy.compute_backoff_ms(1) == 50
        assert policy.compute_backoff_ms(2) == 100
        assert policy.compute_backoff_ms(3) == 200

    def test_capped_at_max(self):
        assert _policy().compute_backoff_ms(20) == 1000

    def test_jitter_is_bounded(self):
        policy = _policy(jitter_ms=25)

        for _ in range(50):
            assert 50 <= policy.compute_backoff_ms(1) <= 75


@pytest.mark.unit
class TestExecute:
    async def test_returns_result_without_retry(self, mocker, no_sleep):
        operation = mocker.AsyncMock(return_value="ok")

        result = await _policy().execute(operation, operation_name="test.op")

        assert result == "ok"
        assert operation.await_count == 1
        no_sleep.assert_not_awaited()

    async def test_retries_transient_failure_then_succeeds(self, mocker, no_sleep):
        operation = mocker.AsyncMock(side_effect=[_dbapi_error("40001"), "ok"])

        result = await _policy().execute(operation, operation_name="test.op")

        assert result == "ok"
        assert operation.await_count == 2
        assert no_sleep.await_count == 1

    async def test_gives_up_after_max_attempts(self, mocker, no_sleep):
        operation = mocker.AsyncMock(side_effect=_dbapi_error("40P01"))

        with pytest.raises(DBAPIError):
            await _policy(max_attempts=3).execute(operation, operation_name="test.op")

        assert operation.await_count == 3

    async def test_permanent_failure_is_raised_immediately(self, mocker, no_sleep):
        operation = mocker.AsyncMock(side_effect=ValueError("bad input"))

        with pytest.raises(ValueError):
            await _policy().execute(operation, operation_name="test.op")

        assert operation.await_count == 1
        no_sleep.assert_not_awaited()
