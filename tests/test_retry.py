import asyncio

import pytest
from botocore.exceptions import EndpointConnectionError

from conftest import client_error
from ttschunker.errors import ErrorKind, ProviderError
from ttschunker.services.retry import (
    RetryPolicy,
    is_retryable_provider_error,
    is_transient_storage_error,
)


class Flaky:
    def __init__(self, errors, result="done"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def test_backoff_doubles_and_caps():
    policy = RetryPolicy(max_attempts=6, base_delay=1.0, max_delay=10.0)
    assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]


@pytest.mark.asyncio
async def test_fails_twice_then_succeeds_with_backoff():
    fn = Flaky([client_error("ServiceUnavailable", 503), client_error("SlowDown", 503)])
    sleep = SleepRecorder()

    result = await RetryPolicy(max_attempts=3).run(fn, sleep=sleep)

    assert result == "done"
    assert fn.calls == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_permanent_error_is_not_retried():
    fn = Flaky([client_error("AccessDenied", 403)])
    sleep = SleepRecorder()

    with pytest.raises(Exception) as exc_info:
        await RetryPolicy().run(fn, sleep=sleep)

    assert exc_info.value.response["Error"]["Code"] == "AccessDenied"
    assert fn.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_exhaustion_reraises_last_error():
    errors = [EndpointConnectionError(endpoint_url="https://r2") for _ in range(3)]
    fn = Flaky(errors)
    retried = []

    with pytest.raises(EndpointConnectionError):
        await RetryPolicy(max_attempts=3).run(
            fn, sleep=SleepRecorder(), on_retry=lambda n, e: retried.append(n)
        )

    assert fn.calls == 3
    assert retried == [1, 2]


@pytest.mark.parametrize(
    "exc, expected",
    [
        (client_error("InternalError", 500), True),
        (client_error("Whatever", 502), True),
        (client_error("RequestTimeout", 400), True),
        (client_error("NoSuchBucket", 404), False),
        (client_error("InvalidAccessKeyId", 403), False),
        (asyncio.TimeoutError(), True),
        (ConnectionResetError(), True),
        (ValueError("bad key"), False),
    ],
)
def test_storage_error_classification(exc, expected):
    assert is_transient_storage_error(exc) is expected


def test_provider_error_classification():
    assert is_retryable_provider_error(ProviderError("x", kind=ErrorKind.TIMEOUT))
    assert is_retryable_provider_error(ProviderError("x", kind=ErrorKind.PROVIDER_ERROR))
    assert not is_retryable_provider_error(ProviderError("x", kind=ErrorKind.EMPTY_INPUT))
    assert not is_retryable_provider_error(RuntimeError("x"))


def test_rejects_zero_attempts():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
