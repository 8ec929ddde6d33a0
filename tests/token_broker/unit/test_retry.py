import pytest
from tenacity import RetryError, retry_if_exception_type

from tests.token_broker.support.fakes import RecordingSleep
from token_broker.retry import (
    RetryBackoffPolicy,
    build_exponential_retrying,
    policy_for_max_retries,
)


def test_policy_for_max_retries_counts_first_attempt() -> None:
    assert policy_for_max_retries(3).attempts == 4
    assert policy_for_max_retries(0).attempts == 1


@pytest.mark.parametrize("max_retries", [-1, 11])
def test_policy_for_max_retries_rejects_out_of_range(max_retries: int) -> None:
    with pytest.raises(ValueError, match="max_retries must be between 0 and 10"):
        policy_for_max_retries(max_retries)


def test_delay_doubles_from_base() -> None:
    policy = RetryBackoffPolicy(attempts=4)

    assert [policy.delay_before(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


def test_delay_is_capped_by_max_seconds() -> None:
    policy = RetryBackoffPolicy(attempts=6, base_seconds=1.0, max_seconds=3.0)

    assert [policy.delay_before(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.0]


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"attempts": 0}, "attempts must be >= 1"),
        ({"attempts": 1, "base_seconds": -1.0}, "base_seconds must be >= 0"),
        (
            {"attempts": 1, "base_seconds": 2.0, "max_seconds": 1.0},
            "max_seconds must be >= base_seconds",
        ),
    ],
)
def test_policy_validation(kwargs: dict[str, float], message: str) -> None:
    with pytest.raises(ValueError, match=message):
        RetryBackoffPolicy(**kwargs)


@pytest.mark.asyncio
async def test_retrying_sleeps_one_two_four_seconds() -> None:
    sleep = RecordingSleep()
    attempts = 0
    retrying = build_exponential_retrying(
        retry=retry_if_exception_type(ConnectionError),
        policy=policy_for_max_retries(3),
        sleep=sleep,
    )

    with pytest.raises(ConnectionError):
        async for attempt in retrying:
            with attempt:
                attempts += 1
                raise ConnectionError("refused")

    assert attempts == 4
    assert sleep.delays == [1, 2, 4]


@pytest.mark.asyncio
async def test_retrying_does_not_retry_other_exceptions() -> None:
    sleep = RecordingSleep()
    attempts = 0
    retrying = build_exponential_retrying(
        retry=retry_if_exception_type(ConnectionError),
        policy=policy_for_max_retries(3),
        sleep=sleep,
    )

    with pytest.raises(KeyError):
        async for attempt in retrying:
            with attempt:
                attempts += 1
                raise KeyError("bad payload")

    assert attempts == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_retrying_without_reraise_wraps_last_error() -> None:
    retrying = build_exponential_retrying(
        retry=retry_if_exception_type(ConnectionError),
        policy=policy_for_max_retries(1, base_seconds=0.0),
        sleep=RecordingSleep(),
        reraise=False,
    )

    with pytest.raises(RetryError):
        async for attempt in retrying:
            with attempt:
                raise ConnectionError("refused")


@pytest.mark.asyncio
async def test_retrying_calls_before_sleep_hook() -> None:
    seen: list[int] = []
    retrying = build_exponential_retrying(
        retry=retry_if_exception_type(ConnectionError),
        policy=policy_for_max_retries(2),
        sleep=RecordingSleep(),
        before_sleep=lambda state: seen.append(state.attempt_number),
    )

    with pytest.raises(ConnectionError):
        async for attempt in retrying:
            with attempt:
                raise ConnectionError("refused")

    assert seen == [1, 2]
