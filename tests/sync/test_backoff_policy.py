import asyncio

from photo_mirror.errors import (
    AuthError,
    RemoteRequestError,
    StorageError,
    ThrottledError,
    TransientNetworkError,
    ValidationError,
)
from photo_mirror.sync import BackoffPolicy, Failure, classify_error


def test_classify_error():
    assert classify_error(TransientNetworkError("x")) is Failure.TRANSIENT
    assert classify_error(ThrottledError("slow down", retry_after=2)) is Failure.TRANSIENT
    assert classify_error(AuthError("expired")) is Failure.TRANSIENT
    assert classify_error(asyncio.TimeoutError()) is Failure.TRANSIENT
    assert classify_error(StorageError("corrupt")) is Failure.FATAL
    assert classify_error(ValidationError("bad")) is Failure.FATAL
    assert classify_error(RemoteRequestError("400")) is Failure.FATAL
    assert classify_error(RuntimeError("bug")) is Failure.FATAL


def test_delay_doubles_until_capped():
    policy = BackoffPolicy(initial=1.0, factor=2.0, maximum=300.0)

    assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 16.0]
    assert policy.delay_for(20) == 300.0


def test_throttling_hint_stretches_the_delay():
    policy = BackoffPolicy(initial=1.0, factor=2.0, maximum=300.0)

    assert policy.delay_for(1, ThrottledError("slow", retry_after=12.0)) == 12.0
    assert policy.delay_for(1, ThrottledError("slow", retry_after=900.0)) == 300.0
    assert policy.delay_for(4, ThrottledError("slow", retry_after=None)) == 8.0


def test_policy_from_settings(settings):
    policy = BackoffPolicy.from_settings(settings)

    assert policy.initial == settings.BACKOFF_INITIAL_SECONDS
    assert policy.maximum == settings.BACKOFF_MAX_SECONDS
    assert policy.max_failures == 5
