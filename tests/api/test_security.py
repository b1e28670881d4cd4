import pytest

from tariffgate.api.security import DEV_API_KEY, SlidingWindowLimiter, allowed_api_keys, redact_key


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_window_slides_instead_of_resetting():
    clock = FakeClock()
    limiter = SlidingWindowLimiter(2, window_seconds=60, clock=clock)

    assert limiter.acquire("k") is None
    clock.now += 30
    assert limiter.acquire("k") is None
    clock.now += 20
    assert limiter.acquire("k") == pytest.approx(10.0)

    clock.now += 10
    assert limiter.acquire("k") is None
    assert limiter.acquire("k") == pytest.approx(30.0)


def test_keys_are_limited_independently():
    limiter = SlidingWindowLimiter(1, clock=FakeClock())

    assert limiter.acquire("a") is None
    assert limiter.acquire("b") is None
    assert limiter.acquire("a") is not None


def test_rejected_calls_do_not_consume_budget():
    clock = FakeClock()
    limiter = SlidingWindowLimiter(1, window_seconds=10, clock=clock)
    limiter.acquire("k")
    for _ in range(5):
        limiter.acquire("k")

    clock.now += 10

    assert limiter.acquire("k") is None


@pytest.mark.parametrize(
    "raw, expected",
    [(None, "-"), ("", "-"), ("short", "****"), ("tg_live_abcdef1234", "****1234")],
)
def test_redact_key(raw, expected):
    assert redact_key(raw) == expected


def test_dev_key_only_without_configuration(monkeypatch):
    monkeypatch.delenv("TGATE_API_KEYS", raising=False)
    assert allowed_api_keys() == {DEV_API_KEY}

    monkeypatch.setenv("TGATE_API_KEYS", "alpha, beta,,alpha")
    assert allowed_api_keys() == {"alpha", "beta"}
