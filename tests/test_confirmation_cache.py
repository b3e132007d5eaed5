from app.services.confirmation_service import ConfirmationCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_token_is_consumed_once():
    cache = ConfirmationCache(ttl_seconds=60)
    token = cache.issue({"dish_name": "Soup"}, owner=1)

    assert cache.consume(token, owner=1) == {"dish_name": "Soup"}
    assert cache.consume(token, owner=1) is None
    assert len(cache) == 0


def test_tokens_are_distinct_and_fit_callback_payload():
    cache = ConfirmationCache(ttl_seconds=60)
    tokens = {cache.issue({}, owner=1) for _ in range(50)}

    assert len(tokens) == 50
    assert all(len(f"meal_confirm_{t}".encode()) <= 64 for t in tokens)


def test_foreign_owner_cannot_consume_and_does_not_destroy():
    cache = ConfirmationCache(ttl_seconds=60)
    token = cache.issue("payload", owner=1)

    assert cache.consume(token, owner=2) is None
    assert cache.consume(token, owner=1) == "payload"


def test_expired_token_is_not_found():
    clock = FakeClock()
    cache = ConfirmationCache(ttl_seconds=30, clock=clock)
    token = cache.issue("payload", owner=1)

    clock.now = 31
    assert cache.consume(token, owner=1) is None


def test_sweep_removes_only_expired_entries():
    clock = FakeClock()
    cache = ConfirmationCache(ttl_seconds=30, clock=clock)
    cache.issue("old", owner=1)
    clock.now = 20
    fresh = cache.issue("fresh", owner=1)

    clock.now = 35
    assert cache.sweep() == 1
    assert cache.consume(fresh, owner=1) == "fresh"
