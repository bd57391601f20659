from redis.exceptions import ConnectionError as RedisConnectionError

from clinic_portal.app.rate_limiter import MemoryLoginThrottle, RedisLoginThrottle, build_login_throttle


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class FakeRedis:
    def __init__(self):
        self.counters = {}
        self.ttls = {}

    def incr(self, key):
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    def expire(self, key, seconds):
        self.ttls[key] = seconds

    def scan_iter(self, pattern):
        prefix = pattern.rstrip("*")
        return [k for k in list(self.counters) if k.startswith(prefix)]

    def delete(self, key):
        self.counters.pop(key, None)


class DownRedis:
    def incr(self, key):
        raise RedisConnectionError("Connection refused")


def test_memory_throttle_blocks_after_budget():
    throttle = MemoryLoginThrottle(max_attempts=5, window_seconds=900, clock=FakeClock())
    assert all(throttle.hit("1.2.3.4:login") for _ in range(5))
    assert throttle.hit("1.2.3.4:login") is False
    assert throttle.hit("5.6.7.8:login") is True


def test_memory_throttle_window_expires():
    clock = FakeClock()
    throttle = MemoryLoginThrottle(max_attempts=2, window_seconds=60, clock=clock)
    throttle.hit("k")
    throttle.hit("k")
    assert throttle.hit("k") is False

    clock.now += 61
    assert throttle.hit("k") is True


def test_memory_throttle_stays_bounded():
    clock = FakeClock()
    throttle = MemoryLoginThrottle(max_attempts=5, window_seconds=60, max_entries=3, clock=clock)
    for key in ("a", "b", "c"):
        throttle.hit(key)
        clock.now += 1

    throttle.hit("d")
    assert len(throttle._attempts) == 3
    assert "a" not in throttle._attempts

    clock.now += 120
    throttle.hit("e")
    assert list(throttle._attempts) == ["e"]


def test_redis_throttle_counts_and_expires():
    redis_client = FakeRedis()
    throttle = RedisLoginThrottle(redis_client, max_attempts=3, window_seconds=900)
    assert [throttle.hit("k") for _ in range(4)] == [True, True, True, False]
    assert redis_client.ttls == {"login_attempts:k": 900}

    throttle.reset()
    assert throttle.hit("k") is True


def test_redis_throttle_fails_open():
    throttle = RedisLoginThrottle(DownRedis(), max_attempts=1, window_seconds=900)
    assert throttle.hit("k") is True
    assert throttle.hit("k") is True


def test_default_backend_is_memory():
    assert isinstance(build_login_throttle("memory"), MemoryLoginThrottle)


def test_token_endpoint_is_throttled(client, db):
    for _ in range(5):
        response = client.post("/token", data={"username": "nobody@example.com", "password": "x"})
        assert response.status_code == 401

    response = client.post("/token", data={"username": "nobody@example.com", "password": "x"})
    assert response.status_code == 429
    assert response.json()["error"].startswith("Too many attempts")

    # a different caller address has its own budget
    response = client.post("/token", data={"username": "nobody@example.com", "password": "x"},
                           headers={"X-Forwarded-For": "10.0.0.9"})
    assert response.status_code == 401


def test_magic_link_shares_login_budget(client, db):
    for _ in range(5):
        client.post("/token", data={"username": "nobody@example.com", "password": "x"})

    response = client.post("/auth/magic-link", json={"email": "patient@example.com"})
    assert response.status_code == 429
