import fakeredis
import pytest

from assessment.errors import ConcurrentModification
from database import redis_client
from database.redis_client import attempt_lock


@pytest.fixture
def fake_redis(monkeypatch):
    monkeypatch.setattr(redis_client, "ATTEMPT_LOCK_TIMEOUT_SECONDS", 0.1)
    return fakeredis.FakeRedis()


def test_second_holder_of_the_same_attempt_is_refused(fake_redis):
    with attempt_lock(1, client=fake_redis):
        with pytest.raises(ConcurrentModification):
            with attempt_lock(1, client=fake_redis):
                pass


def test_other_attempts_lock_independently(fake_redis):
    with attempt_lock(1, client=fake_redis):
        with attempt_lock(2, client=fake_redis):
            assert fake_redis.exists("attempt-lock:2")


def test_lock_is_released_on_exit(fake_redis):
    with attempt_lock(1, client=fake_redis):
        assert fake_redis.exists("attempt-lock:1")
    assert not fake_redis.exists("attempt-lock:1")

    with pytest.raises(RuntimeError):
        with attempt_lock(1, client=fake_redis):
            raise RuntimeError("boom")
    with attempt_lock(1, client=fake_redis):
        pass
