import pytest


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def set_many_with_ttl(self, entries: list[tuple[str, str, int]]) -> bool:
        for key, value, ttl_s in entries:
            self.store[key] = value
            self.ttls[key] = ttl_s
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)


@pytest.fixture
def fake_redis():
    return FakeRedis()
