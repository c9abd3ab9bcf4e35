from datetime import datetime, timedelta, timezone

from giftcodes.inventory import InventoryService

ADMIN_SECRET = "test_admin_secret"
FINGERPRINT_SECRET = "test_fingerprint_secret"


def make_code(i: int) -> str:
    return f"AMAZON-GIFT-CODE-{i:06d}"


def seed(inventory: InventoryService, denominations, start: int = 1, expires_in=timedelta(days=30)):
    expires_at = datetime.now(timezone.utc) + expires_in
    return [
        inventory.add_code(make_code(start + i), d, expires_at=expires_at)
        for i, d in enumerate(denominations)
    ]


def past(days: int = 1) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the idempotency cache."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def get(self, key):
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl
