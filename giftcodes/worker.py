import asyncio
import logging

from .config import Settings
from .inventory import InventoryService
from .main import build_inventory

logger = logging.getLogger(__name__)


async def run_sweeps(inventory: InventoryService, interval_seconds: float, max_runs: int | None = None):
    runs = 0
    while max_runs is None or runs < max_runs:
        try:
            count = await asyncio.to_thread(inventory.sweep_expired)
            logger.info(f"[worker] sweep done expired={count}")
        except Exception:
            # keep the loop alive; next tick retries
            logger.exception("[worker] expiry sweep failed")
        runs += 1
        if max_runs is None or runs < max_runs:
            await asyncio.sleep(interval_seconds)


async def main():
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    inventory = build_inventory(settings)
    logger.info(f"[worker] sweeping every {settings.sweep_interval_seconds}s")
    await run_sweeps(inventory, settings.sweep_interval_seconds)


if __name__ == "__main__":
    asyncio.run(main())
