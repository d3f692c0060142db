"""Provider health check runner.

Sweeps all configured providers on an interval, feeding the results into the
health monitor so failing providers are taken out of rotation and recovered
ones come back.

Usage:
    python -m safepay.services.health_runner --interval 300
    python -m safepay.services.health_runner --once

Environment variables:
    HEALTH_CHECK_INTERVAL_SECONDS: Seconds between sweeps (default: 300)
    DEBUG: Enable debug logging
"""

import argparse
import asyncio
import logging
from typing import Optional

from dotenv import load_dotenv

from safepay.providers.factory import ProviderContext, create_provider_context
from safepay.providers.health import HealthCheckResult, OverallHealth, summarize

logger = logging.getLogger(__name__)


class HealthCheckRunner:
    """Runs provider health checks periodically."""

    def __init__(self, context: ProviderContext, interval: Optional[int] = None):
        """Initialize runner.

        Args:
            context: Provider context whose health monitor is driven
            interval: Seconds between sweeps (defaults to settings)
        """
        self.context = context
        self.interval = interval or context.settings.health_check_interval_seconds
        self._stop = asyncio.Event()
        self.last_result: Optional[HealthCheckResult] = None

    async def run_once(self) -> HealthCheckResult:
        """Run a single sweep and log the verdict."""
        result = await self.context.health.run_health_check()
        self.last_result = result

        log = logger.info
        if result.overall_health == OverallHealth.DEGRADED:
            log = logger.warning
        elif result.overall_health == OverallHealth.CRITICAL:
            log = logger.error

        log(
            f"Provider health: {result.overall_health.value} "
            f"({result.auto_disabled_count} auto-disabled) {summarize(result)}"
        )
        for recommendation in result.recommendations:
            logger.warning(recommendation)

        return result

    async def run(self) -> None:
        """Run sweeps until stop() is called."""
        logger.info(
            f"Starting provider health checks (interval: {self.interval}s, "
            f"providers: {self.context.registry.names})"
        )
        self._stop.clear()

        while not self._stop.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Health check error: {e}")

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Provider health checks stopped")

    def stop(self) -> None:
        """Stop the run loop after the current sweep."""
        self._stop.set()


async def main():
    """Main entry point."""
    load_dotenv()

    context = create_provider_context()
    settings = context.settings

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="Run provider health checks")
    parser.add_argument(
        "--interval",
        type=int,
        default=settings.health_check_interval_seconds,
        help=f"Seconds between sweeps (default: {settings.health_check_interval_seconds})",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run once and exit",
    )
    args = parser.parse_args()

    runner = HealthCheckRunner(context, interval=args.interval)

    if args.once:
        result = await runner.run_once()
        print(f"Overall health: {result.overall_health.value}")
    else:
        await runner.run()


if __name__ == "__main__":
    asyncio.run(main())
