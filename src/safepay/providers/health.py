"""Provider health monitoring.

Tracks per-provider success/failure statistics, derives a 0-100 health score
and takes providers out of rotation when they fail too often. Auto-disabled
providers come back once a fresh run of requests recorded after the disable
is mostly successful.

State lives in memory for the process lifetime. All mutation happens in
synchronous code between awaits, so each update is atomic on the event loop.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Optional, TypeVar

from safepay.providers.base import SwapProvider
from safepay.providers.registry import ProviderRegistry

if TYPE_CHECKING:
    from safepay.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

HEALTH_CHECK_FAILURE = "Health check failed - provider not responding"


class OverallHealth(str, Enum):
    """System-wide verdict of a health check sweep."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


@dataclass
class HealthThresholds:
    """Auto-disable / re-enable thresholds."""

    min_requests_for_decision: int = 10
    max_consecutive_failures: int = 5
    min_success_rate: float = 0.7
    reenable_success_rate: float = 0.9
    reenable_min_requests: int = 10
    max_latency_ms: float = 30000
    max_error_length: int = 200
    probe_timeout: float = 10.0  # seconds

    @classmethod
    def from_settings(cls, settings: "Settings") -> "HealthThresholds":
        return cls(
            min_requests_for_decision=settings.health_min_requests,
            max_consecutive_failures=settings.health_max_consecutive_failures,
            min_success_rate=settings.health_min_success_rate,
            reenable_success_rate=settings.health_reenable_success_rate,
            reenable_min_requests=settings.health_min_requests,
            max_latency_ms=settings.health_max_latency_ms,
            probe_timeout=settings.health_probe_timeout,
        )


@dataclass
class HealthMetrics:
    """All-time request counters for one provider."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_latency_ms: float = 0.0
    last_request_time: Optional[datetime] = None
    last_error_time: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 1.0
        return self.successful_requests / self.total_requests

    def to_dict(self) -> dict:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "average_latency_ms": round(self.average_latency_ms, 2),
            "last_request_time": self.last_request_time.isoformat() if self.last_request_time else None,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "last_error": self.last_error,
        }


@dataclass
class ProviderHealth:
    """Health record for one provider."""

    name: str
    enabled: bool = True
    auto_disabled: bool = False
    disabled_reason: Optional[str] = None
    disabled_at: Optional[datetime] = None
    metrics: HealthMetrics = field(default_factory=HealthMetrics)
    health_score: int = 100
    last_health_check: Optional[datetime] = None
    consecutive_failures: int = 0
    # Requests recorded since the last auto-disable; drives re-enable
    recovery_requests: int = 0
    recovery_successes: int = 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "auto_disabled": self.auto_disabled,
            "disabled_reason": self.disabled_reason,
            "disabled_at": self.disabled_at.isoformat() if self.disabled_at else None,
            "metrics": self.metrics.to_dict(),
            "health_score": self.health_score,
            "consecutive_failures": self.consecutive_failures,
            "last_health_check": self.last_health_check.isoformat() if self.last_health_check else None,
        }


@dataclass
class HealthCheckResult:
    """Outcome of a health check sweep."""

    timestamp: datetime
    providers: list[ProviderHealth]
    overall_health: OverallHealth
    auto_disabled_count: int
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "providers": [p.to_dict() for p in self.providers],
            "overall_health": self.overall_health.value,
            "auto_disabled_count": self.auto_disabled_count,
            "recommendations": list(self.recommendations),
        }


def compute_health_score(metrics: HealthMetrics) -> int:
    """70% success rate, 30% latency (30s average latency scores zero)."""
    if metrics.total_requests == 0:
        return 100
    success_pct = metrics.success_rate * 100
    latency_score = max(0.0, 100 - metrics.average_latency_ms / 300)
    # Round half up
    return int(math.floor(success_pct * 0.7 + latency_score * 0.3 + 0.5))


async def quick_validate(provider: SwapProvider, timeout: float = 10.0) -> bool:
    """Liveness probe: can the provider list its coins within ``timeout``?

    A fallback listing means the real fetch failed, so it doesn't count.
    """
    try:
        listing = await asyncio.wait_for(provider.fetch_supported_coins(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{provider.display_name} health probe timed out after {timeout}s")
        return False
    return not listing.is_fallback and len(listing.coins) > 0


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ProviderHealthMonitor:
    """Records call outcomes and drives the auto-disable state machine."""

    def __init__(
        self,
        registry: ProviderRegistry,
        thresholds: Optional[HealthThresholds] = None,
    ):
        self.registry = registry
        self.thresholds = thresholds or HealthThresholds()
        self._health: dict[str, ProviderHealth] = {}

    def get_provider_health(self, name: str) -> ProviderHealth:
        """Get the health record for a provider, creating it on first use."""
        health = self._health.get(name)
        if health is None:
            provider = self.registry.get(name)
            health = ProviderHealth(name=name, enabled=provider.enabled if provider else True)
            self._health[name] = health
        return health

    # ----------------------
    # Recording
    # ----------------------

    def record_success(self, name: str, latency_ms: float) -> None:
        health = self.get_provider_health(name)
        metrics = health.metrics

        metrics.total_requests += 1
        metrics.successful_requests += 1
        metrics.last_request_time = _now()
        n = metrics.total_requests
        metrics.average_latency_ms = (metrics.average_latency_ms * (n - 1) + latency_ms) / n

        health.consecutive_failures = 0
        health.health_score = compute_health_score(metrics)

        if health.auto_disabled:
            health.recovery_requests += 1
            health.recovery_successes += 1
            self._check_auto_reenable(health)

    def record_failure(self, name: str, error: str) -> None:
        health = self.get_provider_health(name)
        metrics = health.metrics
        now = _now()

        metrics.total_requests += 1
        metrics.failed_requests += 1
        metrics.last_request_time = now
        metrics.last_error_time = now
        metrics.last_error = str(error)[: self.thresholds.max_error_length]

        health.consecutive_failures += 1
        health.health_score = compute_health_score(metrics)

        if health.auto_disabled:
            health.recovery_requests += 1
        else:
            self._check_auto_disable(health)

    async def track(self, name: str, operation: Awaitable[T]) -> T:
        """Await an adapter call, recording its latency or its failure.

        Failures are recorded and re-raised unchanged.
        """
        start = time.monotonic()
        try:
            result = await operation
        except Exception as e:
            self.record_failure(name, str(e) or type(e).__name__)
            raise
        self.record_success(name, (time.monotonic() - start) * 1000)
        return result

    # ----------------------
    # State machine
    # ----------------------

    def _check_auto_disable(self, health: ProviderHealth) -> None:
        metrics = health.metrics
        # Manually disabled providers stay under manual control
        if not health.enabled:
            return
        if metrics.total_requests < self.thresholds.min_requests_for_decision:
            return

        reason = None
        if health.consecutive_failures >= self.thresholds.max_consecutive_failures:
            reason = f"{health.consecutive_failures} consecutive failures"
        elif metrics.success_rate < self.thresholds.min_success_rate:
            reason = f"Low success rate: {metrics.success_rate * 100:.1f}%"

        if reason is None:
            return

        health.auto_disabled = True
        health.enabled = False
        health.disabled_reason = reason
        health.disabled_at = _now()
        health.recovery_requests = 0
        health.recovery_successes = 0

        if self.registry.has(health.name):
            self.registry.disable(health.name, reason)
        logger.warning(f"Auto-disabling provider {health.name}: {reason}")

    def _check_auto_reenable(self, health: ProviderHealth) -> None:
        if health.recovery_requests < self.thresholds.reenable_min_requests:
            return
        recovery_rate = health.recovery_successes / health.recovery_requests
        if recovery_rate < self.thresholds.reenable_success_rate:
            return

        logger.info(
            f"Auto re-enabling provider {health.name}: health recovered "
            f"({health.recovery_successes}/{health.recovery_requests} since disable)"
        )
        self._clear_disabled(health)

    def _clear_disabled(self, health: ProviderHealth) -> None:
        health.auto_disabled = False
        health.enabled = True
        health.disabled_reason = None
        health.disabled_at = None
        health.consecutive_failures = 0
        health.recovery_requests = 0
        health.recovery_successes = 0
        if self.registry.has(health.name):
            self.registry.enable(health.name)

    # ----------------------
    # Manual overrides
    # ----------------------

    def disable_provider(self, name: str, reason: str) -> None:
        """Manually take a provider out of rotation."""
        health = self.get_provider_health(name)
        health.enabled = False
        # A manual disable supersedes auto-disable; only enable_provider lifts it
        health.auto_disabled = False
        health.recovery_requests = 0
        health.recovery_successes = 0
        health.disabled_reason = reason
        health.disabled_at = _now()
        if self.registry.has(name):
            self.registry.disable(name, reason)
        logger.info(f"Manually disabled provider {name}: {reason}")

    def enable_provider(self, name: str) -> None:
        """Manually return a provider to rotation, clearing any auto-disable."""
        self._clear_disabled(self.get_provider_health(name))
        logger.info(f"Manually enabled provider {name}")

    # ----------------------
    # Queries
    # ----------------------

    def is_provider_healthy(self, name: str) -> bool:
        health = self.get_provider_health(name)
        return health.enabled and not health.auto_disabled and health.health_score >= 50

    def get_all_provider_health(self) -> list[ProviderHealth]:
        """Health records for every registered provider."""
        return [self.get_provider_health(name) for name in self.registry.names]

    def reset_all_metrics(self) -> None:
        """Drop all metrics.

        Disabled providers keep their disabled state so the records stay in
        step with registry rotation and auto-disabled ones can still recover.
        """
        kept = {}
        for name, health in self._health.items():
            if health.enabled and not health.auto_disabled:
                continue
            kept[name] = ProviderHealth(
                name=name,
                enabled=health.enabled,
                auto_disabled=health.auto_disabled,
                disabled_reason=health.disabled_reason,
                disabled_at=health.disabled_at,
            )
        self._health = kept
        logger.info(f"All provider health metrics reset ({len(kept)} disabled providers kept)")

    # ----------------------
    # Health check sweep
    # ----------------------

    async def _probe(self, provider: SwapProvider) -> tuple[SwapProvider, bool, float]:
        start = time.monotonic()
        healthy = await quick_validate(provider, self.thresholds.probe_timeout)
        return provider, healthy, (time.monotonic() - start) * 1000

    async def run_health_check(self) -> HealthCheckResult:
        """Probe every configured provider and compute the overall verdict."""
        logger.info("Running provider health check...")

        # Unconfigured adapters can't answer; probing them would only record noise
        providers = [p for p in self.registry.get_all() if p.enabled]
        probes = await asyncio.gather(*(self._probe(p) for p in providers))

        results: list[ProviderHealth] = []
        recommendations: list[str] = []
        auto_disabled_count = 0
        checked_at = _now()

        for provider, healthy, latency_ms in probes:
            health = self.get_provider_health(provider.name)
            if healthy:
                self.record_success(provider.name, latency_ms)
            elif not health.auto_disabled:
                self.record_failure(provider.name, HEALTH_CHECK_FAILURE)
            health.last_health_check = checked_at

            if health.auto_disabled:
                auto_disabled_count += 1

            if health.health_score < 50:
                recommendations.append(
                    f"{provider.name}: Health score critical ({health.health_score}%). "
                    "Consider manual review."
                )
            elif health.health_score < 70:
                recommendations.append(
                    f"{provider.name}: Health score degraded ({health.health_score}%). Monitor closely."
                )
            if health.metrics.average_latency_ms > self.thresholds.max_latency_ms:
                recommendations.append(
                    f"{provider.name}: High latency "
                    f"({health.metrics.average_latency_ms / 1000:.1f}s average)"
                )
            results.append(health)

        active = [h for h in results if h.enabled and not h.auto_disabled]
        if not active:
            overall = OverallHealth.CRITICAL
            recommendations.append("CRITICAL: No active providers! Payment processing is unavailable.")
        else:
            average_score = sum(h.health_score for h in active) / len(active)
            if average_score < 50 or auto_disabled_count > len(self.registry) / 2:
                overall = OverallHealth.CRITICAL
            elif average_score < 70 or auto_disabled_count > 0:
                overall = OverallHealth.DEGRADED
            else:
                overall = OverallHealth.HEALTHY

        logger.info(
            f"Health check complete: {overall.value} "
            f"({len(active)}/{len(results)} active, {auto_disabled_count} auto-disabled)"
        )

        return HealthCheckResult(
            timestamp=checked_at,
            providers=results,
            overall_health=overall,
            auto_disabled_count=auto_disabled_count,
            recommendations=recommendations,
        )


def summarize(result: HealthCheckResult) -> dict[str, Any]:
    """Compact per-provider view of a sweep, for logs and scripts."""
    return {
        h.name: {
            "score": h.health_score,
            "active": h.enabled and not h.auto_disabled,
            "reason": h.disabled_reason,
        }
        for h in result.providers
    }
