#!/usr/bin/env python3
"""Live check of configured swap providers.

Probes each provider's coin list, optionally rate-shops a sample pair, and
runs one health check sweep.

Usage:
    python scripts/check_providers.py
    python scripts/check_providers.py --from BTC:BTC --to USDT:POLYGON --amount 100
"""

import argparse
import asyncio
import sys
import time
from decimal import Decimal

from dotenv import load_dotenv

# ANSI-colored markers keyed by outcome
MARKS = {
    "ok": "\033[92m✓\033[0m",
    "fail": "\033[91m✗\033[0m",
    "warn": "\033[93m⚠\033[0m",
}


def report(label: str, outcome: str, detail: str = "") -> None:
    """Print one result line, e.g. ``✓ Exolix: 412 coins``."""
    suffix = f": {detail}" if detail else ""
    print(f"  {MARKS[outcome]} {label}{suffix}")


def report_check(label: str, passed: bool, detail: str = "") -> None:
    report(label, "ok" if passed else "fail", detail)


def check_config(context) -> bool:
    """Show which providers are configured."""
    print("\n⚙️  Provider Configuration...")

    safe = context.settings.get_safe_dict()
    report_check("Settings loaded", True, f"env={safe['environment']}, timeout={safe['providers']['timeout']}s")

    for provider in context.registry.get_all():
        if provider.enabled:
            report_check(provider.display_name, True, "configured")
        else:
            report(provider.display_name, "warn", "missing API credentials, disabled")

    return bool(context.registry.get_enabled())


async def check_coins(context) -> bool:
    """Fetch each enabled provider's coin list."""
    print("\n🪙 Coin Listings...")

    ok = True
    for provider in context.registry.get_enabled():
        start = time.monotonic()
        listing = await provider.fetch_supported_coins()
        elapsed = time.monotonic() - start
        if listing.is_fallback:
            report(provider.display_name, "warn", f"fallback list ({len(listing.coins)} coins, {elapsed:.1f}s)")
            ok = False
        else:
            report_check(provider.display_name, True, f"{len(listing.coins)} coins in {elapsed:.1f}s")
    return ok


async def check_quote(context, from_arg: str, to_arg: str, amount: Decimal) -> bool:
    """Rate-shop a sample pair across enabled providers."""
    from_currency, _, from_network = from_arg.partition(":")
    to_currency, _, to_network = to_arg.partition(":")
    print(f"\n💱 Rate Shopping {amount} {to_currency} ({to_network}) from {from_currency} ({from_network})...")

    try:
        result = await context.rate_shopper.get_best_quote(
            from_currency, from_network or from_currency, to_currency, to_network or to_currency, amount
        )
    except Exception as e:
        report_check("Rate shop", False, str(e))
        return False

    if result is None:
        report_check("Rate shop", False, "no provider returned a quote")
        return False

    for quote in sorted(result.all_quotes, key=lambda q: q.deposit_amount):
        best = " (best)" if quote is result.best_quote else ""
        report_check(quote.provider, True, f"deposit {quote.deposit_amount} {quote.deposit_currency}{best}")
    for failed in result.failed_providers:
        report(failed.provider, "warn", failed.error)
    return True


async def check_health(context) -> bool:
    """Run one health check sweep."""
    print("\n🩺 Health Check...")

    result = await context.health.run_health_check()
    for health in result.providers:
        report_check(
            health.name,
            health.enabled and not health.auto_disabled,
            f"score {health.health_score}, {health.metrics.average_latency_ms:.0f}ms",
        )
    for recommendation in result.recommendations:
        report("Recommendation", "warn", recommendation)

    verdict = result.overall_health.value
    report_check("Overall", verdict == "healthy", verdict)
    return verdict != "critical"


async def main():
    """Run all provider checks."""
    load_dotenv()

    parser = argparse.ArgumentParser(description="Check swap providers")
    parser.add_argument("--from", dest="from_pair", default="BTC:BTC", help="CURRENCY:NETWORK sent")
    parser.add_argument("--to", dest="to_pair", default="USDT:POLYGON", help="CURRENCY:NETWORK received")
    parser.add_argument("--amount", type=Decimal, default=Decimal("100"), help="Fixed amount received")
    parser.add_argument("--skip-quote", action="store_true", help="Don't rate-shop a sample pair")
    args = parser.parse_args()

    from safepay.providers.factory import create_provider_context

    context = create_provider_context()

    print("=" * 60)
    print("     SAFEPAY PROVIDER CHECK")
    print("=" * 60)

    results = {}
    results["configuration"] = check_config(context)
    results["coin_listings"] = await check_coins(context)
    if not args.skip_quote:
        results["rate_shopping"] = await check_quote(context, args.from_pair, args.to_pair, args.amount)
    results["health"] = await check_health(context)

    # Summary
    print("\n" + "=" * 60)
    print("     SUMMARY")
    print("=" * 60)

    passed = sum(1 for v in results.values() if v)
    total = len(results)

    for name, success in results.items():
        report_check(name.replace("_", " ").title(), success)

    print()
    report_check(f"{passed}/{total} checks passed", passed == total)
    return 0 if passed == total else 1


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
