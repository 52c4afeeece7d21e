"""
M365 Compromise Investigation Engine — Command line

Usage:
    python -m m365_compromise_engine analyze alice@contoso.com --tenant-id ... --client-id ...
    python -m m365_compromise_engine analyze alice@contoso.com --delegated --tenant-id ... --client-id ...
    python -m m365_compromise_engine analyze --input raw_alice.json --expected-country NL
    python -m m365_compromise_engine recompute result.json --exclude SR-05 UR-03
    python -m m365_compromise_engine rules --export ./out

Exit codes: 0 on success, 1 on configuration/authentication failure,
2 when no account produced a result (not found / no sign-ins).

This tool is STRICTLY READ-ONLY. It will NEVER modify the tenant.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from . import __version__
from .auth.authenticator import AuthenticationError, Authenticator
from .collectors import ALL_COLLECTORS, build_account_data
from .config import CertificateAuth, ConfigError, DelegatedAuth, EngineConfig
from .graph.client import GraphAPIError, GraphClient
from .pipeline import InvestigationEngine, NoDataError, RunContext
from .reporting import export_csv, export_json, export_raw, export_rules_payload, load_result
from .scoring.models import AnalysisResult

logger = logging.getLogger("m365_compromise_engine.cli")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NO_DATA = 2


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="m365_compromise_engine",
        description="M365 Compromise Investigation Engine (READ-ONLY)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    common.add_argument("--output-dir", "-o", type=Path, default=None,
                        help="Output directory (default: ./m365_compromise_<timestamp>)")
    common.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    # --- analyze ---
    an = subparsers.add_parser("analyze", parents=[common], help="Score one or more accounts")
    an.add_argument("upns", nargs="*", help="User principal names to investigate")
    an.add_argument("--input", "-i", type=Path,
                    help="Raw Graph export (from --save-raw) to analyze offline")
    an.add_argument("--tenant-id", help="Tenant ID (GUID)")
    an.add_argument("--client-id", help="App registration client ID (GUID)")
    an.add_argument("--cert-path", type=Path, help="Path to PFX or base64-encoded PFX")
    an.add_argument("--delegated", action="store_true",
                    help="Use delegated (device-code) authentication instead of certificate")
    an.add_argument("--lookback-days", type=int, help="Sign-in history window in days")
    an.add_argument("--expected-country", action="append", default=None,
                    help="Country code where sign-ins are expected (repeatable)")
    an.add_argument("--no-geo", action="store_true", help="Disable IP geolocation lookups")
    an.add_argument("--no-reputation", action="store_true", help="Disable IP reputation lookups")
    an.add_argument("--save-raw", action="store_true", help="Also write the raw Graph data")
    an.add_argument("--formats", nargs="+", choices=["json", "csv", "rules"],
                    default=None, help="Output formats to generate")

    # --- recompute ---
    rc = subparsers.add_parser("recompute", parents=[common],
                               help="Recompute a stored result with indicators excluded")
    rc.add_argument("result", type=Path, help="JSON result written by `analyze`")
    rc.add_argument("--exclude", "-x", nargs="*", default=[],
                    help="Indicator ids to treat as false positives (e.g. SR-05 UR-03)")

    # --- rules ---
    ru = subparsers.add_parser("rules", parents=[common], help="List the indicator registry")
    ru.add_argument("--export", action="store_true",
                    help="Write indicator_rules.json to the output directory")

    return parser.parse_args(argv)


def configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )


def build_config(args: argparse.Namespace) -> EngineConfig:
    """Build engine configuration from the config file and CLI overrides."""
    config = EngineConfig.from_file(args.config) if args.config else EngineConfig()

    if args.output_dir:
        config.output.base_dir = str(args.output_dir)
    if args.verbose:
        config.verbose = True
    if args.command != "analyze":
        return config

    if args.lookback_days:
        config.collection.lookback_days = args.lookback_days
    if args.expected_country:
        config.scoring.expected_countries = [c.upper() for c in args.expected_country]
    if args.no_geo:
        config.lookups.geo_enabled = False
    if args.no_reputation:
        config.lookups.reputation_enabled = False
    if args.formats:
        config.output.formats = list(args.formats)

    if args.delegated:
        config.auth.mode = "delegated"
    if args.tenant_id and args.client_id:
        if config.auth.mode == "delegated":
            config.auth.delegated = DelegatedAuth(tenant_id=args.tenant_id, client_id=args.client_id)
        else:
            config.auth.certificate = CertificateAuth(
                tenant_id=args.tenant_id,
                client_id=args.client_id,
                certificate_path=str(args.cert_path or "./base64.txt"),
            )
    elif args.cert_path and config.auth.certificate:
        config.auth.certificate.certificate_path = str(args.cert_path)

    return config


def new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S") + "_" + uuid.uuid4().hex[:8]


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------

async def collect_accounts(config: EngineConfig, upns: list[str]) -> dict[str, dict[str, Any]]:
    """Run every collector for every account; returns raw Graph data per UPN."""
    print("\n🔐 Authenticating...")
    token = await Authenticator(config.auth).acquire_token()
    print("✅ Authentication successful.")

    raw: dict[str, dict[str, Any]] = {}
    async with GraphClient(
        access_token=token,
        page_size=config.collection.page_size,
        max_pages=config.collection.max_pages,
    ) as client:
        for upn in upns:
            print(f"\n  Collecting {upn} ({config.collection.lookback_days} days)...")
            collectors = [cls(graph=client, config=config.collection, user_principal_name=upn)
                          for cls in ALL_COLLECTORS]
            results = await asyncio.gather(*(c.execute() for c in collectors))

            data: dict[str, Any] = {}
            for collector, result in zip(collectors, results):
                status = "❌" if result.failed else "✅"
                print(f"  {status} {collector.__class__.__name__}: "
                      f"{result.metadata['items_collected']} items "
                      f"({result.metadata['duration_seconds']}s)")
                for w in result.metadata.get("warnings", []):
                    print(f"      ⚠  {w}")
                data.update(result.data)
            raw[upn] = data
        stats = client.get_stats()
    print(f"\n  Graph requests: {stats['total_requests']} "
          f"(throttled {stats['throttle_events']})")
    return raw


def load_raw_input(path: Path, upns: list[str]) -> dict[str, dict[str, Any]]:
    """Read a raw export: one account object or a list of them."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            payload = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to load input {path}: {e}")

    accounts = payload if isinstance(payload, list) else [payload]
    raw: dict[str, dict[str, Any]] = {}
    for index, account in enumerate(accounts):
        upn = account.get("user_principal_name") or ((account.get("user") or {}).get("userPrincipalName"))
        if not upn and len(accounts) == 1 and len(upns) == 1:
            upn = upns[0]
        if not upn:
            raise ConfigError(f"Input account #{index} has no user_principal_name")
        raw[upn] = account
    if upns:
        raw = {upn: data for upn, data in raw.items() if upn in upns}
    return raw


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

def print_result(result: AnalysisResult):
    profile = result.user_profile
    breach = result.breach
    print("\n" + "=" * 70)
    print(f" {result.user_principal_name}")
    print("=" * 70)
    if profile is not None:
        print(f"  User Score:         {profile.score} ({profile.risk_level})")
    print(f"  Sign-ins Analyzed:  {len(result.sign_ins)}")
    print(f"  Risky Sign-ins:     {len(result.surfaced_sign_ins)}")
    print(f"  Breach Probability: {breach.percentage}% ({breach.status})")
    if result.excluded_ids:
        print(f"  Excluded:           {', '.join(result.excluded_ids)}")

    for cat in breach.categories.values():
        print(f"    {cat.name:25s} {cat.score:3d}/{cat.max_score}")
    for m in breach.multipliers:
        print(f"    × {m['name']:23s} {m['factor']}")

    top = sorted(result.surfaced_sign_ins, key=lambda s: (-s.score, s.timestamp))[:10]
    if top:
        print("\n  Top sign-ins:")
        for s in top:
            print(f"    {s.timestamp:%Y-%m-%d %H:%M}  {s.score:3d} {s.risk_level:8s} "
                  f"{' '.join(s.applicable_ids())}")
    if profile is not None:
        hits = [o for o in profile.outcomes if o.contributes]
        if hits:
            print("\n  Account indicators:")
            for o in hits:
                print(f"    {o.id}  {o.points:+d}  {o.label}" + (f" ({o.detail})" if o.detail else ""))


def write_outputs(result: AnalysisResult, engine: InvestigationEngine, output_dir: Path,
                  run_id: str, formats: list[str]) -> list[Path]:
    created = []
    if "json" in formats:
        path = export_json(result, output_dir, run_id)
        created.append(path)
        print(f"  📄 JSON:  {path}")
    if "csv" in formats:
        for path in export_csv(result, output_dir, run_id):
            created.append(path)
            print(f"  📊 CSV:   {path}")
    if "rules" in formats:
        path = export_rules_payload(engine.registry, output_dir, engine.config.scoring, engine.config.breach)
        created.append(path)
        print(f"  🧮 Rules: {path}")
    return created


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_analyze(args: argparse.Namespace, config: EngineConfig) -> int:
    run_id = new_run_id()
    output_dir = config.output.output_dir

    if args.input:
        raw = load_raw_input(args.input, args.upns)
    else:
        if not args.upns:
            print("\n❌ Provide at least one user principal name, or --input.")
            return EXIT_ERROR
        if config.auth.mode == "certificate" and not config.auth.certificate:
            print("\n❌ No tenant credentials. Use --tenant-id/--client-id or --config.")
            return EXIT_ERROR
        if config.auth.mode == "delegated" and not config.auth.delegated:
            print("\n❌ Delegated auth needs --tenant-id and --client-id.")
            return EXIT_ERROR
        raw = asyncio.run(collect_accounts(config, args.upns))

    if not raw:
        print("\n  No result: no matching accounts in the input.")
        return EXIT_NO_DATA

    if args.save_raw and not args.input:
        for upn, data in raw.items():
            print(f"  🗄  Raw:   {export_raw(data, upn, output_dir, run_id)}")

    context = RunContext.from_config(config)
    try:
        engine = InvestigationEngine(config, context)
        accounts = [build_account_data(data, upn, config.collection) for upn, data in raw.items()]
        results = engine.analyze_many(accounts)
    finally:
        context.close()

    produced = 0
    for upn, outcome in results.items():
        if isinstance(outcome, NoDataError):
            print(f"\n  No result for {upn}: {outcome.reason}")
            continue
        produced += 1
        print_result(outcome)
        print()
        write_outputs(outcome, engine, output_dir, run_id, config.output.formats)

    return EXIT_OK if produced else EXIT_NO_DATA


def cmd_recompute(args: argparse.Namespace, config: EngineConfig) -> int:
    stored = load_result(args.result)
    engine = InvestigationEngine(config)
    baseline = engine.recompute(stored, stored.excluded_ids)
    updated = engine.recompute(stored, args.exclude)
    print(f"\n  Breach probability: {baseline.breach.percentage}% ({baseline.breach.status}) "
          f"-> {updated.breach.percentage}% ({updated.breach.status})")
    print_result(updated)
    print()
    write_outputs(updated, engine, config.output.output_dir, new_run_id(), ["json"])
    return EXIT_OK


def cmd_rules(args: argparse.Namespace, config: EngineConfig) -> int:
    engine = InvestigationEngine(config)
    print(f"\n  {'Id':<7s} {'Points':>6s}  {'Kind':<7s} {'Breach':<22s} Label")
    print(f"  {'─'*7} {'─'*6}  {'─'*7} {'─'*22} {'─'*40}")
    for rule in engine.registry.rules.values():
        breach = f"{rule.breach_category} +{rule.breach_weight}" if rule.breach_category else ""
        points = "var" if rule.is_variable else f"{rule.points:+d}"
        print(f"  {rule.id:<7s} {points:>6s}  {rule.category:<7s} {breach:<22s} {rule.label}")
        if rule.is_variable:
            print(f"  {'':<7s} {'':>6s}  scale: " + ", ".join(f"{k}={v}" for k, v in rule.scale))
    if args.export:
        path = export_rules_payload(engine.registry, config.output.output_dir,
                                    config.scoring, config.breach)
        print(f"\n  🧮 Rules: {path}")
    return EXIT_OK


COMMANDS = {
    "analyze": cmd_analyze,
    "recompute": cmd_recompute,
    "rules": cmd_rules,
}


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    if not args.command:
        print("Usage: python -m m365_compromise_engine {analyze|recompute|rules} [options]")
        return EXIT_ERROR

    configure_logging(args.verbose)
    print("=" * 70)
    print(f" M365 Compromise Investigation Engine v{__version__}")
    print(" Mode: READ-ONLY — No tenant modifications will be made")
    print("=" * 70)

    try:
        config = build_config(args)
        return COMMANDS[args.command](args, config)
    except ConfigError as e:
        print(f"\n❌ {e}")
        return EXIT_ERROR
    except AuthenticationError as e:
        print(f"\n❌ Authentication failed: {e}")
        return EXIT_ERROR
    except GraphAPIError as e:
        logger.exception("Graph collection failed")
        print(f"\n❌ {e}")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
