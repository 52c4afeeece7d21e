"""
CSV exporter — Flat views of an AnalysisResult for spreadsheet triage.
"""

from __future__ import annotations

import csv
from pathlib import Path

from ..scoring.models import AnalysisResult
from .json_export import _safe_name

SIGNIN_FIELDS = [
    "sign_in_id", "timestamp", "ip_address", "city", "country", "client_app",
    "application", "raw_score", "score", "risk_level", "indicators",
    "ip_changed", "country_changed", "device_changed", "surfaced",
]

INDICATOR_FIELDS = [
    "subject", "timestamp", "indicator_id", "label", "category",
    "points", "applicable", "excluded", "detail",
]


def export_csv(result: AnalysisResult, output_dir: Path, run_id: str) -> list[Path]:
    """
    Write sign-in, indicator and breach CSVs for one account.

    Returns:
        List of created CSV file paths.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    stem = f"{_safe_name(result.user_principal_name)}_{run_id}"
    created = []
    surfaced = {s.sign_in_id for s in result.surfaced_sign_ins}

    # --- Sign-ins ---
    signins_path = output_dir / f"signins_{stem}.csv"
    with open(signins_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=SIGNIN_FIELDS)
        writer.writeheader()
        for s in result.sign_ins:
            record = s.to_dict()["sign_in"]
            location = record.get("location") or {}
            writer.writerow({
                "sign_in_id": s.sign_in_id,
                "timestamp": s.timestamp.isoformat(),
                "ip_address": record.get("ip_address", ""),
                "city": location.get("city", ""),
                "country": location.get("country", ""),
                "client_app": record.get("client_app", ""),
                "application": record.get("app_display_name", ""),
                "raw_score": s.raw_score,
                "score": s.score,
                "risk_level": s.risk_level,
                "indicators": " ".join(s.applicable_ids()),
                "ip_changed": s.session_flags.ip_changed,
                "country_changed": s.session_flags.country_changed,
                "device_changed": s.session_flags.device_changed,
                "surfaced": s.sign_in_id in surfaced,
            })
    created.append(signins_path)

    # --- Indicator breakdown ---
    indicators_path = output_dir / f"indicators_{stem}.csv"
    with open(indicators_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=INDICATOR_FIELDS)
        writer.writeheader()
        rows = [(s.sign_in_id, s.timestamp.isoformat(), s.outcomes) for s in result.sign_ins]
        if result.user_profile is not None:
            rows.append(("user", "", result.user_profile.outcomes))
        for subject, timestamp, outcomes in rows:
            for o in outcomes:
                writer.writerow({
                    "subject": subject,
                    "timestamp": timestamp,
                    "indicator_id": o.id,
                    "label": o.label,
                    "category": o.category,
                    "points": o.points,
                    "applicable": o.applicable,
                    "excluded": o.excluded,
                    "detail": o.detail or "",
                })
    created.append(indicators_path)

    # --- Breach summary ---
    breach_path = output_dir / f"breach_{stem}.csv"
    breach = result.breach
    with open(breach_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.writer(fh)
        writer.writerow(["category", "score", "max", "raw_score", "contributors"])
        for cat in breach.categories.values():
            writer.writerow([
                cat.name, cat.score, cat.max_score, cat.raw_score,
                "; ".join(f"{k}x{v}" for k, v in cat.contributors.items()),
            ])
        writer.writerow([])
        writer.writerow(["base_percentage", breach.base_percentage])
        writer.writerow(["combined_multiplier", breach.combined_multiplier])
        writer.writerow(["percentage", breach.percentage])
        writer.writerow(["status", breach.status])
        writer.writerow(["excluded_indicators", " ".join(result.excluded_ids)])
    created.append(breach_path)

    return created
