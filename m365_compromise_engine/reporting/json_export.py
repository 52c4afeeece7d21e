"""
JSON exporter — Writes the full AnalysisResult, the raw collection used to
produce it, and the scoring parameters needed by the browser-side
false-positive recomputation.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .. import __version__
from ..config import BreachConfig, ConfigError, ScoringConfig
from ..scoring.models import AnalysisResult
from ..scoring.rules import RuleRegistry

ENGINE_NAME = "M365 Compromise Investigation Engine"


def _safe_name(upn: str) -> str:
    return "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in upn)


def _write(payload: dict, filepath: Path) -> Path:
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, default=str, ensure_ascii=False)
    return filepath


def _metadata(run_id: str) -> dict:
    return {
        "engine": ENGINE_NAME,
        "version": __version__,
        "run_id": run_id,
        "generated_utc": datetime.now(timezone.utc).isoformat(),
        "mode": "READ-ONLY",
    }


def export_json(result: AnalysisResult, output_dir: Path, run_id: str) -> Path:
    """
    Write one account's AnalysisResult to JSON.

    Every indicator outcome is kept, excluded ones included, so the file can
    be reloaded with load_result() and recomputed without re-collecting.
    """
    payload = {
        "metadata": _metadata(run_id),
        "result": result.to_dict(),
    }
    filename = f"compromise_{_safe_name(result.user_principal_name)}_{run_id}.json"
    return _write(payload, output_dir / filename)


def load_result(path: Path) -> AnalysisResult:
    """Reload an AnalysisResult written by export_json()."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            payload = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to load result {path}: {e}")
    return AnalysisResult.from_dict(payload.get("result", payload))


def export_raw(raw: dict[str, Any], user_principal_name: str, output_dir: Path, run_id: str) -> Path:
    """Write the raw Graph data for one account; usable later as `analyze --input`."""
    payload = {"metadata": _metadata(run_id), "user_principal_name": user_principal_name, **raw}
    return _write(payload, output_dir / f"raw_{_safe_name(user_principal_name)}_{run_id}.json")


def rules_payload(
    registry: RuleRegistry,
    scoring: Optional[ScoringConfig] = None,
    breach: Optional[BreachConfig] = None,
) -> dict:
    """Scoring parameters an external consumer needs to reproduce recomputation."""
    scoring = scoring or ScoringConfig()
    breach = breach or BreachConfig()
    return {
        "indicators": registry.to_dict(),
        "classification": {
            "sign_in": {
                "thresholds": [list(t) for t in scoring.signin_thresholds],
                "default": scoring.signin_default_level,
            },
            "user": {
                "thresholds": [list(t) for t in scoring.user_thresholds],
                "default": scoring.user_default_level,
            },
            "score_floor": 0,
            "display_threshold": scoring.display_threshold,
        },
        "breach_probability": {
            "caps": dict(breach.caps),
            "multipliers": {
                "credential_compromise": breach.credential_multiplier,
                "privileged_account": breach.privileged_multiplier,
                "multi_category": breach.breadth_multiplier,
            },
            "multi_category_min": breach.breadth_min_categories,
            "status_tiers": [list(t) for t in breach.status_tiers],
            "default_status": breach.default_status,
            "temporal": {
                "window_minutes": breach.temporal_window_minutes,
                "min_events": breach.temporal_min_events,
                "min_score": breach.temporal_min_score,
                "weight": breach.temporal_weight,
            },
            "rounding": "half_up",
        },
    }


def export_rules_payload(
    registry: RuleRegistry,
    output_dir: Path,
    scoring: Optional[ScoringConfig] = None,
    breach: Optional[BreachConfig] = None,
) -> Path:
    return _write(rules_payload(registry, scoring, breach), output_dir / "indicator_rules.json")
