"""Reporting package — JSON, CSV and indicator-rule payload output."""

from .json_export import export_json, export_raw, export_rules_payload, load_result, rules_payload
from .csv_export import export_csv

__all__ = [
    "export_json",
    "export_raw",
    "export_rules_payload",
    "load_result",
    "rules_payload",
    "export_csv",
]
