"""
Base collector class — Abstract interface for the Graph data collectors.
Collectors gather raw Graph JSON for one account; normalize.py turns it into facts.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..graph.client import GraphClient, GraphAPIError
from ..config import CollectionConfig

logger = logging.getLogger("m365_compromise_engine.collectors")


class CollectorResult:
    """Raw data plus collection metadata from one collector."""

    def __init__(self, collector_name: str, user_principal_name: str = ""):
        self.collector_name = collector_name
        self.user_principal_name = user_principal_name
        self.data: dict[str, Any] = {}
        self.metadata: dict[str, Any] = {
            "collector": collector_name,
            "user_principal_name": user_principal_name,
            "started_at": None,
            "completed_at": None,
            "duration_seconds": 0,
            "items_collected": 0,
            "errors": [],
            "warnings": [],
            "endpoints_queried": 0,
            "skipped_sections": [],
        }

    def add_data(self, key: str, value: Any):
        self.data[key] = value
        if isinstance(value, list):
            self.metadata["items_collected"] += len(value)
        elif value is not None:
            self.metadata["items_collected"] += 1

    def add_error(self, error: str):
        self.metadata["errors"].append(error)
        logger.error(f"[{self.collector_name}] {error}")

    def add_warning(self, warning: str):
        self.metadata["warnings"].append(warning)
        logger.warning(f"[{self.collector_name}] {warning}")

    def add_skipped(self, section: str, reason: str):
        self.metadata["skipped_sections"].append({"section": section, "reason": reason})
        logger.info(f"[{self.collector_name}] Skipped {section}: {reason}")

    @property
    def failed(self) -> bool:
        return bool(self.metadata["errors"])

    def to_dict(self) -> dict:
        return {
            "data": self.data,
            "metadata": self.metadata,
        }


class BaseCollector(ABC):
    """
    Abstract base class for the per-account collectors.

    Subclasses implement collect() for one user principal name.
    The base class provides timing, metadata and an error-handling wrapper
    so a failing endpoint is recorded instead of aborting the run.
    """

    name: str = "base"
    description: str = "Base collector"

    def __init__(self, graph: GraphClient, config: CollectionConfig, user_principal_name: str):
        self.graph = graph
        self.config = config
        self.user_principal_name = user_principal_name

    async def execute(self) -> CollectorResult:
        result = CollectorResult(self.name, self.user_principal_name)
        result.metadata["started_at"] = time.time()
        logger.info(f"[{self.name}] Collecting for {self.user_principal_name}...")

        try:
            await self.collect(result)
        except Exception as e:
            result.add_error(f"Collection failed: {type(e).__name__}: {e}")
            logger.exception(f"[{self.name}] Collection failed")

        result.metadata["completed_at"] = time.time()
        result.metadata["duration_seconds"] = round(
            result.metadata["completed_at"] - result.metadata["started_at"], 2
        )
        logger.info(
            f"[{self.name}] Completed in {result.metadata['duration_seconds']}s — "
            f"{result.metadata['items_collected']} items"
        )
        return result

    @abstractmethod
    async def collect(self, result: CollectorResult):
        """Add raw data to result via result.add_data(key, value)."""
        raise NotImplementedError

    async def safe_get(self, endpoint: str, result: CollectorResult, **kwargs) -> dict:
        """Execute a GET and record errors without crashing."""
        try:
            data = await self.graph.get(endpoint, **kwargs)
            result.metadata["endpoints_queried"] += 1
            if data.get("_forbidden"):
                msg = data.get("_error_message", "Forbidden")
                result.add_warning(f"Permission denied: {endpoint} — {msg}")
                result.metadata.setdefault("permission_gaps", []).append(endpoint)
            return data
        except (GraphAPIError, httpx.HTTPError) as e:
            result.add_error(f"Failed to query {endpoint}: {e}")
            return {"value": []}

    async def safe_get_all(self, endpoint: str, result: CollectorResult, **kwargs) -> list:
        """Get all pages and record errors."""
        try:
            data = await self.graph.get_all_pages(endpoint, **kwargs)
            result.metadata["endpoints_queried"] += 1
            return data
        except GraphAPIError as e:
            if e.status_code == 403:
                result.add_warning(f"Permission denied: {endpoint} — {e}")
                result.metadata.setdefault("permission_gaps", []).append(endpoint)
            else:
                result.add_error(f"Failed to paginate {endpoint}: {e}")
            return []
        except httpx.HTTPError as e:
            result.add_error(f"Failed to paginate {endpoint}: {e}")
            return []
