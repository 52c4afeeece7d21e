"""
Sign-in Log Collector
Pulls interactive sign-ins for one account inside the lookback window.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from .base import BaseCollector, CollectorResult

logger = logging.getLogger("m365_compromise_engine.collectors.signins")


def odata_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class SignInCollector(BaseCollector):
    name = "signins"
    description = "Interactive sign-in events for one account (beta endpoint)"

    async def collect(self, result: CollectorResult):
        since = datetime.now(timezone.utc) - timedelta(days=self.config.lookback_days)
        params = {
            "$filter": (
                f"userPrincipalName eq {odata_quote(self.user_principal_name)} "
                f"and createdDateTime ge {since.strftime('%Y-%m-%dT%H:%M:%SZ')}"
            ),
            "$orderby": "createdDateTime asc",
        }
        # beta carries autonomousSystemNumber and authenticationDetails
        sign_ins = await self.safe_get_all("auditLogs/signIns", result, params=params, beta=True)
        result.add_data("sign_ins", sign_ins)
        logger.info(
            f"[signins] {len(sign_ins)} sign-ins for {self.user_principal_name} "
            f"in the last {self.config.lookback_days} days"
        )
