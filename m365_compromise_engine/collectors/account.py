"""
Account Configuration Collector
Enumerates for one user: profile, authentication methods, directory audit
events, inbox rules, consents, directory roles, group
memberships, Conditional Access policies and named locations.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from .base import BaseCollector, CollectorResult
from .signins import odata_quote

logger = logging.getLogger("m365_compromise_engine.collectors.account")

USER_SELECT = "id,displayName,userPrincipalName,createdDateTime,accountEnabled,mail"


class AccountCollector(BaseCollector):
    name = "account"
    description = "Account configuration: methods, mailbox rules, consents, roles, CA"

    async def collect(self, result: CollectorResult):
        user = await self.safe_get(
            f"users/{self.user_principal_name}",
            result,
            params={"$select": USER_SELECT},
        )
        if user.get("_not_found") or not user.get("id"):
            result.add_data("user", None)
            result.add_skipped("account", f"{self.user_principal_name} not found")
            return
        result.add_data("user", {k: user.get(k) for k in USER_SELECT.split(",")})
        user_id = user["id"]

        gather_results = await asyncio.gather(
            self._collect_auth_methods(result, user_id),
            self._collect_directory_audits(result, user_id),
            self._collect_mailbox(result, user_id),
            self._collect_consents(result, user_id),
            self._collect_memberships(result, user_id),
            self._collect_conditional_access(result),
            return_exceptions=True,
        )
        task_names = [
            "auth_methods", "directory_audits", "mailbox",
            "consents", "memberships", "conditional_access",
        ]
        for name, res in zip(task_names, gather_results):
            if isinstance(res, Exception):
                result.add_warning(f"Sub-collection {name} failed: {type(res).__name__}: {res}")

    # ── Authentication ──────────────────────────────────────────────────────

    async def _collect_auth_methods(self, result: CollectorResult, user_id: str):
        methods = await self.safe_get_all(
            f"users/{user_id}/authentication/methods", result, skip_top=True
        )
        result.add_data("auth_methods", [
            {"id": m.get("id"), "@odata.type": m.get("@odata.type", "")}
            for m in methods
        ])

    async def _collect_directory_audits(self, result: CollectorResult, user_id: str):
        """Audit events targeting the user: security-info changes and password resets."""
        window = max(self.config.password_reset_days, self.config.method_change_days)
        since = datetime.now(timezone.utc) - timedelta(days=window)
        params = {
            "$filter": (
                f"targetResources/any(t:t/id eq {odata_quote(user_id)}) "
                f"and activityDateTime ge {since.strftime('%Y-%m-%dT%H:%M:%SZ')}"
            ),
        }
        audits = await self.safe_get_all("auditLogs/directoryAudits", result, params=params)
        result.add_data("directory_audits", [
            {
                "activityDisplayName": a.get("activityDisplayName", ""),
                "activityDateTime": a.get("activityDateTime"),
                "category": a.get("category", ""),
                "result": a.get("result", ""),
            }
            for a in audits
        ])

    # ── Mailbox ─────────────────────────────────────────────────────────────

    async def _collect_mailbox(self, result: CollectorResult, user_id: str):
        rules = await self.safe_get_all(
            f"users/{user_id}/mailFolders/inbox/messageRules", result, skip_top=True
        )
        result.add_data("message_rules", rules)

        # Full-access delegates are only exposed through Exchange Online PowerShell
        result.add_skipped("delegates", "mailbox permissions are not available through Graph")

    # ── Consents ────────────────────────────────────────────────────────────

    async def _collect_consents(self, result: CollectorResult, user_id: str):
        grants = await self.safe_get_all(
            f"users/{user_id}/oauth2PermissionGrants", result, skip_top=True
        )
        result.add_data("oauth_grants", [
            {
                "clientId": g.get("clientId"),
                "consentType": g.get("consentType"),
                "scope": g.get("scope", ""),
            }
            for g in grants
        ])

    # ── Roles & groups ──────────────────────────────────────────────────────

    async def _collect_memberships(self, result: CollectorResult, user_id: str):
        memberships = await self.safe_get_all(
            f"users/{user_id}/transitiveMemberOf",
            result,
            params={"$select": "id,displayName,roleTemplateId"},
        )
        roles = []
        group_ids = []
        for m in memberships:
            odata_type = m.get("@odata.type", "")
            if odata_type.endswith("directoryRole"):
                roles.append({
                    "id": m.get("id"),
                    "displayName": m.get("displayName", ""),
                    "roleTemplateId": m.get("roleTemplateId", ""),
                })
            elif odata_type.endswith("group"):
                group_ids.append(m.get("id"))
        result.add_data("directory_roles", roles)
        result.add_data("group_ids", group_ids)

    # ── Conditional Access ──────────────────────────────────────────────────

    async def _collect_conditional_access(self, result: CollectorResult):
        policies = await self.safe_get_all("identity/conditionalAccess/policies", result)
        result.add_data("ca_policies", policies)
        locations = await self.safe_get_all("identity/conditionalAccess/namedLocations", result)
        result.add_data("named_locations", locations)
