"""
Graph normalization — Turns raw Graph JSON (from the collectors or an offline
export) into SignInFact / UserFacts / AccountData.

Pure functions only; no network access. Malformed records are skipped with a
warning, missing optional fields become None / empty.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from ..config import CollectionConfig
from ..models import (
    AccountData,
    CaProtection,
    DeviceInfo,
    ForwardingConfig,
    Location,
    RiskSignal,
    SignInFact,
    UserFacts,
    parse_timestamp,
)

logger = logging.getLogger("m365_compromise_engine.collectors.normalize")

RISK_ORDER = ["none", "low", "medium", "high"]

PASSWORD_METHOD_TYPE = "#microsoft.graph.passwordAuthenticationMethod"

METHOD_CHANGE_ACTIVITIES = ("security info", "authentication method", "strongauthentication")
PASSWORD_RESET_ACTIVITIES = ("reset password", "reset user password", "change user password",
                             "change password")

FORWARD_ACTIONS = ("forwardTo", "redirectTo", "forwardAsAttachmentTo")
KEYWORD_CONDITIONS = ("subjectContains", "bodyContains", "bodyOrSubjectContains",
                      "senderContains")
ENFORCING_CONTROLS = {"mfa", "compliantdevice", "domainjoineddevice", "approvedapplication",
                      "compliantapplication"}


# ── Sign-ins ────────────────────────────────────────────────────────────────

def _risk_signal(record: dict) -> Optional[RiskSignal]:
    levels = [
        (record.get(key) or "").lower()
        for key in ("riskLevelDuringSignIn", "riskLevelAggregated")
        if record.get(key)
    ]
    if not levels:
        return None
    known = [lvl for lvl in levels if lvl in RISK_ORDER]
    level = max(known, key=RISK_ORDER.index) if known else levels[0]
    events = record.get("riskEventTypes_v2") or record.get("riskEventTypes") or []
    detail = ", ".join(events) if events else (record.get("riskDetail") or "")
    return RiskSignal(level=level, detail="" if detail == "none" else detail)


def _location(record: dict) -> Optional[Location]:
    loc = record.get("location") or {}
    coords = loc.get("geoCoordinates") or {}
    location = Location(
        city=loc.get("city") or "",
        state=loc.get("state") or "",
        country=loc.get("countryOrRegion") or "",
        latitude=coords.get("latitude"),
        longitude=coords.get("longitude"),
    )
    if not location.country and not location.has_coordinates:
        return None
    return location


def _device(record: dict) -> DeviceInfo:
    dev = record.get("deviceDetail") or {}
    return DeviceInfo(
        operating_system=dev.get("operatingSystem") or "",
        browser=dev.get("browser") or "",
        trust_type=dev.get("trustType") or "",
        is_compliant=bool(dev.get("isCompliant")),
        is_managed=bool(dev.get("isManaged")),
        device_id=dev.get("deviceId") or "",
    )


def _asn(value: Any) -> Optional[int]:
    try:
        asn = int(value)
    except (TypeError, ValueError):
        return None
    return asn if asn > 0 else None


def count_completed_factors(record: dict) -> int:
    """Number of authentication factors satisfied for a sign-in."""
    details = record.get("authenticationDetails")
    if details:
        methods = {
            d.get("authenticationMethod") or d.get("authenticationStepResultDetail") or str(i)
            for i, d in enumerate(details)
            if d.get("succeeded")
        }
        return len(methods)

    status = record.get("status") or {}
    if status.get("errorCode", 0):
        return 0
    requirement = (record.get("authenticationRequirement") or "").lower()
    return 2 if requirement == "multifactorauthentication" else 1


def normalize_sign_in(record: dict, user_principal_name: str = "") -> Optional[SignInFact]:
    """Build a SignInFact from a Graph signIn record, or None when unusable."""
    if not isinstance(record, dict) or not record.get("id"):
        logger.warning("Sign-in record without id skipped")
        return None
    timestamp = parse_timestamp(record.get("createdDateTime"))
    if timestamp is None:
        logger.warning(f"Sign-in {record['id']}: unparseable createdDateTime "
                       f"{record.get('createdDateTime')!r}, skipped")
        return None

    status = record.get("status") or {}
    return SignInFact(
        id=record["id"],
        user_principal_name=record.get("userPrincipalName") or user_principal_name,
        timestamp=timestamp,
        ip_address=record.get("ipAddress") or "",
        location=_location(record),
        device=_device(record),
        client_app=record.get("clientAppUsed") or "",
        app_display_name=record.get("appDisplayName") or "",
        conditional_access_status=record.get("conditionalAccessStatus") or "",
        auth_factors_completed=count_completed_factors(record),
        correlation_id=record.get("correlationId") or "",
        risk=_risk_signal(record),
        failure_code=status.get("errorCode") or None,
        failure_reason=status.get("failureReason") or "",
        asn=_asn(record.get("autonomousSystemNumber")),
        reputation_score=record.get("reputationScore"),
    )


def normalize_sign_ins(records: Iterable[dict], user_principal_name: str = "") -> tuple[list[SignInFact], int]:
    """Returns (facts, skipped count)."""
    facts = []
    skipped = 0
    for record in records:
        fact = normalize_sign_in(record, user_principal_name)
        if fact is None:
            skipped += 1
        else:
            facts.append(fact)
    return facts, skipped


# ── Conditional Access ──────────────────────────────────────────────────────

def _policy_targets(policy: dict, user_id: str, group_ids: set, role_ids: set) -> bool:
    users = ((policy.get("conditions") or {}).get("users") or {})

    def _list(key):
        return set(users.get(key) or [])

    if user_id in _list("excludeUsers") or group_ids & _list("excludeGroups") \
            or role_ids & _list("excludeRoles"):
        return False
    include_users = _list("includeUsers")
    return (
        "All" in include_users
        or user_id in include_users
        or bool(group_ids & _list("includeGroups"))
        or bool(role_ids & _list("includeRoles"))
    )


def derive_ca_protection(
    policies: Iterable[dict],
    user_id: str,
    group_ids: Iterable[str] = (),
    role_template_ids: Iterable[str] = (),
) -> CaProtection:
    """Summarise enabled CA policies that target the user."""
    groups, roles = set(group_ids), set(role_template_ids)
    protection = CaProtection()

    for policy in policies:
        if (policy.get("state") or "").lower() != "enabled":
            continue
        if not _policy_targets(policy, user_id, groups, roles):
            continue

        grant = policy.get("grantControls") or {}
        controls = {c.lower() for c in (grant.get("builtInControls") or [])}
        if "block" in controls:
            protection.block_policy = True
            continue

        enforcing = bool(controls & ENFORCING_CONTROLS) or bool(grant.get("authenticationStrength"))
        if not enforcing:
            continue
        apps = ((policy.get("conditions") or {}).get("applications") or {})
        if "All" in (apps.get("includeApplications") or []):
            protection.full_coverage = True
        else:
            protection.partial_coverage = True

    return protection


# ── Mailbox ─────────────────────────────────────────────────────────────────

def _recipients(actions: dict) -> list[str]:
    addresses = []
    for key in FORWARD_ACTIONS:
        for recipient in actions.get(key) or []:
            address = ((recipient or {}).get("emailAddress") or {}).get("address")
            if address:
                addresses.append(address)
    return addresses


def classify_message_rules(
    rules: Iterable[dict],
    keywords: Iterable[str],
    home_domain: str = "",
) -> tuple[ForwardingConfig, int]:
    """Returns (forwarding configuration, number of suspicious rules)."""
    forwarding = ForwardingConfig()
    suspicious = 0
    keywords = [k.lower() for k in keywords]
    home_domain = home_domain.lower()

    for rule in rules:
        if rule.get("isEnabled") is False:
            continue
        actions = rule.get("actions") or {}
        conditions = rule.get("conditions") or {}

        targets = _recipients(actions)
        if targets:
            external = [t for t in targets if home_domain and not t.lower().endswith("@" + home_domain)]
            if not forwarding.enabled or (external and not forwarding.external):
                forwarding = ForwardingConfig(
                    enabled=True,
                    target=(external or targets)[0],
                    external=bool(external),
                )

        hides_mail = bool(actions.get("delete") or actions.get("permanentDelete")) or (
            bool(actions.get("moveToFolder")) and bool(actions.get("markAsRead"))
        )
        terms = [
            term.lower()
            for key in KEYWORD_CONDITIONS
            for term in (conditions.get(key) or [])
        ]
        keyword_hit = any(k in term for term in terms for k in keywords)
        if hides_mail or keyword_hit:
            suspicious += 1

    return forwarding, suspicious


# ── Account ─────────────────────────────────────────────────────────────────

def _recent_activity(
    audits: Iterable[dict],
    activities: tuple[str, ...],
    days: int,
    now: datetime,
) -> bool:
    cutoff = now - timedelta(days=days)
    for audit in audits:
        name = (audit.get("activityDisplayName") or "").lower()
        if not any(a in name for a in activities):
            continue
        if (audit.get("result") or "success").lower() != "success":
            continue
        when = parse_timestamp(audit.get("activityDateTime"))
        if when is not None and when >= cutoff:
            return True
    return False


def normalize_user_facts(
    raw: dict[str, Any],
    user_principal_name: str,
    config: Optional[CollectionConfig] = None,
    now: Optional[datetime] = None,
) -> Optional[UserFacts]:
    """Build UserFacts from the account collector's data, or None if the account is missing."""
    user = raw.get("user")
    if not user:
        return None
    config = config or CollectionConfig()
    now = now or datetime.now(timezone.utc)
    upn = user.get("userPrincipalName") or user_principal_name

    methods = [
        m for m in raw.get("auth_methods") or []
        if (m.get("@odata.type") or "") != PASSWORD_METHOD_TYPE
    ]
    audits = raw.get("directory_audits") or []
    roles = raw.get("directory_roles") or []
    home_domain = upn.split("@", 1)[1] if "@" in upn else ""
    forwarding, suspicious = classify_message_rules(
        raw.get("message_rules") or [], config.suspicious_rule_keywords, home_domain
    )

    return UserFacts(
        user_principal_name=upn,
        display_name=user.get("displayName") or "",
        auth_method_count=len(methods),
        auth_method_changed_recently=_recent_activity(
            audits, METHOD_CHANGE_ACTIVITIES, config.method_change_days, now
        ),
        delegate_count=len(raw.get("delegates") or []),
        forwarding=forwarding,
        suspicious_rule_count=suspicious,
        third_party_consent_count=len({
            g.get("clientId") for g in raw.get("oauth_grants") or [] if g.get("clientId")
        }),
        admin_role_count=len(roles),
        admin_roles=sorted(r.get("displayName") or r.get("roleTemplateId") or "" for r in roles),
        created=parse_timestamp(user.get("createdDateTime")),
        password_reset_recently=_recent_activity(
            audits, PASSWORD_RESET_ACTIVITIES, config.password_reset_days, now
        ),
        ca_protection=derive_ca_protection(
            raw.get("ca_policies") or [],
            user.get("id") or "",
            raw.get("group_ids") or [],
            [r.get("roleTemplateId") for r in roles if r.get("roleTemplateId")],
        ),
    )


def build_account_data(
    raw: dict[str, Any],
    user_principal_name: str,
    config: Optional[CollectionConfig] = None,
    now: Optional[datetime] = None,
) -> AccountData:
    """Combine raw sign-in and account data into the engine's input."""
    sign_ins, skipped = normalize_sign_ins(raw.get("sign_ins") or [], user_principal_name)
    if skipped:
        logger.warning(f"{user_principal_name}: {skipped} malformed sign-in records skipped")
    return AccountData(
        user_principal_name=user_principal_name,
        sign_ins=sign_ins,
        user_facts=normalize_user_facts(raw, user_principal_name, config, now),
        named_locations=list(raw.get("named_locations") or []),
        skipped_records=skipped,
    )
