"""Filter descriptor tables for the four listable resources.

Field names on the right-hand side are store field names (see
``usermgmt.db.store``), not API names.
"""

from datetime import datetime, timedelta
from typing import Optional

from usermgmt.core.config import settings
from usermgmt.core.filters import (
    AllOf,
    AnyOf,
    FieldFilter,
    Kind,
    Node,
    Op,
    Predicate,
    ResourceSpec,
    parse_bool,
    parse_int,
)
from usermgmt.core.query_params import DESC, SortSpec

LOG_LEVELS = ("error", "warn", "info", "debug")
HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")
CHANNELS = ("email", "push", "sms", "in_app")
STATUSES = ("pending", "sent", "delivered", "failed", "read")
PRIORITIES = ("low", "normal", "high", "urgent")


# ── Users ───────────────────────────────────────────────────────────

def _user_status(value: str, now: datetime) -> Optional[Node]:
    status = value.strip().lower()
    if status == "active":
        return AllOf((
            Predicate("is_active", Op.EQ, True),
            AnyOf((
                Predicate("locked_until", Op.IS_NULL),
                Predicate("locked_until", Op.LTE, now),
            )),
        ))
    if status == "inactive":
        return Predicate("is_active", Op.EQ, False)
    if status == "locked":
        return Predicate("locked_until", Op.GT, now)
    return None


def _email_domain(value: str, now: datetime) -> Optional[Node]:
    domain = value.strip().lstrip("@")
    if not domain:
        return None
    return Predicate("email", Op.IENDSWITH, f"@{domain}")


def _inactive_days(value: str, now: datetime) -> Optional[Node]:
    days = parse_int(value)
    if days is None or days < 1:
        return None
    cutoff = now - timedelta(days=days)
    return AnyOf((
        Predicate("last_login_at", Op.LT, cutoff),
        AllOf((
            Predicate("last_login_at", Op.IS_NULL),
            Predicate("created_at", Op.LT, cutoff),
        )),
    ))


USERS = ResourceSpec(
    name="users",
    search_fields=("full_name", "email"),
    filters=(
        FieldFilter("role", "role_name", array_key="roles"),
        FieldFilter("status", kind=Kind.DERIVED, derive=_user_status),
        FieldFilter("isActive", "is_active", Kind.BOOLEAN),
        FieldFilter("emailVerified", "email_verified", Kind.BOOLEAN),
        FieldFilter("emailDomain", kind=Kind.DERIVED, derive=_email_domain),
        FieldFilter("dateFrom", "created_at", Kind.DATE_RANGE, to_key="dateTo"),
        FieldFilter("lastLoginFrom", "last_login_at", Kind.DATE_RANGE, to_key="lastLoginTo"),
        FieldFilter("neverLoggedIn", "last_login_at", Kind.PRESENCE, negate=True),
        FieldFilter("inactiveDays", kind=Kind.DERIVED, derive=_inactive_days),
        FieldFilter("hasProfile", "profile_id", Kind.PRESENCE),
    ),
    sort_fields={
        "name": "full_name",
        "email": "email",
        "role": "role_name",
        "createdAt": "created_at",
        "updatedAt": "updated_at",
        "lastLogin": "last_login_at",
    },
    default_sort=SortSpec("createdAt", DESC),
)


# ── Logs ────────────────────────────────────────────────────────────

def _slow_requests(value: str, now: datetime) -> Optional[Node]:
    threshold = parse_int(value)
    if threshold is None:
        if parse_bool(value) is not True:
            return None
        threshold = settings.SLOW_REQUEST_MS
    return Predicate("duration_ms", Op.GTE, threshold)


def _ip_pattern(value: str, now: datetime) -> Optional[Node]:
    pattern = value.strip()
    if "*" in pattern:
        prefix = pattern.split("*", 1)[0]
        if not prefix:
            return None
        return Predicate("ip", Op.ISTARTSWITH, prefix)
    return Predicate("ip", Op.ICONTAINS, pattern)


LOGS = ResourceSpec(
    name="logs",
    search_fields=("action", "resource", "path", "error"),
    filters=(
        FieldFilter("userId", "user_id", Kind.INTEGER),
        FieldFilter("level", "level", choices=LOG_LEVELS, array_key="levels"),
        FieldFilter("action", "action", array_key="actions"),
        FieldFilter("resource", "resource"),
        FieldFilter("method", "method", choices=HTTP_METHODS, array_key="methods"),
        FieldFilter("statusCode", "status_code", Kind.INTEGER),
        FieldFilter("statusCodeFrom", "status_code", Kind.NUMBER_RANGE, to_key="statusCodeTo"),
        FieldFilter("durationFrom", "duration_ms", Kind.NUMBER_RANGE, to_key="durationTo"),
        FieldFilter("ip", "ip"),
        FieldFilter("ipPattern", kind=Kind.DERIVED, derive=_ip_pattern),
        FieldFilter("hasError", "error", Kind.PRESENCE),
        FieldFilter("slowRequests", kind=Kind.DERIVED, derive=_slow_requests),
        FieldFilter("dateFrom", "timestamp", Kind.DATE_RANGE, to_key="dateTo"),
    ),
    sort_fields={
        "timestamp": "timestamp",
        "action": "action",
        "resource": "resource",
        "level": "level",
        "statusCode": "status_code",
        "duration": "duration_ms",
    },
    default_sort=SortSpec("timestamp", DESC),
)


# ── Notifications ───────────────────────────────────────────────────

def _has_failed(value: str, now: datetime) -> Optional[Node]:
    flag = parse_bool(value)
    if flag is None:
        return None
    return Predicate("status", Op.EQ if flag else Op.NE, "failed")


NOTIFICATIONS = ResourceSpec(
    name="notifications",
    search_fields=("title", "message"),
    filters=(
        FieldFilter("userId", "user_id", Kind.INTEGER),
        FieldFilter("typeId", "type_id", Kind.INTEGER),
        FieldFilter("channel", "channel", choices=CHANNELS, array_key="channels"),
        FieldFilter("status", "status", choices=STATUSES, array_key="statuses"),
        FieldFilter("priority", "priority", choices=PRIORITIES, array_key="priorities"),
        FieldFilter("read", "read_at", Kind.PRESENCE),
        FieldFilter("dateFrom", "created_at", Kind.DATE_RANGE, to_key="dateTo"),
        FieldFilter("sentFrom", "sent_at", Kind.DATE_RANGE, to_key="sentTo"),
        FieldFilter("scheduledFrom", "scheduled_for", Kind.DATE_RANGE, to_key="scheduledTo"),
        FieldFilter("retryCount", "retry_count", Kind.INTEGER),
        FieldFilter("hasFailed", kind=Kind.DERIVED, derive=_has_failed),
    ),
    sort_fields={
        "createdAt": "created_at",
        "updatedAt": "updated_at",
        "sentAt": "sent_at",
        "scheduledFor": "scheduled_for",
        "priority": "priority",
        "status": "status",
        "title": "title",
    },
    default_sort=SortSpec("createdAt", DESC),
)


# ── Profiles ────────────────────────────────────────────────────────

PROFILE_COMPLETENESS_FIELDS = ("avatar_url", "bio", "phone")


def _is_complete(value: str, now: datetime) -> Optional[Node]:
    flag = parse_bool(value)
    if flag is None:
        return None
    if flag:
        return AllOf(tuple(Predicate(f, Op.NOT_NULL) for f in PROFILE_COMPLETENESS_FIELDS))
    return AnyOf(tuple(Predicate(f, Op.IS_NULL) for f in PROFILE_COMPLETENESS_FIELDS))


PROFILES = ResourceSpec(
    name="profiles",
    search_fields=("first_name", "last_name", "bio", "company", "job_title", "location", "user_full_name"),
    filters=(
        FieldFilter("userId", "user_id", Kind.INTEGER),
        FieldFilter("role", "role_name", array_key="roles"),
        FieldFilter("isPublic", "is_public", Kind.BOOLEAN),
        FieldFilter("showEmail", "show_email", Kind.BOOLEAN),
        FieldFilter("showPhone", "show_phone", Kind.BOOLEAN),
        FieldFilter("location", "location", Kind.ICONTAINS, array_key="locations"),
        FieldFilter("company", "company", Kind.ICONTAINS, array_key="companies"),
        FieldFilter("jobTitle", "job_title", Kind.ICONTAINS),
        FieldFilter("ageFrom", "date_of_birth", Kind.AGE_RANGE, to_key="ageTo"),
        FieldFilter("hasAvatar", "avatar_url", Kind.PRESENCE),
        FieldFilter("hasBio", "bio", Kind.PRESENCE),
        FieldFilter("hasPhone", "phone", Kind.PRESENCE),
        FieldFilter("hasWebsite", "website", Kind.PRESENCE),
        FieldFilter("isComplete", kind=Kind.DERIVED, derive=_is_complete),
        FieldFilter("dateFrom", "created_at", Kind.DATE_RANGE, to_key="dateTo"),
        FieldFilter("updatedFrom", "updated_at", Kind.DATE_RANGE, to_key="updatedTo"),
    ),
    sort_fields={
        "createdAt": "created_at",
        "updatedAt": "updated_at",
        "firstName": "first_name",
        "lastName": "last_name",
        "company": "company",
        "location": "location",
    },
    default_sort=SortSpec("createdAt", DESC),
)


RESOURCES = {spec.name: spec for spec in (USERS, LOGS, NOTIFICATIONS, PROFILES)}

