"""Profile service — one profile per user, privacy-aware reads."""

import json
import logging
from typing import Any, Optional, Sequence

from sqlalchemy.orm import Session

from usermgmt.core.exceptions import ResourceNotFoundError, ValidationError
from usermgmt.core.filters import Node, Op, Predicate, compile_filters
from usermgmt.core.guard import Principal
from usermgmt.core.pagination import assemble
from usermgmt.core.privacy import apply_privacy, visibility_scope
from usermgmt.core.query_params import NormalizedQuery
from usermgmt.core.resources import PROFILE_COMPLETENESS_FIELDS, PROFILES
from usermgmt.db.store import SqlStore, profile_store
from usermgmt.models.profile import UserProfile
from usermgmt.models.user import User

logger = logging.getLogger("user_management.profiles")

JSON_FIELDS = {
    "address": "address_json",
    "preferences": "preferences_json",
    "social_links": "social_links_json",
}

PLAIN_FIELDS = (
    "first_name", "last_name", "bio", "avatar_url", "phone", "date_of_birth",
    "website", "company", "job_title", "location",
    "is_public", "show_email", "show_phone",
)

# NOT NULL columns; a null in the request leaves the stored value alone
FLAG_FIELDS = frozenset({"is_public", "show_email", "show_phone"})


def _load_json(raw: Optional[str]) -> Optional[Any]:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def serialize_profile(profile: UserProfile) -> dict:
    user = profile.user
    data = {
        "id": profile.id,
        "user_id": profile.user_id,
        "email": user.email if user else None,
        "full_name": user.full_name if user else None,
        "role": user.role.name if user and user.role else None,
        "created_at": profile.created_at,
        "updated_at": profile.updated_at,
    }
    for name in PLAIN_FIELDS:
        data[name] = getattr(profile, name)
    for name, column in JSON_FIELDS.items():
        data[name] = _load_json(getattr(profile, column))
    data["is_complete"] = all(getattr(profile, f) for f in PROFILE_COMPLETENESS_FIELDS)
    return data


class ProfileService:
    """Reads go through :mod:`usermgmt.core.privacy`; writes are upserts."""

    def __init__(self, db: Session):
        self.db = db
        self.store: SqlStore = profile_store(db)

    def list_page(
        self,
        query: NormalizedQuery,
        caller: Principal,
        sees_everything: bool,
        scope: Sequence[Node] = (),
    ) -> dict:
        predicates = (
            list(scope)
            + visibility_scope(caller, sees_everything)
            + compile_filters(PROFILES, query.filters)
        )
        rows = self.store.find_many(
            predicates,
            sort=PROFILES.resolve_sort(query.sort),
            limit=query.pagination.limit,
            offset=query.pagination.offset,
        )
        total = self.store.count(predicates)
        data = [apply_privacy(serialize_profile(p), caller, sees_everything) for p in rows]
        return assemble(data, total, query.pagination)

    def get_for_user(self, user_id: int) -> UserProfile:
        profile = self.store.find_one([Predicate("user_id", Op.EQ, user_id)])
        if profile is None:
            raise ResourceNotFoundError(f"Profile for user {user_id} not found")
        return profile

    def view(self, user_id: int, caller: Principal, sees_everything: bool) -> dict:
        """The caller's view of a profile; hidden profiles read as missing."""
        visible = apply_privacy(serialize_profile(self.get_for_user(user_id)), caller, sees_everything)
        if visible is None:
            raise ResourceNotFoundError(f"Profile for user {user_id} not found")
        return visible

    def upsert(self, user_id: int, changes: dict) -> UserProfile:
        """Create the profile on first write, otherwise update the given fields."""
        if self.db.get(User, user_id) is None:
            raise ResourceNotFoundError(f"User {user_id} not found")

        values = {}
        for name in PLAIN_FIELDS:
            if name not in changes:
                continue
            if name in FLAG_FIELDS and changes[name] is None:
                continue
            values[name] = changes[name]
        for name, column in JSON_FIELDS.items():
            if name in changes:
                values[column] = json.dumps(changes[name]) if changes[name] is not None else None

        website = values.get("website")
        if website and not website.startswith(("http://", "https://")):
            raise ValidationError("Website must start with http:// or https://")

        profile = self.store.find_one([Predicate("user_id", Op.EQ, user_id)])
        if profile is None:
            profile = self.store.create({"user_id": user_id, **values})
            logger.info("Created profile for user %s", user_id)
            return profile
        if not values:
            return profile
        return self.store.update(profile, values)

    def delete(self, user_id: int) -> None:
        self.store.delete(self.get_for_user(user_id))
        logger.info("Deleted profile for user %s", user_id)

    def stats(self) -> dict:
        complete = [Predicate(f, Op.NOT_NULL) for f in PROFILE_COMPLETENESS_FIELDS]
        locations = self.store.group_counts("location", [Predicate("location", Op.NOT_NULL)])
        companies = self.store.group_counts("company", [Predicate("company", Op.NOT_NULL)])
        total = self.store.count()
        return {
            "total": total,
            "public": self.store.count([Predicate("is_public", Op.EQ, True)]),
            "private": self.store.count([Predicate("is_public", Op.EQ, False)]),
            "complete": self.store.count(complete),
            "with_avatar": self.store.count([Predicate("avatar_url", Op.NOT_NULL)]),
            "with_bio": self.store.count([Predicate("bio", Op.NOT_NULL)]),
            "with_phone": self.store.count([Predicate("phone", Op.NOT_NULL)]),
            "users_without_profile": max(0, self.db.query(User).count() - total),
            "top_locations": dict(sorted(locations.items(), key=lambda kv: kv[1], reverse=True)[:5]),
            "top_companies": dict(sorted(companies.items(), key=lambda kv: kv[1], reverse=True)[:5]),
        }
