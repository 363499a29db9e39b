"""Profile visibility rules applied after authorization."""

from typing import Optional

from usermgmt.core.filters import AnyOf, Node, Op, Predicate
from usermgmt.core.guard import Principal


def visibility_scope(caller: Principal, sees_everything: bool) -> list[Node]:
    """Extra predicates restricting a profile listing to what the caller may see."""
    if sees_everything:
        return []
    return [AnyOf((
        Predicate("is_public", Op.EQ, True),
        Predicate("user_id", Op.EQ, caller.id),
    ))]


def apply_privacy(profile: dict, caller: Principal, sees_everything: bool) -> Optional[dict]:
    """Return the caller's view of a serialized profile, or None if hidden.

    Owners and callers with full admin rights see the profile untouched.
    Everyone else only sees public profiles, with ``email`` and ``phone``
    blanked unless the owner chose to show them.
    """
    if sees_everything or profile.get("user_id") == caller.id:
        return profile
    if not profile.get("is_public"):
        return None

    visible = dict(profile)
    if not visible.get("show_email"):
        visible["email"] = None
    if not visible.get("show_phone"):
        visible["phone"] = None
    return visible
