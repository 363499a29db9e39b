"""Unit tests for the SQLAlchemy-backed store."""

import pytest

from usermgmt.core.exceptions import ResourceConflictError
from usermgmt.core.filters import AnyOf, Op, Predicate, compile_filters
from usermgmt.core.query_params import SortSpec
from usermgmt.core.resources import USERS
from usermgmt.db.store import Increment, user_store
from tests.conftest import make_user


@pytest.fixture
def people(db):
    make_user(db, "ann@example.com", role="admin", full_name="Ann Lee")
    make_user(db, "bob@corp.io", full_name="Bob 100% Ray")
    make_user(db, "cy@example.com", full_name="Cy Joanne", is_active=False)
    return user_store(db)


class TestReads:
    def test_find_many_with_computed_field(self, people):
        rows = people.find_many([Predicate("role_name", Op.EQ, "admin")])
        assert [u.email for u in rows] == ["ann@example.com"]

    def test_count(self, people):
        assert people.count() == 3
        assert people.count([Predicate("is_active", Op.EQ, True)]) == 2

    def test_sort_and_paginate(self, people):
        rows = people.find_many([], sort=SortSpec("email", "asc"), limit=2, offset=1)
        assert [u.email for u in rows] == ["bob@corp.io", "cy@example.com"]

    def test_any_of(self, people):
        rows = people.find_many([AnyOf((
            Predicate("email", Op.IENDSWITH, "@corp.io"),
            Predicate("is_active", Op.EQ, False),
        ))])
        assert {u.email for u in rows} == {"bob@corp.io", "cy@example.com"}

    def test_injection_is_a_literal(self, people):
        predicates = compile_filters(USERS, {"role": "' OR '1'='1"})
        assert people.find_many(predicates) == []
        assert people.count(predicates) == 0

    def test_wildcards_in_values_are_escaped(self, people):
        assert [u.email for u in people.find_many([Predicate("full_name", Op.ICONTAINS, "100%")])] == [
            "bob@corp.io"
        ]
        assert people.find_many([Predicate("full_name", Op.ICONTAINS, "%")]) == people.find_many(
            [Predicate("full_name", Op.ICONTAINS, "100%")]
        )

    def test_icontains_is_case_insensitive(self, people):
        rows = people.find_many([Predicate("full_name", Op.ICONTAINS, "JOANNE")])
        assert [u.email for u in rows] == ["cy@example.com"]

    def test_group_counts(self, people):
        assert people.group_counts("role_name") == {"admin": 1, "user": 2}

    def test_unknown_field(self, people):
        with pytest.raises(ValueError):
            people.find_many([Predicate("password", Op.EQ, "x")])


class TestWrites:
    def test_update_where_increment(self, people):
        user = people.find_one([Predicate("email", Op.EQ, "bob@corp.io")])
        changed = people.update_where(
            [Predicate("id", Op.EQ, user.id)], {"failed_login_attempts": Increment(2)},
        )
        assert changed == 1
        assert people.get(user.id).failed_login_attempts == 2

    def test_update_where_condition_not_met(self, people):
        user = people.find_one([Predicate("email", Op.EQ, "bob@corp.io")])
        changed = people.update_where(
            [Predicate("id", Op.EQ, user.id), Predicate("is_active", Op.EQ, False)],
            {"full_name": "Changed"},
        )
        assert changed == 0
        assert people.get(user.id).full_name == "Bob 100% Ray"

    def test_duplicate_is_conflict(self, people):
        existing = people.find_one([Predicate("email", Op.EQ, "ann@example.com")])
        with pytest.raises(ResourceConflictError):
            people.create({
                "email": "ann@example.com",
                "hashed_password": "x",
                "full_name": "Ann Again",
                "role_id": existing.role_id,
            })
        # session is usable after the rollback
        assert people.count() == 3

    def test_delete_where(self, people):
        removed = people.delete_where([Predicate("is_active", Op.EQ, False)])
        assert removed == 1
        assert people.count() == 2
