"""Integration tests for profile endpoints."""

import pytest

from tests.conftest import auth_headers


@pytest.fixture
def alice_profile(client, user_token):
    response = client.put("/api/profiles/me", headers=auth_headers(user_token), json={
        "first_name": "Alice",
        "last_name": "Smith",
        "phone": "+15550100",
        "bio": "Engineer",
        "avatar_url": "https://cdn.test/alice.png",
        "company": "Acme Corp",
        "location": "Berlin",
        "date_of_birth": "1990-05-20",
        "social_links": {"github": "https://github.com/alice"},
    })
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def bob_private_profile(client, other_token):
    response = client.put("/api/profiles/me", headers=auth_headers(other_token), json={
        "first_name": "Bob", "company": "Initech", "is_public": False,
    })
    assert response.status_code == 200
    return response.json()


class TestOwnProfile:
    def test_upsert_creates_then_updates(self, client, user_token, alice_profile):
        assert alice_profile["company"] == "Acme Corp"
        assert alice_profile["social_links"] == {"github": "https://github.com/alice"}
        assert alice_profile["is_public"] is True

        response = client.put("/api/profiles/me", headers=auth_headers(user_token), json={"location": "Paris"})
        assert response.status_code == 200
        assert response.json()["location"] == "Paris"
        assert response.json()["company"] == "Acme Corp"

    def test_get_missing_profile(self, client, user_token):
        assert client.get("/api/profiles/me", headers=auth_headers(user_token)).status_code == 404

    def test_invalid_website(self, client, user_token):
        response = client.put(
            "/api/profiles/me", headers=auth_headers(user_token), json={"website": "javascript:alert(1)"},
        )
        assert response.status_code == 400

    def test_null_flags_keep_stored_values(self, client, user_token):
        response = client.put(
            "/api/profiles/me",
            headers=auth_headers(user_token),
            json={"first_name": "Alice", "is_public": False},
        )
        assert response.status_code == 200

        response = client.put(
            "/api/profiles/me",
            headers=auth_headers(user_token),
            json={"is_public": None, "show_email": None, "show_phone": None},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["is_public"] is False
        assert body["show_email"] is False
        assert body["show_phone"] is False

    def test_null_flags_on_create_use_defaults(self, client, user_token):
        response = client.put(
            "/api/profiles/me", headers=auth_headers(user_token), json={"is_public": None},
        )
        assert response.status_code == 200
        assert response.json()["is_public"] is True

    def test_delete(self, client, user_token, alice_profile):
        assert client.delete("/api/profiles/me", headers=auth_headers(user_token)).status_code == 200
        assert client.get("/api/profiles/me", headers=auth_headers(user_token)).status_code == 404


class TestOwnershipHint:
    def test_user_lists_own_profile_by_user_id(self, client, user_token, regular_user, alice_profile):
        response = client.get(f"/api/profiles?userId={regular_user.id}", headers=auth_headers(user_token))
        assert response.status_code == 200
        assert [p["user_id"] for p in response.json()["data"]] == [regular_user.id]

    def test_user_cannot_list_someone_else(self, client, user_token, other_user):
        response = client.get(f"/api/profiles?userId={other_user.id}", headers=auth_headers(user_token))
        assert response.status_code == 403

    def test_user_cannot_list_without_hint(self, client, user_token):
        assert client.get("/api/profiles", headers=auth_headers(user_token)).status_code == 403

    def test_user_reads_own_by_id(self, client, user_token, regular_user, alice_profile):
        response = client.get(f"/api/profiles/{regular_user.id}", headers=auth_headers(user_token))
        assert response.status_code == 200
        assert response.json()["phone"] == "+15550100"

    def test_user_cannot_edit_other(self, client, user_token, other_user, bob_private_profile):
        response = client.put(
            f"/api/profiles/{other_user.id}", headers=auth_headers(user_token), json={"bio": "hacked"},
        )
        assert response.status_code == 403


class TestPrivacy:
    def test_moderator_sees_public_profiles_without_contact_details(
        self, client, moderator_token, alice_profile, bob_private_profile,
    ):
        response = client.get("/api/profiles", headers=auth_headers(moderator_token))
        assert response.status_code == 200
        data = response.json()["data"]
        assert [p["first_name"] for p in data] == ["Alice"]
        assert data[0]["email"] is None
        assert data[0]["phone"] is None

    def test_moderator_cannot_open_private_profile(self, client, moderator_token, other_user, bob_private_profile):
        response = client.get(f"/api/profiles/{other_user.id}", headers=auth_headers(moderator_token))
        assert response.status_code == 404

    def test_admin_sees_everything(self, client, admin_token, alice_profile, bob_private_profile):
        response = client.get("/api/profiles?sortBy=firstName&sortOrder=asc", headers=auth_headers(admin_token))
        data = response.json()["data"]
        assert [p["first_name"] for p in data] == ["Alice", "Bob"]
        assert data[0]["email"] == "alice@test.com"

    def test_show_email_opt_in(self, client, user_token, moderator_token, regular_user, alice_profile):
        client.put("/api/profiles/me", headers=auth_headers(user_token), json={"show_email": True})
        response = client.get(f"/api/profiles/{regular_user.id}", headers=auth_headers(moderator_token))
        assert response.json()["email"] == "alice@test.com"
        assert response.json()["phone"] is None


class TestFilters:
    def test_company_and_age(self, client, admin_token, alice_profile, bob_private_profile):
        headers = auth_headers(admin_token)
        assert client.get("/api/profiles?company=acme", headers=headers).json()["pagination"]["total"] == 1
        assert client.get("/api/profiles?ageFrom=200", headers=headers).json()["data"] == []

    def test_is_complete(self, client, admin_token, alice_profile, bob_private_profile):
        response = client.get("/api/profiles?isComplete=false", headers=auth_headers(admin_token))
        assert [p["first_name"] for p in response.json()["data"]] == ["Bob"]

    def test_stats(self, client, admin_token, alice_profile, bob_private_profile):
        stats = client.get("/api/profiles/stats", headers=auth_headers(admin_token)).json()
        assert stats["total"] == 2
        assert stats["public"] == 1
        assert stats["private"] == 1
