"""
tests/test_store.py -- Unit tests for UserStore (credential store).

Covers:
  - email normalization and lookups
  - uniqueness constraints mapped to ConflictError
  - the auth-method invariant on create and on identity removal
  - update_user field whitelist and NotFoundError
  - role profiles and cascade delete
"""

from __future__ import annotations

import pytest

from auth.errors import BadRequestError, ConflictError, NotFoundError
from auth.models import User, UserIdentity
from auth.passwords import hash_password, verify_password
from auth.store import UserStore
from conftest import PASSWORD, PASSWORD_HASH, make_user


def _identity(provider: str = "google", subject: str = "sub-1") -> UserIdentity:
    return UserIdentity(user_id=0, provider=provider, provider_subject=subject, provider_email="g@x.com")


class TestUsers:
    def test_email_is_normalized(self, store: UserStore) -> None:
        uid = store.create_user(User(role="INFLUENCER", email="  Mixed@Example.COM ", hashed_password=PASSWORD_HASH))
        assert store.get_by_email("mixed@example.com").id == uid
        assert store.get_by_email("MIXED@example.com").id == uid

    def test_duplicate_email_conflict(self, store: UserStore) -> None:
        make_user(store, "dup@x.com")
        with pytest.raises(ConflictError, match="Email"):
            make_user(store, "DUP@x.com")

    def test_duplicate_username_conflict(self, store: UserStore) -> None:
        make_user(store, "u1@x.com", username="same")
        with pytest.raises(ConflictError, match="Username"):
            make_user(store, "u2@x.com", username="same")

    def test_user_without_auth_method_refused(self, store: UserStore) -> None:
        with pytest.raises(ValueError):
            store.create_user(User(role="INFLUENCER", email="none@x.com"))

    def test_oauth_only_user_created_with_identity(self, store: UserStore) -> None:
        uid = store.create_user(User(role="INFLUENCER", email=None), identity=_identity())
        user = store.get_by_id(uid)
        assert not user.has_password
        assert store.count_identities(uid) == 1
        assert store.get_identity("google", "sub-1").user_id == uid

    def test_update_user(self, store: UserStore) -> None:
        user = make_user(store, "up@x.com")
        store.update_user(user.id, display_name="Renamed", status="SUSPENDED")
        updated = store.get_by_id(user.id)
        assert updated.display_name == "Renamed"
        assert not updated.is_active

    def test_update_unknown_field_rejected(self, store: UserStore) -> None:
        user = make_user(store, "field@x.com")
        with pytest.raises(ValueError):
            store.update_user(user.id, email="x@x.com")

    def test_update_missing_user(self, store: UserStore) -> None:
        with pytest.raises(NotFoundError):
            store.update_user(404, status="ACTIVE")

    def test_password_hash_verifies(self, store: UserStore) -> None:
        user = make_user(store, "hash@x.com")
        assert user.hashed_password.startswith("$2b$12$")
        assert verify_password(PASSWORD, user.hashed_password)
        assert not verify_password("nope", user.hashed_password)
        assert not verify_password(PASSWORD, "not-a-bcrypt-hash")

    def test_hash_password_rejects_over_72_bytes(self) -> None:
        with pytest.raises(BadRequestError):
            hash_password("가" * 25)  # 75 bytes
        assert verify_password("가" * 24, hash_password("가" * 24))

    def test_verify_over_72_bytes_never_matches(self) -> None:
        # Under bcrypt 4.x the first 72 bytes would match after truncation.
        prefix = "a" * 72
        assert not verify_password(prefix + "extra", hash_password(prefix))


class TestIdentities:
    def test_provider_account_belongs_to_one_user(self, store: UserStore) -> None:
        a = make_user(store, "a@x.com")
        b = make_user(store, "b@x.com")
        store.add_identity(UserIdentity(user_id=a.id, provider="kakao", provider_subject="k-1"))
        with pytest.raises(ConflictError):
            store.add_identity(UserIdentity(user_id=b.id, provider="kakao", provider_subject="k-1"))

    def test_one_account_per_provider(self, store: UserStore) -> None:
        a = make_user(store, "a@x.com")
        store.add_identity(UserIdentity(user_id=a.id, provider="kakao", provider_subject="k-1"))
        with pytest.raises(ConflictError):
            store.add_identity(UserIdentity(user_id=a.id, provider="kakao", provider_subject="k-2"))

    def test_remove_identity_keeps_last_method(self, store: UserStore) -> None:
        uid = store.create_user(User(role="INFLUENCER"), identity=_identity())
        assert store.remove_identity(uid, "google") is False
        assert store.count_identities(uid) == 1

    def test_remove_identity_with_password(self, store: UserStore) -> None:
        user = make_user(store, "pw@x.com")
        store.add_identity(UserIdentity(user_id=user.id, provider="naver", provider_subject="n-1"))
        assert store.remove_identity(user.id, "naver") is True
        assert store.list_identities(user.id) == []

    def test_list_identities_newest_first(self, store: UserStore) -> None:
        user = make_user(store, "list@x.com")
        store.add_identity(UserIdentity(user_id=user.id, provider="google", provider_subject="g"))
        store.add_identity(UserIdentity(user_id=user.id, provider="naver", provider_subject="n"))
        assert [i.provider for i in store.list_identities(user.id)] == ["naver", "google"]


class TestProfilesAndCascade:
    def test_role_profile_created_once(self, store: UserStore) -> None:
        user = make_user(store, "inf@x.com")
        assert store.create_role_profile(user.id, "INFLUENCER") is True
        assert store.create_role_profile(user.id, "INFLUENCER") is False
        assert store.has_role_profile(user.id, "INFLUENCER")

    def test_admin_has_no_profile(self, store: UserStore) -> None:
        user = make_user(store, "adm@x.com", role="ADMIN")
        assert store.create_role_profile(user.id, "ADMIN") is False

    def test_delete_cascades_identities(self, store: UserStore) -> None:
        uid = store.create_user(User(role="INFLUENCER"), identity=_identity())
        assert store.delete_user(uid) is True
        assert store.get_identity("google", "sub-1") is None
        assert store.delete_user(uid) is False
