"""
auth/integration.py -- Maps external provider identities onto local accounts.

Two entry points drive every OAuth callback:

  integrate_user(profile, link_mode=False)
      Fresh login / signup. A returning provider account (matched by
      provider + subject) logs into its owner. Otherwise the verified email is
      matched against existing users and the identity is attached; with no
      match a new password-less user is created together with the identity.

  integrate_user(profile, link_mode=True, existing_user_id=...)
      Explicit account linking by an already-authenticated user. The identity
      is attached to existing_user_id only.

Conflicts (all ConflictError):
  - the provider account already belongs to a different user (link mode);
  - the target user already has a DIFFERENT account of the same provider.

unlink() enforces the auth-method invariant: a user keeps at least one way to
sign in (password or identity) at all times.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from auth.models import LinkedAccounts, OAuthProfile, User, UserIdentity
from auth.store import UserStore, normalize_email
from core.config import SUPPORTED_PROVIDERS

logger = logging.getLogger("marketplace.auth.integration")


class OAuthIntegration:
    """Account integration service over a UserStore.

    Usage:
        integration = OAuthIntegration(store, default_role="INFLUENCER")
        user = integration.integrate_user(profile)
        integration.unlink(user.id, "kakao")
    """

    def __init__(self, store: UserStore, default_role: str = "INFLUENCER") -> None:
        self.store = store
        self.default_role = default_role

    def integrate_user(
        self, profile: OAuthProfile, link_mode: bool = False, existing_user_id: Optional[int] = None
    ) -> User:
        """Resolve profile to a local User, creating or linking as needed."""
        if profile.provider not in SUPPORTED_PROVIDERS:
            raise BadRequestError(f"Unsupported provider: {profile.provider}")
        if link_mode and existing_user_id is None:
            raise BadRequestError("Account linking requires an authenticated user.")

        identity = self.store.get_identity(profile.provider, profile.subject)
        if identity is not None:
            return self._returning_identity(identity, profile, existing_user_id if link_mode else None)

        if link_mode:
            user = self.store.get_by_id(existing_user_id)
            if user is None:
                raise NotFoundError("User not found.")
            self._attach(user, profile)
            logger.info("Linked %s account to user %s", profile.provider, user.id)
            return user

        email = normalize_email(profile.email)
        user = self.store.get_by_email(email) if email else None
        if user is not None:
            self._attach(user, profile)
            logger.info("Attached %s account to existing user %s by email", profile.provider, user.id)
            return user

        return self._create_oauth_user(profile, email)

    def _returning_identity(
        self, identity: UserIdentity, profile: OAuthProfile, existing_user_id: Optional[int]
    ) -> User:
        if existing_user_id is not None and identity.user_id != existing_user_id:
            raise ConflictError(f"This {profile.provider} account is already linked to another user.")
        self.store.touch_identity(identity.id, profile.email)
        user = self.store.get_by_id(identity.user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return user

    def _attach(self, user: User, profile: OAuthProfile) -> None:
        if self.store.get_identity_for_user(user.id, profile.provider) is not None:
            raise ConflictError(f"A different {profile.provider} account is already linked to this user.")
        self.store.add_identity(
            UserIdentity(
                user_id=user.id,
                provider=profile.provider,
                provider_subject=profile.subject,
                provider_email=profile.email,
            )
        )

    def _create_oauth_user(self, profile: OAuthProfile, email: Optional[str]) -> User:
        user = User(role=self.default_role, email=email, display_name=profile.display_name)
        identity = UserIdentity(
            user_id=0,  # assigned by create_user
            provider=profile.provider,
            provider_subject=profile.subject,
            provider_email=profile.email,
        )
        user_id = self.store.create_user(user, identity=identity)
        try:
            self.store.create_role_profile(user_id, user.role)
        except SQLAlchemyError:
            logger.warning("Role profile creation failed for OAuth user %s", user_id, exc_info=True)
        logger.info("Created user %s from %s account", user_id, profile.provider)
        return self.store.get_by_id(user_id)

    # ------------------------------------------------------------------
    # Unlink / listing
    # ------------------------------------------------------------------

    def unlink(self, user_id: int, provider: str) -> None:
        """Remove the user's identity for provider.

        Raises BadRequestError for an unknown provider, NotFoundError when no
        such link exists and ForbiddenError when it is the last auth method.
        """
        if provider not in SUPPORTED_PROVIDERS:
            raise BadRequestError(f"Unsupported provider: {provider}")
        user = self.store.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        if self.store.get_identity_for_user(user_id, provider) is None:
            raise NotFoundError(f"No {provider} account is linked.")

        remaining = self.store.count_identities(user_id) + (1 if user.has_password else 0)
        if remaining <= 1 or not self.store.remove_identity(user_id, provider):
            raise ForbiddenError("Cannot unlink the last authentication method.")
        logger.info("Unlinked %s account from user %s", provider, user_id)

    def linked_accounts(self, user_id: int) -> LinkedAccounts:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return LinkedAccounts(
            identities=self.store.list_identities(user_id),
            has_password=user.has_password,
            primary_email=user.email,
        )
