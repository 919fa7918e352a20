"""
auth/service.py -- Account operations built on the auth core.

AccountService owns no state of its own. It combines the identity store,
the credential hasher, the token codec and the reset issuer, applies the
lifecycle transitions, and writes audit events. Routes stay thin: parse the
request, call one method, shape the response.

Every method that changes an identity ends in exactly one store write for
that identity, and that write carries only the columns the method changes.
The identity a method returns is re-read after the write.
"""

from __future__ import annotations

from dataclasses import replace

from auth.clock import Clock, utc_now
from auth.errors import (
    AuthorizationFailure,
    ConflictFailure,
    InvalidCredentialsError,
    InvalidResetTicketError,
    NotFound,
    ValidationFailure,
)
from auth.events import FAILURE, SUCCESS, AuthEvent, log_auth_event
from auth.lifecycle import apply_credential_change, credential_change, reset_ticket_fields
from auth.models import Identity, ResetTicket, Role
from auth.passwords import CredentialHasher
from auth.resets import ResetTokenIssuer
from auth.store import IdentityStore, normalize_email
from auth.tokens import TokenCodec

# Sentinel so update methods can tell "field not sent" from "set to None".
_UNSET = object()


class AccountService:
    def __init__(
        self,
        store: IdentityStore,
        hasher: CredentialHasher,
        codec: TokenCodec,
        resets: ResetTokenIssuer,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.codec = codec
        self.resets = resets
        self._clock = clock

    # ------------------------------------------------------------------
    # Public flows
    # ------------------------------------------------------------------

    def register(self, name: str, email: str, password: str) -> tuple[Identity, str]:
        """Create a `user` identity and return it with a fresh token.

        Registration never grants admin; admins create admins.
        """
        email = normalize_email(email)
        try:
            identity = self._create(name, email, password, Role.user)
        except ConflictFailure:
            log_auth_event(AuthEvent.registration, FAILURE, email, reason="duplicate-email")
            raise
        log_auth_event(AuthEvent.registration, SUCCESS, email, user_id=identity.id)
        return identity, self.codec.issue(identity)

    def login(self, email: str, password: str) -> tuple[Identity, str]:
        """Check credentials and return the identity with a fresh token.

        Unknown email, wrong password and deactivated account all raise the
        same InvalidCredentialsError. bcrypt runs exactly once on every path so
        timing does not tell them apart either [C1].
        """
        email = normalize_email(email)
        identity = self.store.get_by_email(email)
        if identity is None:
            self.hasher.verify_dummy(password)
            log_auth_event(AuthEvent.login, FAILURE, email, reason="unknown-email")
            raise InvalidCredentialsError("unknown email")
        if not self.hasher.verify(password, identity.hashed_password):
            log_auth_event(AuthEvent.login, FAILURE, email, reason="bad-password")
            raise InvalidCredentialsError("wrong password")
        if not identity.is_active:
            log_auth_event(AuthEvent.login, FAILURE, email, reason="deactivated")
            raise InvalidCredentialsError("account deactivated")

        self.store.update_last_login(identity.id)
        log_auth_event(AuthEvent.login, SUCCESS, email, user_id=identity.id)
        return identity, self.codec.issue(identity)

    def logout(self, identity: Identity) -> None:
        """Tokens are stateless; the client discards its copy. Audit only."""
        log_auth_event(AuthEvent.logout, SUCCESS, identity.email, user_id=identity.id)

    def change_password(self, identity: Identity, current_password: str, new_password: str) -> str:
        """Replace the caller's password and return a token that survives the change.

        Every token issued before this call becomes stale.
        """
        if not self.hasher.verify(current_password, identity.hashed_password):
            log_auth_event(AuthEvent.password_change, FAILURE, identity.email, reason="bad-current-password")
            raise InvalidCredentialsError("current password mismatch")
        updated = self._save(identity.id, **credential_change(new_password, self.hasher, self._clock()))
        log_auth_event(AuthEvent.password_change, SUCCESS, identity.email, user_id=identity.id)
        return self.codec.issue(updated)

    def request_password_reset(self, email: str) -> ResetTicket | None:
        """Issue a reset ticket for email, or return None if no such account.

        The caller must answer both cases identically. A new request replaces
        any pending ticket for the account.
        """
        email = normalize_email(email)
        identity = self.store.get_by_email(email)
        if identity is None:
            log_auth_event(AuthEvent.reset_issued, FAILURE, email, reason="unknown-email")
            return None
        ticket = self.resets.issue()
        self._save(identity.id, **reset_ticket_fields(ticket))
        log_auth_event(AuthEvent.reset_issued, SUCCESS, email, user_id=identity.id)
        return ticket

    def reset_password(self, token: str, new_password: str) -> tuple[Identity, str]:
        """Redeem a reset ticket, set the new password and return a fresh token.

        An unknown, already-used or expired ticket raises InvalidResetTicketError.
        An expired attempt leaves the stored ticket in place; only success
        clears it. The write only lands while the row still holds this
        ticket, so two concurrent redemptions cannot both succeed.
        """
        digest = self.resets.digest(token)
        identity = self.store.get_by_reset_digest(digest)
        if identity is None or not self.resets.redeem(token, identity.reset_token_hash, identity.reset_token_expires):
            log_auth_event(
                AuthEvent.reset_redeemed,
                FAILURE,
                identity.email if identity else None,
                reason="expired-ticket" if identity else "unknown-ticket",
            )
            raise InvalidResetTicketError("ticket not redeemable")

        changes = credential_change(new_password, self.hasher, self._clock(), clear_reset_ticket=True)
        if not self.store.update(identity.id, only_if_reset_digest=digest, **changes):
            log_auth_event(AuthEvent.reset_redeemed, FAILURE, identity.email, reason="ticket-already-used")
            raise InvalidResetTicketError("ticket redeemed concurrently")
        updated = self.get_user(identity.id)
        log_auth_event(AuthEvent.reset_redeemed, SUCCESS, identity.email, user_id=identity.id)
        return updated, self.codec.issue(updated)

    # ------------------------------------------------------------------
    # Self-service profile
    # ------------------------------------------------------------------

    def update_profile(self, identity: Identity, name=_UNSET, email=_UNSET, role=_UNSET) -> Identity:
        """Change the caller's own name or email.

        Sending a role other than the current one is a privilege-escalation
        attempt and is refused, not ignored.
        """
        if role is not _UNSET and role is not None and Role(role) != identity.role:
            log_auth_event(AuthEvent.profile_updated, FAILURE, identity.email, reason="role-change-attempt")
            raise AuthorizationFailure(f"user {identity.id} tried to change own role")

        changes: dict = {}
        if name is not _UNSET and name is not None:
            changes["name"] = name
        if email is not _UNSET and email is not None:
            changes["email"] = normalize_email(email)
        if not changes:
            raise ValidationFailure("No fields to update.")

        updated = self._save(identity.id, **changes)
        log_auth_event(AuthEvent.profile_updated, SUCCESS, updated.email, user_id=identity.id)
        return updated

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def list_users(self, page: int = 1, limit: int = 10) -> tuple[list[Identity], int]:
        """Return one page of identities (newest first) and the total count."""
        if page < 1 or limit < 1:
            raise ValidationFailure("page and limit must be positive.")
        return self.store.list_users(offset=(page - 1) * limit, limit=limit), self.store.count_users()

    def get_user(self, user_id: int) -> Identity:
        identity = self.store.get_by_id(user_id)
        if identity is None:
            raise NotFound(f"user {user_id}")
        return identity

    def create_user(self, actor: Identity, name: str, email: str, password: str, role: Role) -> Identity:
        email = normalize_email(email)
        try:
            identity = self._create(name, email, password, Role(role))
        except ConflictFailure:
            log_auth_event(AuthEvent.user_created, FAILURE, email, actor=actor.email, reason="duplicate-email")
            raise
        log_auth_event(AuthEvent.user_created, SUCCESS, email, actor=actor.email, user_id=identity.id)
        return identity

    def update_user(
        self,
        actor: Identity,
        user_id: int,
        name=_UNSET,
        email=_UNSET,
        role=_UNSET,
        is_active=_UNSET,
        password=_UNSET,
    ) -> Identity:
        """Admin edit of another identity (or of the admin's own record).

        [M4] Prevents:
          - self-deactivation (admin locking themselves out);
          - deactivating or demoting the last active admin. The store checks
            for another active admin inside the UPDATE itself, so two admins
            demoting each other at once cannot both succeed.
        A new password goes through the same lifecycle transition as a
        self-service change, so the target's existing tokens become stale.
        """
        target = self.get_user(user_id)
        changes: dict = {}

        if name is not _UNSET and name is not None:
            changes["name"] = name
        if email is not _UNSET and email is not None:
            changes["email"] = normalize_email(email)
        if role is not _UNSET and role is not None:
            changes["role"] = Role(role)
        if is_active is not _UNSET and is_active is not None:
            if not is_active and target.id == actor.id:
                raise ValidationFailure("You cannot deactivate your own account.")
            changes["is_active"] = bool(is_active)

        losing_admin = target.role == Role.admin and target.is_active and (
            changes.get("role", target.role) != Role.admin or not changes.get("is_active", True)
        )

        has_password = password is not _UNSET and password is not None
        if not changes and not has_password:
            raise ValidationFailure("No fields to update.")

        fields = dict(changes)
        if has_password:
            fields.update(credential_change(password, self.hasher, self._clock()))
        if not self.store.update(user_id, only_if_other_active_admin=losing_admin, **fields):
            if self.store.get_by_id(user_id) is None:
                raise NotFound(f"user {user_id}")
            log_auth_event(AuthEvent.user_updated, FAILURE, target.email, actor=actor.email, reason="last-admin")
            raise ValidationFailure("Cannot remove the last active admin account.")
        updated = self.get_user(user_id)

        log_auth_event(
            AuthEvent.user_updated,
            SUCCESS,
            updated.email,
            actor=actor.email,
            user_id=target.id,
            fields=",".join(sorted(changes) + (["password"] if has_password else [])),
        )
        if target.is_active and not updated.is_active:
            log_auth_event(AuthEvent.deactivation, SUCCESS, updated.email, actor=actor.email, user_id=target.id)
        return updated

    def delete_user(self, actor: Identity, user_id: int) -> None:
        """Delete an identity. An admin may not delete itself; the record is left untouched."""
        if user_id == actor.id:
            log_auth_event(AuthEvent.user_deleted, FAILURE, actor.email, actor=actor.email, reason="self-deletion")
            raise ValidationFailure("You cannot delete your own account.")
        target = self.get_user(user_id)
        if not self.store.delete(user_id):
            raise NotFound(f"user {user_id}")
        log_auth_event(AuthEvent.user_deleted, SUCCESS, target.email, actor=actor.email, user_id=user_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _create(self, name: str, email: str, password: str, role: Role) -> Identity:
        draft = Identity(email=email, name=name, hashed_password="", role=role, created_at=self._clock())
        draft = apply_credential_change(draft, password, self.hasher, self._clock(), initial=True)
        user_id = self.store.create(draft)
        return replace(draft, id=user_id)

    def _save(self, user_id: int, **fields) -> Identity:
        """Write fields to one identity and return the stored result."""
        if not self.store.update(user_id, **fields):
            # Deleted between read and write.
            raise NotFound(f"user {user_id}")
        return self.get_user(user_id)
