"""
Guest identity provisioning for unauthenticated checkout.

create-or-adopt: a provider account that already exists (retried request, or a
provider-only account with no local mirror) is authenticated instead of recreated.
The canonical subject is always re-read from the provider after create/authenticate,
and the local row is written only once the provider account is authenticated.
"""

import logging
from typing import Optional

from marketplace.models.schemas import ROLE_GUEST, User
from marketplace.services.errors import AuthenticationRequiredError, InvalidRequestError
from marketplace.services.identity_provider import (
    AccountExistsError,
    AuthenticationFailedError,
    IdentityProviderClient,
    IdentityProviderError,
)
from marketplace.services.user_service import UserService

logger = logging.getLogger(__name__)


class GuestAuthFailedError(AuthenticationRequiredError):
    """Existing account, wrong password: the client should re-enter credentials."""

    code = "AUTH_FAILED"
    error = "Authentication failed"


class AccountCreationFailedError(InvalidRequestError):
    """The guest account could not be created: the client may retry."""

    code = "ACCOUNT_CREATION_FAILED"
    error = "Could not create account"


class GuestCheckoutFailedError(InvalidRequestError):
    code = "GUEST_CHECKOUT_FAILED"
    error = "Guest checkout failed"


class GuestIdentityProvisioner:
    """Resolve or create the buyer identity for a guest checkout."""

    def __init__(
        self,
        idp: Optional[IdentityProviderClient] = None,
        users: Optional[UserService] = None,
    ):
        self._idp = idp
        self.users = users or UserService()

    @property
    def idp(self) -> IdentityProviderClient:
        if self._idp is None:
            self._idp = IdentityProviderClient.from_env()
        return self._idp

    def resolve(self, email: str, password: str) -> User:
        """
        Return a local user usable as the order's buyer.

        Raises:
            GuestAuthFailedError: the account exists and the password is wrong.
            AccountCreationFailedError: a new account could not be created.
            GuestCheckoutFailedError: any other provider or storage failure.
        """
        email = email.strip().lower()

        if self.users.get_by_email(email):
            return self._authenticate_and_link(email, password, GuestCheckoutFailedError)

        try:
            self.idp.create_guest_account(email, password)
        except AccountExistsError:
            logger.info("Guest account already exists at provider, adopting: %s", email)
            return self._authenticate_and_link(email, password, GuestCheckoutFailedError)
        except IdentityProviderError as e:
            logger.error("Guest account creation failed for %s: %s", email, e)
            raise AccountCreationFailedError(
                "We could not create your account. Please try again.",
                detail=str(e),
            )

        return self._authenticate_and_link(email, password, AccountCreationFailedError)

    def _authenticate_and_link(self, email: str, password: str, failure_cls) -> User:
        try:
            self.idp.authenticate(email, password)
            subject = self.idp.get_subject(email)
        except AuthenticationFailedError:
            logger.info("Guest checkout credentials rejected for %s", email)
            raise GuestAuthFailedError(
                "Incorrect email or password for an existing account"
            )
        except IdentityProviderError as e:
            logger.error("Identity provider failure during guest checkout for %s: %s", email, e)
            raise failure_cls(
                "We could not verify your account. Please try again.",
                detail=str(e),
            )

        user = self.users.get_by_subject(subject)
        if user:
            return user

        # linkage missing: adopt the row mirrored under this e-mail, or create it
        existing = self.users.get_by_email(email)
        if existing:
            return self.users.link_subject(existing.id, subject)

        try:
            user = self.users.create_user(email, subject, role=ROLE_GUEST)
        except ValueError as e:
            # a concurrent request mirrored the same account first
            user = self.users.get_by_subject(subject)
            if user is None:
                raise failure_cls("Could not save your account", detail=str(e))
            return user

        logger.info("Guest user %d provisioned for %s", user.id, email)
        return user
