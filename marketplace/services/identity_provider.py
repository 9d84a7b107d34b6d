"""
Identity-provider REST client.

Main operations:
- create_guest_account: admin-created guest account, e-mail pre-verified (no confirmation mail)
- authenticate: password authentication, returns subject and tokens
- get_subject: canonical subject lookup by e-mail
"""

import json
import logging
import os
from dataclasses import dataclass, field

import httpx

logger = logging.getLogger(__name__)

GUEST_TIER = "guest"


class IdentityProviderError(Exception):
    """Identity-provider call failed."""
    pass


class AccountExistsError(IdentityProviderError):
    """An account with this e-mail already exists at the provider."""
    pass


class AuthenticationFailedError(IdentityProviderError):
    """The supplied credentials were rejected."""
    pass


@dataclass
class AuthResult:
    subject: str
    tokens: dict = field(default_factory=dict)


class IdentityProviderClient:
    """Thin httpx client for the identity provider's admin and auth endpoints."""

    def __init__(self, base_url: str, admin_token: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self._admin_token = admin_token
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> "IdentityProviderClient":
        base_url = os.getenv("IDP_BASE_URL")
        if not base_url:
            raise IdentityProviderError("IDP_BASE_URL is not configured")
        return cls(base_url, os.getenv("IDP_ADMIN_TOKEN", ""))

    def _admin_headers(self) -> dict:
        return {"Authorization": f"Bearer {self._admin_token}"}

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                return client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            raise IdentityProviderError(f"Identity provider request failed: {e}")

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise IdentityProviderError(f"Unreadable identity provider response: {e}")

    def create_guest_account(self, email: str, password: str) -> str:
        """
        Create a guest-tier account with a permanent password and a verified e-mail.

        Returns:
            The new account's subject.

        Raises:
            AccountExistsError: the e-mail is already registered.
            IdentityProviderError: any other failure.
        """
        response = self._request(
            "POST",
            "/admin/users",
            headers=self._admin_headers(),
            json={
                "email": email,
                "password": password,
                "tier": GUEST_TIER,
                "email_verified": True,
                "suppress_invitation": True,
            },
        )
        if response.status_code == 409:
            raise AccountExistsError(f"Account already exists for {email}")
        if response.status_code >= 400:
            raise IdentityProviderError(
                f"Account creation failed: HTTP {response.status_code} {response.text[:200]}"
            )

        subject = self._json(response).get("sub")
        if not subject:
            raise IdentityProviderError("Account creation response has no subject")
        logger.info("Identity provider guest account created: %s", email)
        return subject

    def authenticate(self, email: str, password: str) -> AuthResult:
        """
        Authenticate with e-mail and password.

        Raises:
            AuthenticationFailedError: credentials rejected or account unknown.
            IdentityProviderError: any other failure.
        """
        response = self._request(
            "POST",
            "/auth/token",
            json={"email": email, "password": password},
        )
        if response.status_code in (400, 401, 403, 404):
            raise AuthenticationFailedError("Incorrect email or password")
        if response.status_code >= 400:
            raise IdentityProviderError(
                f"Authentication failed: HTTP {response.status_code} {response.text[:200]}"
            )

        data = self._json(response)
        tokens = {
            k: data[k]
            for k in ("access_token", "id_token", "refresh_token")
            if data.get(k)
        }
        return AuthResult(subject=data.get("sub", ""), tokens=tokens)

    def get_subject(self, email: str) -> str:
        """
        Fetch the canonical subject for an e-mail.

        Raises:
            IdentityProviderError: account missing or lookup failed.
        """
        response = self._request(
            "GET",
            "/admin/users",
            headers=self._admin_headers(),
            params={"email": email},
        )
        if response.status_code >= 400:
            raise IdentityProviderError(
                f"Subject lookup failed: HTTP {response.status_code}"
            )

        subject = self._json(response).get("sub")
        if not subject:
            raise IdentityProviderError(f"No subject for {email}")
        return subject
