"""Caller identity verification."""

from typing import Optional, Protocol

import requests

from logging_utils import get_component_logger

logger = get_component_logger("payment-service", "auth")


class IdentityError(Exception):
    """The identity provider could not be reached."""


class IdentityVerifier(Protocol):
    def verify(self, token: str) -> Optional[str]:
        """Resolve a bearer token to a user id, or None if the token is invalid."""
        ...


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


class SupabaseIdentityVerifier:
    """Verifies access tokens against Supabase Auth's user endpoint."""

    def __init__(
        self,
        supabase_url: str,
        anon_key: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.user_url = f"{supabase_url.rstrip('/')}/auth/v1/user"
        self.anon_key = anon_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def verify(self, token: str) -> Optional[str]:
        """Resolve a token to the authenticated user's id.

        Args:
            token: Bearer access token from the client

        Returns:
            The user id, or None if the token is rejected

        Raises:
            IdentityError: If the identity provider is unreachable
        """
        try:
            response = self.session.get(
                self.user_url,
                headers={"apikey": self.anon_key, "Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Identity provider unreachable: {e}")
            raise IdentityError("Identity provider unreachable") from e

        if response.status_code in (401, 403):
            return None
        if not response.ok:
            logger.error(f"Identity provider returned {response.status_code}")
            raise IdentityError(f"Identity provider returned {response.status_code}")

        try:
            user_id = response.json().get("id")
        except ValueError:
            return None
        return user_id or None


class UnconfiguredIdentityVerifier:
    """Rejects every token; used when no identity provider is configured."""

    def verify(self, token: str) -> Optional[str]:
        logger.warning("No identity provider configured, rejecting caller")
        return None
