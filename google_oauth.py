"""Google OAuth provider used by the portal's "Continue with Google" login.

Only the three HTTP round-trips of the authorization-code flow live here;
turning a profile into a portal account is done by the app.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests

log = logging.getLogger(__name__)


class GoogleOAuthError(Exception):
    """Google answered, but not with what the login flow needs."""


class GoogleOAuthProvider:
    """Handle Google OAuth authentication."""

    GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
    GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"
    TIMEOUT = 10

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri

    def get_authorization_url(self, state: Optional[str] = None) -> str:
        """Generate Google OAuth authorization URL."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
        }
        if state:
            params["state"] = state
        return f"{self.GOOGLE_AUTH_URL}?{urlencode(params)}"

    def exchange_code_for_tokens(self, code: str) -> Dict[str, Any]:
        """Exchange authorization code for access tokens."""
        response = requests.post(
            self.GOOGLE_TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self.redirect_uri,
            },
            timeout=self.TIMEOUT,
        )
        response.raise_for_status()
        tokens = response.json()
        if not tokens.get("access_token"):
            raise GoogleOAuthError("token response has no access_token")
        return tokens

    def get_user_info(self, access_token: str) -> Dict[str, Any]:
        """Get user information from Google.

        The v3 userinfo payload carries ``sub``, ``email``, ``given_name``
        and ``family_name``.
        """
        response = requests.get(
            self.GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=self.TIMEOUT,
        )
        response.raise_for_status()
        profile = response.json()
        if not profile.get("sub"):
            raise GoogleOAuthError("userinfo response has no subject id")
        log.info("Google profile received for %s", profile.get("email") or profile["sub"])
        return profile

    def fetch_profile(self, code: str) -> Dict[str, Any]:
        tokens = self.exchange_code_for_tokens(code)
        return self.get_user_info(tokens["access_token"])
