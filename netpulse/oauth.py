"""Google OAuth 2.0 authorization-code flow.

Only the three HTTP exchanges the login flow needs are implemented here:
building the consent-screen URL, trading the returned code for an access
token and fetching the user's profile with it.
"""

from __future__ import annotations

from typing import Any, Dict
from urllib.parse import urlencode

import requests
from pydantic import ValidationError

from .config import Settings
from .schemas import UserProfile

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
SCOPES = "openid email profile"
TIMEOUT = 10


class OAuthError(Exception):
    """The provider refused the login or answered with something unusable."""


class GoogleOAuthClient:
    def __init__(self, settings: Settings, session: requests.Session | None = None):
        self.client_id = settings.google_client_id
        self.client_secret = settings.google_client_secret
        self.redirect_uri = settings.google_callback_url
        self.http = session or requests.Session()

    def authorize_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": SCOPES,
            "state": state,
            "prompt": "select_account",
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> Dict[str, Any]:
        payload = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        }
        try:
            r = self.http.post(TOKEN_URL, data=payload, timeout=TIMEOUT)
        except requests.RequestException as exc:
            raise OAuthError(f"Token endpoint unreachable: {exc}") from exc
        if r.status_code >= 400:
            # The body may echo the code; keep only the status.
            raise OAuthError(f"Token exchange failed (status={r.status_code})")
        try:
            data = r.json()
        except ValueError as exc:
            raise OAuthError("Token response is not JSON") from exc
        if not isinstance(data, dict) or not data.get("access_token"):
            raise OAuthError("Token response without access_token")
        return data

    def fetch_profile(self, access_token: str) -> UserProfile:
        try:
            r = self.http.get(
                USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=TIMEOUT,
            )
        except requests.RequestException as exc:
            raise OAuthError(f"Userinfo endpoint unreachable: {exc}") from exc
        if r.status_code >= 400:
            raise OAuthError(f"Userinfo request failed (status={r.status_code})")
        try:
            info = r.json()
        except ValueError as exc:
            raise OAuthError("Userinfo response is not JSON") from exc
        if not isinstance(info, dict) or not info.get("sub"):
            raise OAuthError("Userinfo response without subject")
        return profile_from_userinfo(info)

    def login(self, code: str) -> UserProfile:
        """Run the code exchange and return the verified profile."""

        tokens = self.exchange_code(code)
        profile = self.fetch_profile(tokens["access_token"])
        if not profile.emails:
            raise OAuthError("Account has no verified email address")
        return profile


def profile_from_userinfo(info: Dict[str, Any]) -> UserProfile:
    """Map an OpenID Connect userinfo document to a :class:`UserProfile`.

    Unverified addresses are dropped so that an email in the profile can be
    used as the account's identity.
    """

    emails = []
    email = info.get("email")
    if email and info.get("email_verified") is True:
        emails.append(str(email))
    photos = [str(info["picture"])] if info.get("picture") else []
    try:
        return UserProfile(
            id=str(info["sub"]),
            display_name=info.get("name"),
            emails=emails,
            photos=photos,
        )
    except ValidationError as exc:
        raise OAuthError("Userinfo response has unexpected fields") from exc
