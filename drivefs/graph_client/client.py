# drivefs/graph_client/client.py
import logging
import threading
import time
from typing import Optional
from urllib.parse import urlencode, urlparse, parse_qs

import keyring # For system keyring integration
from keyring.errors import KeyringError
import requests

from drivefs.graph_client.errors import AuthError

LOGGER = logging.getLogger(__name__)

# Service name for keyring storage
KEYRING_SERVICE_NAME = "drivefs-graph"

AUTH_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/authorize"
TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
SCOPES = "user.read files.readwrite.all offline_access"
DEFAULT_REDIRECT_URI = "https://login.microsoftonline.com/common/oauth2/nativeclient"

# Refresh this many seconds before the access token actually expires
EXPIRY_MARGIN = 60


class GraphAuth:
    """
    OAuth2 token holder for the Microsoft Graph API.
    The refresh token is persisted in the system keyring so a mount can be
    restarted without logging in again.
    """

    def __init__(self, client_id: str, redirect_uri: str = DEFAULT_REDIRECT_URI,
                 account: str = "default", session: Optional[requests.Session] = None):
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.account = account
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.expires_at: float = 0
        self._session = session or requests.Session()
        self._lock = threading.Lock()

    @property
    def authenticated(self) -> bool:
        return self.access_token is not None

    def _get_refresh_token_from_keyring(self) -> Optional[str]:
        try:
            return keyring.get_password(KEYRING_SERVICE_NAME, self.account)
        except KeyringError as e:
            LOGGER.warning(f"Could not retrieve refresh token from keyring: {e}")
            return None

    def _save_refresh_token_to_keyring(self):
        try:
            keyring.set_password(KEYRING_SERVICE_NAME, self.account, self.refresh_token)
            LOGGER.debug("Refresh token saved to system keyring.")
        except KeyringError as e:
            LOGGER.error(f"Failed to save refresh token to keyring: {e}")

    def forget(self):
        """Removes the stored refresh token, forcing a fresh login next time."""
        try:
            keyring.delete_password(KEYRING_SERVICE_NAME, self.account)
        except KeyringError as e:
            LOGGER.warning(f"Failed to remove refresh token from keyring: {e}")

    def auth_url(self) -> str:
        params = {
            "client_id": self.client_id,
            "scope": SCOPES,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    def authenticate(self, interactive: bool = True):
        """
        Restores a session from the keyring, falling back to an interactive
        login when there is no stored token or it was rejected.
        """
        stored = self._get_refresh_token_from_keyring()
        if stored:
            self.refresh_token = stored
            try:
                self.refresh()
                LOGGER.info("Session restored from system keyring.")
                return
            except AuthError as e:
                LOGGER.warning(f"Stored refresh token rejected: {e}")
                self.forget()

        if not interactive:
            raise AuthError("No stored credentials and interactive login disabled.")
        self.login()

    def login(self):
        print("Open the following URL in a browser and sign in:")
        print(f"  {self.auth_url()}")
        redirected = input("Paste the full URL you were redirected to: ").strip()
        code = parse_qs(urlparse(redirected).query).get("code", [None])[0]
        if not code:
            raise AuthError("No authorization code found in the redirect URL.")
        self._request_token({
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "code": code,
            "grant_type": "authorization_code",
        })
        LOGGER.info("Successfully authenticated.")

    def refresh(self):
        if not self.refresh_token:
            raise AuthError("Cannot refresh without a refresh token.")
        self._request_token({
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "refresh_token": self.refresh_token,
            "grant_type": "refresh_token",
        })

    def _request_token(self, data: dict):
        try:
            response = self._session.post(TOKEN_URL, data=data)
        except requests.RequestException as e:
            raise AuthError(f"Token request failed: {e}") from e
        if not response.ok:
            raise AuthError(f"Token endpoint returned {response.status_code}: {response.text[:200]}",
                            response.status_code)

        payload = response.json()
        self.access_token = payload["access_token"]
        self.refresh_token = payload.get("refresh_token", self.refresh_token)
        self.expires_at = time.time() + int(payload.get("expires_in", 3600))
        self._save_refresh_token_to_keyring()

    def token(self) -> str:
        """Returns a valid access token, refreshing it when close to expiry."""
        with self._lock:
            if self.access_token is None or time.time() > self.expires_at - EXPIRY_MARGIN:
                LOGGER.debug("Access token expired, refreshing.")
                self.refresh()
            return self.access_token
