# -*- coding: utf-8 -*-
"""
Google authentication module for Drive sync.

This module resolves bearer tokens for the Drive REST API from one of two
credential types:

- Service account key files: a signed JWT assertion (RS256) is exchanged for
  a short-lived access token using the jwt-bearer grant. There is no refresh
  token, so a fresh assertion is minted whenever the token nears expiry.
- OAuth2 client credentials (user-delegated): a cached token is reused and
  refreshed with its refresh token; without a cache the operator completes an
  out-of-band authorization once and the result is cached on disk.

Both classes expose the same access_token() method, so callers never branch
on the authentication mode.
"""

import json
import os
import threading
import time
import urllib.parse
from datetime import timedelta

import jwt
import requests
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import load_pem_private_key

from .errors import AuthError, check_cancelled, truncate_error_body
from .utils import (
    ensure_dir_private,
    format_timestamp,
    is_debug_enabled,
    parse_timestamp,
    utc_now,
    write_private_file,
)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/auth"
DRIVE_FILE_SCOPE = "https://www.googleapis.com/auth/drive.file"
OOB_REDIRECT_URI = "urn:ietf:wg:oauth:2.0:oob"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"

ASSERTION_LIFETIME_SECONDS = 3600
EXPIRY_MARGIN = timedelta(minutes=1)
TOKEN_REQUEST_TIMEOUT = 60

AUTH_MODE_SERVICE = "service"
AUTH_MODE_USER = "user"


# ====================================================================
# JWT ASSERTION - Service account token minting
# ====================================================================

class JWTAssertion:
    """
    A signed JWT with its header and claim set kept as separate values.

    Attributes:
        header (dict): JOSE header
        claims (dict): Claim set
        token (str): Compact serialization header.payload.signature
    """

    def __init__(self, header, claims, token):
        self.header = header
        self.claims = claims
        self.token = token

    def encode(self):
        """Return the compact serialization header.payload.signature."""
        return self.token


def build_jwt_claims(issuer, audience, scope=DRIVE_FILE_SCOPE, issued_at=None):
    """
    Build the claim set for a service account token request.

    Args:
        issuer (str): Service account email (client_email)
        audience (str): Token endpoint URL
        scope (str): Space-separated OAuth scopes
        issued_at (int): Unix timestamp; defaults to now

    Returns:
        dict: Claims with iss, scope, aud, iat and exp (iat + 1 hour)
    """
    now = int(time.time()) if issued_at is None else int(issued_at)
    return {
        "iss": issuer,
        "scope": scope,
        "aud": audience,
        "iat": now,
        "exp": now + ASSERTION_LIFETIME_SECONDS,
    }


def sign_jwt_assertion(private_key, claims):
    """
    Sign a claim set with RS256.

    Args:
        private_key (rsa.RSAPrivateKey): Service account signing key
        claims (dict): Claim set from build_jwt_claims()

    Returns:
        JWTAssertion: The signed assertion
    """
    header = {"alg": "RS256", "typ": "JWT"}
    token = jwt.encode(claims, private_key, algorithm="RS256", headers=header)
    return JWTAssertion(header, claims, token)


# ====================================================================
# TOKENS - Token endpoint exchange and caching
# ====================================================================

class OAuthToken:
    """An access token with its absolute expiry and optional refresh token."""

    def __init__(self, access_token, token_type="Bearer", refresh_token="", expires_in=0, expiry=None):
        self.access_token = access_token
        self.token_type = token_type or "Bearer"
        self.refresh_token = refresh_token or ""
        self.expires_in = int(expires_in or 0)
        self.expiry = expiry

    @classmethod
    def from_response(cls, payload):
        """Build a token from a token endpoint JSON body, stamping expiry from now."""
        expires_in = int(payload.get("expires_in") or 0)
        return cls(
            access_token=payload.get("access_token", ""),
            token_type=payload.get("token_type", "Bearer"),
            refresh_token=payload.get("refresh_token", ""),
            expires_in=expires_in,
            expiry=utc_now() + timedelta(seconds=expires_in),
        )

    @classmethod
    def from_cache(cls, data):
        return cls(
            access_token=data.get("access_token", ""),
            token_type=data.get("token_type", "Bearer"),
            refresh_token=data.get("refresh_token", ""),
            expires_in=data.get("expires_in", 0),
            expiry=parse_timestamp(data.get("expiry", "")),
        )

    def to_cache(self):
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "refresh_token": self.refresh_token,
            "expires_in": self.expires_in,
            "expiry": format_timestamp(self.expiry) if self.expiry else "",
        }

    def is_valid(self, now=None):
        """True if the token is usable for at least another EXPIRY_MARGIN."""
        if not self.access_token or self.expiry is None:
            return False
        now = now or utc_now()
        return now < self.expiry - EXPIRY_MARGIN


def request_token(session, token_uri, form, purpose):
    """
    POST a form to the token endpoint and decode the token response.

    Args:
        session (requests.Session): HTTP session
        token_uri (str): Token endpoint URL
        form (dict): Form fields including grant_type
        purpose (str): Short label for error messages ("token exchange", "token refresh")

    Returns:
        OAuthToken: The decoded token

    Raises:
        AuthError: On network failure, non-200 status or an undecodable body
    """
    try:
        response = session.post(
            token_uri,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=TOKEN_REQUEST_TIMEOUT,
        )
    except requests.exceptions.RequestException as e:
        raise AuthError(f"{purpose}: {e}") from e

    if response.status_code != 200:
        body = truncate_error_body(response.text)
        raise AuthError(f"{purpose} failed ({response.status_code}): {body}", status=response.status_code)

    try:
        payload = response.json()
    except ValueError as e:
        raise AuthError(f"{purpose}: decode token: {e}", status=response.status_code) from e

    token = OAuthToken.from_response(payload)
    if not token.access_token:
        raise AuthError(f"{purpose}: response carried no access_token", status=response.status_code)
    return token


def load_cached_token(path):
    """
    Load a cached user token.

    Returns:
        OAuthToken: The cached token, or None if the file is missing or unreadable
    """
    if not path or not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        print(f"[!] Ignoring unreadable token cache {path}: {e}")
        return None
    if not isinstance(data, dict):
        return None
    return OAuthToken.from_cache(data)


def save_cached_token(path, token):
    """
    Write a token cache file with 0600 permissions.

    A missing parent directory is created 0700. An existing one is left as is,
    since GRAIN_GDRIVE_TOKEN may point into a shared directory.
    """
    ensure_dir_private(os.path.dirname(path), tighten_existing=False)
    data = json.dumps(token.to_cache(), indent=2).encode("utf-8")
    write_private_file(path, data)


def _read_json_file(path):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except OSError as e:
        raise AuthError(f"read credentials: {e}") from e
    except ValueError as e:
        raise AuthError(f"parse credentials {path}: {e}") from e


# ====================================================================
# PROVIDERS - ServiceAccountCredential | UserOAuthCredential
# ====================================================================

class ServiceAccountCredential:
    """
    Access tokens minted from a service account key.

    Args:
        key_info (dict): Parsed service account JSON (type, client_email, private_key, token_uri)
        session (requests.Session): HTTP session used for the token endpoint
    """

    mode = AUTH_MODE_SERVICE

    def __init__(self, key_info, session=None):
        if not isinstance(key_info, dict):
            raise AuthError("service account key must be a JSON object")
        key_type = key_info.get("type")
        if key_type != "service_account":
            raise AuthError(f"expected service_account type, got {key_type!r}")
        self.client_email = key_info.get("client_email", "")
        if not self.client_email:
            raise AuthError("service account key has no client_email")
        self.token_uri = key_info.get("token_uri") or GOOGLE_TOKEN_URL
        self.scope = DRIVE_FILE_SCOPE
        self._private_key = self._parse_private_key(key_info.get("private_key", ""))
        self.session = session or requests.Session()
        self._token = None
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path, session=None):
        return cls(_read_json_file(path), session=session)

    @staticmethod
    def _parse_private_key(pem):
        if not pem:
            raise AuthError("service account key has no private_key")
        try:
            key = load_pem_private_key(pem.encode("utf-8"), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise AuthError(f"parse private key: {e}") from e
        if not isinstance(key, rsa.RSAPrivateKey):
            raise AuthError("private key is not RSA")
        return key

    def build_assertion(self, issued_at=None):
        """Mint a signed assertion for the token endpoint."""
        claims = build_jwt_claims(self.client_email, self.token_uri, self.scope, issued_at)
        return sign_jwt_assertion(self._private_key, claims)

    def access_token(self, cancel_event=None):
        """
        Return a bearer token valid for at least one more minute.

        Concurrent callers serialize on one lock, so an expired token is
        re-minted exactly once.

        Raises:
            AuthError: If the token endpoint rejects the assertion
        """
        with self._lock:
            if self._token is not None and self._token.is_valid():
                return self._token.access_token

            check_cancelled(cancel_event)
            assertion = self.build_assertion()
            self._token = request_token(
                self.session,
                self.token_uri,
                {"grant_type": JWT_BEARER_GRANT, "assertion": assertion.encode()},
                "token exchange",
            )
            if is_debug_enabled():
                print(f"[✓] Minted service account token (expires in {self._token.expires_in}s)")
            return self._token.access_token


class UserOAuthCredential:
    """
    User-delegated access tokens with a refresh token cached on disk.

    Args:
        client_config (dict): The 'installed' or 'web' section of an OAuth client file
        token_path (str): Path of the cached token JSON
        session (requests.Session): HTTP session used for the token endpoint
        input_func (callable): Reads the authorization code from the operator
    """

    mode = AUTH_MODE_USER

    def __init__(self, client_config, token_path, session=None, input_func=input):
        self.client_id = client_config.get("client_id", "")
        self.client_secret = client_config.get("client_secret", "")
        if not self.client_id:
            raise AuthError("OAuth client config has no client_id")
        self.auth_uri = client_config.get("auth_uri") or GOOGLE_AUTH_URL
        self.token_uri = client_config.get("token_uri") or GOOGLE_TOKEN_URL
        self.token_path = token_path
        self.session = session or requests.Session()
        self.input_func = input_func
        self._token = None
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path, token_path, session=None, input_func=input):
        data = _read_json_file(path)
        if not isinstance(data, dict):
            raise AuthError("OAuth client file must be a JSON object")
        client_config = data.get("installed") or data.get("web")
        if not client_config:
            raise AuthError("credentials file must contain 'installed' or 'web' config")
        return cls(client_config, token_path, session=session, input_func=input_func)

    def authorization_url(self):
        query = urllib.parse.urlencode({
            "client_id": self.client_id,
            "redirect_uri": OOB_REDIRECT_URI,
            "response_type": "code",
            "scope": DRIVE_FILE_SCOPE,
            "access_type": "offline",
        })
        return f"{self.auth_uri}?{query}"

    def _authorize_interactively(self):
        print(f"Open this URL in your browser and enter the authorization code:\n{self.authorization_url()}\n")
        try:
            code = self.input_func("Code: ").strip()
        except EOFError as e:
            raise AuthError("read auth code: no input available") from e
        if not code:
            raise AuthError("read auth code: empty code")

        token = request_token(
            self.session,
            self.token_uri,
            {
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": OOB_REDIRECT_URI,
                "grant_type": "authorization_code",
            },
            "token exchange",
        )
        self._store(token)
        return token

    def _refresh(self, refresh_token):
        token = request_token(
            self.session,
            self.token_uri,
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            "token refresh",
        )
        if not token.refresh_token:
            token.refresh_token = refresh_token
        self._store(token)
        if is_debug_enabled():
            print(f"[✓] Refreshed user access token")
        return token

    def _store(self, token):
        try:
            save_cached_token(self.token_path, token)
        except OSError as e:
            print(f"[!] Failed to cache OAuth2 token: {e}")

    def access_token(self, cancel_event=None):
        """
        Return a bearer token valid for at least one more minute.

        Loads the cache on first use, refreshes an expired token with its
        refresh token, and falls back to interactive authorization when no
        usable cache exists.

        Raises:
            AuthError: If no valid token can be obtained
        """
        with self._lock:
            if self._token is None:
                cached = load_cached_token(self.token_path)
                if cached is not None and (cached.refresh_token or cached.is_valid()):
                    if is_debug_enabled():
                        print(f"[=] Using cached OAuth2 token: {self.token_path}")
                    self._token = cached
                else:
                    check_cancelled(cancel_event)
                    self._token = self._authorize_interactively()

            if self._token.is_valid():
                return self._token.access_token

            if not self._token.refresh_token:
                raise AuthError("access token expired and no refresh token is available")

            check_cancelled(cancel_event)
            self._token = self._refresh(self._token.refresh_token)
            return self._token.access_token


def warn_if_world_readable(path):
    """Print a warning if a credential file is accessible by group or others."""
    try:
        mode = os.stat(path).st_mode & 0o777
    except OSError:
        return
    if mode & 0o077:
        print(f"[!] Credentials file has wide permissions: {path} ({mode:04o})")


def load_credential_provider(credentials_path, service_account, token_path, session=None, input_func=input):
    """
    Build the credential provider selected by configuration.

    Args:
        credentials_path (str): Service account key or OAuth client JSON
        service_account (bool): True for the service account flow
        token_path (str): Cached user token path (user flow only)
        session (requests.Session): Optional shared HTTP session
        input_func (callable): Authorization code reader (user flow only)

    Returns:
        ServiceAccountCredential or UserOAuthCredential

    Raises:
        AuthError: If the credential file is missing or malformed
    """
    warn_if_world_readable(credentials_path)
    if service_account:
        print("[*] Drive auth mode: service account")
        return ServiceAccountCredential.from_file(credentials_path, session=session)
    print("[*] Drive auth mode: user OAuth2")
    return UserOAuthCredential.from_file(credentials_path, token_path, session=session, input_func=input_func)
