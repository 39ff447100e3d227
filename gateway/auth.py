"""
Tableau Relay - Authentication Module
=======================================
Identity plumbing between the browser and the relay core.

Security model:
- The relay stores no users or passwords. Sign-in is delegated to the
  Tableau REST API, which returns a REST token and the site id.
- The browser sends that token back on every call as
  "Authorization: Bearer <token>" together with the site id
  ("X-Tableau-Site-Id" header or "siteId" query parameter).
- For embedding, the relay signs a short-lived connected-app JWT with the
  secrets from .env (CONNECTED_APP_CLIENT_ID / _SECRET_ID / _SECRET_KEY).

Sign-in flow:
    1. Browser POSTs credentials (user/password or personal access token)
       to /api/auth/signin
    2. Relay forwards them to Tableau and receives token + site id
    3. Relay signs an embed JWT for the user
    4. Browser keeps {token, siteId, jwtToken} for later calls
"""

import uuid
from datetime import datetime, timedelta, timezone

from fastapi import Depends, Header, HTTPException, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt

from gateway.config import ConfigManager
from relay.errors import MissingCredential
from relay.models import Credential


# Connected-app JWT configuration
JWT_ALGORITHM = "HS256"
EMBED_AUDIENCE = "tableau"
ODA_CLAIM = "https://tableau.com/oda"
GROUPS_CLAIM = "https://tableau.com/groups"

# Security scheme for FastAPI dependency injection
security = HTTPBearer(auto_error=False)


class AuthManager:
    """
    Signs connected-app embed tokens.

    Attributes:
        client_id:     Connected app client id (JWT "iss" claim and header).
        secret_id:     Connected app secret id (JWT "kid" header).
        token_minutes: Lifetime of an embed token.
        scopes:        JWT "scp" claim.
        groups:        Optional on-demand-access groups.
        subject:       Fallback "sub" when the caller supplies no user name.
    """

    def __init__(
        self,
        client_id: str,
        secret_id: str,
        secret_key: str,
        token_minutes: int = 5,
        scopes: list[str] | None = None,
        groups: list[str] | None = None,
        subject: str = "",
    ):
        self.client_id = client_id
        self.secret_id = secret_id
        self._secret_key = secret_key
        self.token_minutes = token_minutes
        self.scopes = list(scopes or [])
        self.groups = list(groups or [])
        self.subject = subject

    @classmethod
    def from_config(cls, config_manager: ConfigManager, config: dict) -> "AuthManager":
        """Build from the loaded config.yaml "embed" section plus .env secrets."""
        embed = config["embed"]
        secrets = config_manager.get_secrets()
        return cls(
            client_id=secrets["CONNECTED_APP_CLIENT_ID"],
            secret_id=secrets["CONNECTED_APP_SECRET_ID"],
            secret_key=secrets["CONNECTED_APP_SECRET_KEY"],
            token_minutes=int(embed.get("token_minutes", 5)),
            scopes=embed.get("scopes") or [],
            groups=embed.get("groups") or [],
            subject=embed.get("subject") or "",
        )

    def is_configured(self) -> bool:
        """True when all three connected-app secrets are present."""
        return bool(self.client_id and self.secret_id and self._secret_key)

    def create_embed_token(self, username: str | None = None) -> str:
        """
        Sign a connected-app JWT for embedding views.

        Args:
            username: Tableau user the token is issued for. Falls back to
                      the configured subject.

        Returns:
            The encoded JWT.

        Raises:
            RuntimeError: If the connected-app secrets are not configured.
            ValueError:   If no subject is available.
        """
        if not self.is_configured():
            raise RuntimeError("Connected app secrets are not configured")

        subject = username or self.subject
        if not subject:
            raise ValueError("No subject available for the embed token")

        now = datetime.now(timezone.utc)
        payload = {
            "iss": self.client_id,
            "exp": now + timedelta(minutes=self.token_minutes),
            "jti": str(uuid.uuid4()),
            "aud": EMBED_AUDIENCE,
            "sub": subject,
            "scp": self.scopes,
        }
        if self.groups:
            payload[ODA_CLAIM] = "true"
            payload[GROUPS_CLAIM] = self.groups

        headers = {"kid": self.secret_id, "iss": self.client_id}
        return jwt.encode(payload, self._secret_key, algorithm=JWT_ALGORITHM, headers=headers)


def require_credential():
    """
    Create a FastAPI dependency that yields the caller's Credential.

    Usage in routes:
        credential = Depends(require_credential())

    Returns:
        A FastAPI dependency function. It raises HTTP 401 with a
        "missing_credential" detail, before any remote call, when the
        bearer token or the site id is absent.
    """
    async def _obtain(
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
        x_tableau_site_id: str | None = Header(default=None),
        site_id: str | None = Query(default=None, alias="siteId"),
    ) -> Credential:
        if credentials is None or not credentials.credentials:
            error = MissingCredential("Bearer token required")
            raise HTTPException(status_code=error.status_code, detail=error.to_dict())

        site = x_tableau_site_id or site_id
        if not site:
            error = MissingCredential("Site id required (X-Tableau-Site-Id header or siteId)")
            raise HTTPException(status_code=error.status_code, detail=error.to_dict())

        return Credential(bearer_token=credentials.credentials, site_id=site)

    return _obtain
