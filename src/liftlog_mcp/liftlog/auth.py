"""LiftLog authentication via Supabase GoTrue."""

import httpx
from datetime import datetime, timedelta, timezone

from liftlog_mcp.liftlog.exceptions import AuthenticationError, TokenExpiredError


class SupabaseAuth:
    """Password-grant session against a Supabase project."""

    def __init__(self, url: str, api_key: str, transport: httpx.AsyncBaseTransport | None = None):
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.access_token: str | None = None
        self.refresh_token: str | None = None
        self.user_id: str | None = None
        self.token_expiry: datetime | None = None
        self._transport = transport

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None and self.user_id is not None

    @property
    def is_token_expired(self) -> bool:
        if not self.token_expiry:
            return True
        return datetime.now(timezone.utc) >= (self.token_expiry - timedelta(minutes=5))

    async def _token(self, grant_type: str, payload: dict) -> httpx.Response:
        async with httpx.AsyncClient(timeout=30, transport=self._transport) as client:
            try:
                return await client.post(
                    f"{self.url}/auth/v1/token",
                    params={"grant_type": grant_type},
                    headers={"apikey": self.api_key},
                    json=payload,
                )
            except httpx.HTTPError as exc:
                raise AuthenticationError(f"Token request failed: {exc}") from exc

    async def login(self, email: str, password: str) -> None:
        response = await self._token("password", {"email": email, "password": password})
        if response.status_code != 200:
            try:
                message = response.json().get("error_description") or "Authentication failed"
            except ValueError:
                message = "Authentication failed"
            raise AuthenticationError(f"Login failed: {message}")
        self._update_tokens(response.json())

    async def refresh(self) -> None:
        if not self.refresh_token:
            raise AuthenticationError("No refresh token available")

        response = await self._token("refresh_token", {"refresh_token": self.refresh_token})
        if response.status_code != 200:
            raise TokenExpiredError("Failed to refresh token")
        self._update_tokens(response.json())

    def _update_tokens(self, data: dict) -> None:
        self.access_token = data["access_token"]
        self.refresh_token = data.get("refresh_token", self.refresh_token)
        user = data.get("user") or {}
        self.user_id = user.get("id", self.user_id)
        expires_in = int(data.get("expires_in", 3600))
        self.token_expiry = datetime.now(timezone.utc) + timedelta(seconds=expires_in)

    def get_auth_headers(self) -> dict[str, str]:
        if not self.access_token:
            raise AuthenticationError("Not authenticated")
        return {"apikey": self.api_key, "Authorization": f"Bearer {self.access_token}"}

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "user_id": self.user_id,
            "token_expiry": self.token_expiry.isoformat() if self.token_expiry else None,
        }

    @classmethod
    def from_dict(
        cls,
        url: str,
        api_key: str,
        data: dict,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "SupabaseAuth":
        auth = cls(url, api_key, transport=transport)
        auth.access_token = data.get("access_token")
        auth.refresh_token = data.get("refresh_token")
        auth.user_id = data.get("user_id")
        if data.get("token_expiry"):
            auth.token_expiry = datetime.fromisoformat(data["token_expiry"])
        return auth
