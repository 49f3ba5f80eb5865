"""
Schemas for DRACOON's OAuth2 routes.

Token requests are form encoded (RFC 6749), so the request models dump to plain dicts with snake_case keys.
"""

from pydantic import BaseModel, Field


class OAuth2PasswordFlow(BaseModel):
    """Resource owner password credentials grant, client credentials go in the Basic auth header."""

    username: str
    password: str
    grant_type: str = "password"


class OAuth2AuthCodeFlow(BaseModel):
    """Authorization code grant, client credentials go in the Basic auth header."""

    code: str
    redirect_uri: str
    grant_type: str = "authorization_code"


class OAuth2RefreshTokenFlow(BaseModel):
    """Refresh token grant, client credentials go in the form body."""

    client_id: str
    client_secret: str
    refresh_token: str
    grant_type: str = "refresh_token"


class OAuth2TokenRevoke(BaseModel):
    client_id: str
    client_secret: str
    token: str
    token_type_hint: str


class OAuth2TokenResponse(BaseModel):
    access_token: str = Field(..., description="Bearer token sent with every authenticated request")
    refresh_token: str = Field(..., description="Token used to get a new access token")
    expires_in: int = Field(..., description="Lifetime of the access token in seconds")
    token_type: str | None = None
    scope: str | None = None
