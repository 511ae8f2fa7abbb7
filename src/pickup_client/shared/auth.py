from pydantic import BaseModel, ConfigDict, Field

BEARER_PREFIX = "Bearer "


def bearer_authorization(access_token: str) -> str:
    """Authorization header value carrying `access_token`."""
    return f"{BEARER_PREFIX}{access_token}"


def parse_bearer(authorization: str | None) -> str | None:
    """Extract the token from a Bearer Authorization header value."""
    if authorization and authorization[: len(BEARER_PREFIX)].lower() == BEARER_PREFIX.lower():
        return authorization[len(BEARER_PREFIX) :]
    return None


class TokenPair(BaseModel):
    """
    Access/refresh token pair issued by the backend on login and on refresh.

    The pair is immutable: a refresh replaces it as a whole, so an access token
    is never observed next to a refresh token from a different issuance.
    """

    access_token: str = Field(..., min_length=1, alias="accessToken")
    refresh_token: str = Field(..., min_length=1, alias="refreshToken")

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class RefreshTokensRequest(BaseModel):
    """Body of the credential-exchange call made against the refresh endpoint."""

    access_token: str | None = Field(default=None, alias="accessToken")
    refresh_token: str = Field(..., alias="refreshToken")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_pair(cls, access_token: str | None, refresh_token: str) -> "RefreshTokensRequest":
        return cls(access_token=access_token, refresh_token=refresh_token)

    def to_json_body(self) -> dict[str, str]:
        return self.model_dump(by_alias=True, exclude_none=True)
