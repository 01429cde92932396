"""Credential pair and token response tests."""

import pytest
from pydantic import ValidationError

from teamleader_client.models.credentials import CredentialPair, TokenResponse

NOW = 1_700_000_000.0


class TestCredentialPair:
    """Expiry arithmetic on the pair."""

    def test_expiry_with_margin(self) -> None:
        pair = CredentialPair("a", "r", expires_at=NOW + 200)
        assert not pair.is_expired(NOW)
        assert pair.is_expired(NOW, margin=300)

    def test_expires_in_never_negative(self) -> None:
        assert CredentialPair("a", "r", expires_at=NOW - 10).expires_in(NOW) == 0.0

    def test_authorization_header(self) -> None:
        assert CredentialPair("abc", "r", NOW).authorization_header() == {"Authorization": "Bearer abc"}

    def test_dict_round_trip(self) -> None:
        pair = CredentialPair("a", "r", NOW, scopes=("contacts", "deals"))
        assert CredentialPair.from_dict(pair.to_dict()) == pair

    def test_from_dict_requires_access_token(self) -> None:
        with pytest.raises(KeyError):
            CredentialPair.from_dict({"refresh_token": "r", "expires_at": NOW})


class TestTokenResponse:
    """Token endpoint body parsing."""

    def test_to_pair(self) -> None:
        token = TokenResponse(access_token="a", refresh_token="r", expires_in=3600, scope="contacts deals")
        pair = token.to_pair(NOW)
        assert pair.expires_at == NOW + 3600
        assert pair.scopes == ("contacts", "deals")

    def test_missing_refresh_token_falls_back(self) -> None:
        pair = TokenResponse(access_token="a").to_pair(NOW, fallback_refresh_token="old")
        assert pair.refresh_token == "old"

    def test_access_token_required(self) -> None:
        with pytest.raises(ValidationError):
            TokenResponse.model_validate({"token_type": "Bearer"})
