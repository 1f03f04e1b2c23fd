from __future__ import annotations

import base64
import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from assured.auth.config import (
    ApiKeyAuth,
    ApiKeyLocation,
    BasicAuth,
    BearerAuth,
    ClientCertificate,
    CustomHeaderAuth,
    OAuth2Auth,
    OAuth2GrantType,
    SaslPlainAuth,
    SaslScramAuth,
    SslAuth,
)
from assured.auth.token_cache import CachedToken, MemoryTokenCache
from assured.errors import ConfigurationError, TransportError
from assured.transport.http import HttpRequestOptions

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIFETIME_SECONDS = 3600

default_token_cache = MemoryTokenCache()


class HttpAuthStrategy(Protocol):
    def apply(self, target: HttpRequestOptions) -> None: ...


class BrokerAuthStrategy(Protocol):
    def apply(self, target: Dict[str, Any]) -> None: ...


def _required(value: Optional[str], name: str, auth: str) -> str:
    if value is None or not str(value).strip():
        raise ConfigurationError(f"{auth} authentication requires a non-empty '{name}'")
    return value


class NoAuthStrategy:
    def apply(self, target: Any) -> None:
        return None


class CompositeStrategy:
    def __init__(self, *strategies) -> None:
        self.strategies = tuple(strategies)

    def apply(self, target: Any) -> None:
        for strategy in self.strategies:
            strategy.apply(target)


# HTTP

class BasicAuthStrategy:
    def __init__(self, payload: BasicAuth) -> None:
        self.username = _required(payload.username, "username", "Basic")
        self.password = _required(payload.password, "password", "Basic")

    def apply(self, target: HttpRequestOptions) -> None:
        raw = f"{self.username}:{self.password}".encode("utf-8")
        target.set_header("Authorization", "Basic " + base64.b64encode(raw).decode("ascii"))


class BearerTokenStrategy:
    def __init__(self, payload: BearerAuth) -> None:
        self.token = _required(payload.token, "token", "Bearer")
        self.prefix = payload.prefix or "Bearer"

    def apply(self, target: HttpRequestOptions) -> None:
        target.set_header("Authorization", f"{self.prefix} {self.token}")


class ApiKeyStrategy:
    def __init__(self, payload: ApiKeyAuth) -> None:
        self.name = _required(payload.name, "name", "API key")
        self.value = _required(payload.value, "value", "API key")
        self.location = ApiKeyLocation(payload.location)

    def apply(self, target: HttpRequestOptions) -> None:
        if self.location is ApiKeyLocation.QUERY:
            target.set_param(self.name, self.value)
        else:
            target.set_header(self.name, self.value)


class CustomHeaderStrategy:
    def __init__(self, payload: CustomHeaderAuth) -> None:
        if not payload.headers:
            raise ConfigurationError("Custom header authentication requires at least one header")
        for name, _ in payload.headers:
            _required(name, "header name", "Custom header")
        self.headers = payload.headers

    def apply(self, target: HttpRequestOptions) -> None:
        for name, value in self.headers:
            target.set_header(name, value)


_GRANT_FIELDS = {
    OAuth2GrantType.CLIENT_CREDENTIALS: (),
    OAuth2GrantType.PASSWORD: ("username", "password"),
    OAuth2GrantType.REFRESH_TOKEN: ("refresh_token",),
    OAuth2GrantType.AUTHORIZATION_CODE: ("authorization_code",),
}


class OAuth2Strategy:
    """
    Fetches an access token from the token endpoint and sends it as a bearer token.

    Tokens are cached per (client_id, token_url) and refreshed once they are
    within the cache's expiry buffer.
    """

    def __init__(
        self,
        payload: OAuth2Auth,
        token_cache: Optional[MemoryTokenCache] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        _required(payload.token_url, "token_url", "OAuth2")
        _required(payload.client_id, "client_id", "OAuth2")
        _required(payload.client_secret, "client_secret", "OAuth2")
        grant = OAuth2GrantType(payload.grant_type)
        for name in _GRANT_FIELDS[grant]:
            _required(getattr(payload, name), name, f"OAuth2 {grant.value}")
        self.payload = payload
        self.cache = token_cache if token_cache is not None else default_token_cache
        self._client = client

    def _form(self) -> Dict[str, str]:
        p = self.payload
        form = {
            "grant_type": p.grant_type.value,
            "client_id": p.client_id,
            "client_secret": p.client_secret,
        }
        if p.scopes:
            form["scope"] = " ".join(p.scopes)
        if p.grant_type is OAuth2GrantType.PASSWORD:
            form["username"] = p.username
            form["password"] = p.password
        elif p.grant_type is OAuth2GrantType.REFRESH_TOKEN:
            form["refresh_token"] = p.refresh_token
        elif p.grant_type is OAuth2GrantType.AUTHORIZATION_CODE:
            form["code"] = p.authorization_code
            if p.redirect_uri:
                form["redirect_uri"] = p.redirect_uri
        form.update(dict(p.additional_parameters))
        return form

    def token(self) -> CachedToken:
        key = MemoryTokenCache.key_for(self.payload.client_id, self.payload.token_url)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        logger.debug("Requesting OAuth2 token from %s (grant=%s)", self.payload.token_url, self.payload.grant_type.value)
        client = self._client or httpx.Client(timeout=30.0)
        try:
            response = client.post(
                self.payload.token_url, data=self._form(), headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"OAuth2 token request to {self.payload.token_url} failed: {exc}") from exc
        finally:
            if self._client is None:
                client.close()

        if response.status_code >= 400:
            raise TransportError(
                f"OAuth2 token request to {self.payload.token_url} failed with HTTP {response.status_code}"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise TransportError(f"OAuth2 token response from {self.payload.token_url} is not JSON") from exc

        access_token = body.get("access_token") if isinstance(body, dict) else None
        if not access_token:
            raise TransportError(f"OAuth2 token response from {self.payload.token_url} has no access_token")
        expires_in = body.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS
        try:
            lifetime = float(expires_in)
        except (TypeError, ValueError) as exc:
            raise TransportError(
                f"OAuth2 token response from {self.payload.token_url} has a non-numeric expires_in: {expires_in!r}"
            ) from exc
        return self.cache.put(key, access_token, lifetime)

    def apply(self, target: HttpRequestOptions) -> None:
        target.set_header("Authorization", f"Bearer {self.token().access_token}")


class CertificateStrategy:
    def __init__(self, payload: ClientCertificate) -> None:
        _required(payload.cert_path, "cert_path", "Certificate")
        self.certificate = payload

    def apply(self, target: HttpRequestOptions) -> None:
        target.client_cert = self.certificate


# broker

def _security_protocol(use_ssl: bool) -> str:
    return "SASL_SSL" if use_ssl else "SASL_PLAINTEXT"


class SaslPlainStrategy:
    def __init__(self, payload: SaslPlainAuth) -> None:
        self.username = _required(payload.username, "username", "SASL/PLAIN")
        self.password = _required(payload.password, "password", "SASL/PLAIN")
        self.use_ssl = payload.use_ssl

    def apply(self, target: Dict[str, Any]) -> None:
        target["security.protocol"] = _security_protocol(self.use_ssl)
        target["sasl.mechanism"] = "PLAIN"
        target["sasl.username"] = self.username
        target["sasl.password"] = self.password


class SaslScramStrategy:
    def __init__(self, payload: SaslScramAuth, mechanism: str) -> None:
        self.username = _required(payload.username, "username", mechanism)
        self.password = _required(payload.password, "password", mechanism)
        self.use_ssl = payload.use_ssl
        self.mechanism = mechanism

    def apply(self, target: Dict[str, Any]) -> None:
        target["security.protocol"] = _security_protocol(self.use_ssl)
        target["sasl.mechanism"] = self.mechanism
        target["sasl.username"] = self.username
        target["sasl.password"] = self.password


class SslOverlay:
    """Writes ssl.* keys only; never touches security.protocol."""

    def __init__(self, payload: SslAuth, require_client_cert: bool = False) -> None:
        has_cert = bool(payload.certificate_location)
        has_key = bool(payload.key_location)
        if has_cert != has_key:
            raise ConfigurationError(
                "SSL client authentication requires both certificate_location and key_location"
            )
        if require_client_cert and not has_cert:
            raise ConfigurationError(
                "Mutual TLS requires certificate_location and key_location"
            )
        self.payload = payload

    def _values(self) -> Dict[str, Any]:
        p = self.payload
        values: Dict[str, Any] = {"enable.ssl.certificate.verification": bool(p.enable_verification)}
        if p.ca_location:
            values["ssl.ca.location"] = p.ca_location
        if p.certificate_location and p.key_location:
            values["ssl.certificate.location"] = p.certificate_location
            values["ssl.key.location"] = p.key_location
            if p.key_password:
                values["ssl.key.password"] = p.key_password
        return values

    def apply(self, target: Dict[str, Any]) -> None:
        target.update(self._values())


class SslStrategy:
    def __init__(self, payload: SslAuth, require_client_cert: bool = False) -> None:
        self.overlay = SslOverlay(payload, require_client_cert)

    def apply(self, target: Dict[str, Any]) -> None:
        target["security.protocol"] = "SSL"
        self.overlay.apply(target)
