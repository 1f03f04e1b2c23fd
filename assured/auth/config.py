from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from assured.errors import ConfigurationError


class HttpAuthType(str, Enum):
    NONE = "none"
    BASIC = "basic"
    BEARER = "bearer"
    API_KEY = "api_key"
    CUSTOM_HEADER = "custom_header"
    OAUTH2 = "oauth2"
    CERTIFICATE = "certificate"


class BrokerAuthType(str, Enum):
    NONE = "none"
    SASL_PLAIN = "sasl_plain"
    SASL_SCRAM_256 = "sasl_scram_256"
    SASL_SCRAM_512 = "sasl_scram_512"
    SSL = "ssl"
    MUTUAL_TLS = "mutual_tls"


class ApiKeyLocation(str, Enum):
    HEADER = "header"
    QUERY = "query"


class OAuth2GrantType(str, Enum):
    CLIENT_CREDENTIALS = "client_credentials"
    PASSWORD = "password"
    REFRESH_TOKEN = "refresh_token"
    AUTHORIZATION_CODE = "authorization_code"


# HTTP payloads

@dataclass(frozen=True)
class BasicAuth:
    username: str
    password: str


@dataclass(frozen=True)
class BearerAuth:
    token: str
    prefix: str = "Bearer"


@dataclass(frozen=True)
class ApiKeyAuth:
    value: str
    name: str = "X-API-Key"
    location: ApiKeyLocation = ApiKeyLocation.HEADER


@dataclass(frozen=True)
class CustomHeaderAuth:
    headers: Tuple[Tuple[str, str], ...]


@dataclass(frozen=True)
class OAuth2Auth:
    token_url: str
    client_id: str
    client_secret: str
    grant_type: OAuth2GrantType = OAuth2GrantType.CLIENT_CREDENTIALS
    scopes: Tuple[str, ...] = ()
    username: Optional[str] = None
    password: Optional[str] = None
    refresh_token: Optional[str] = None
    authorization_code: Optional[str] = None
    redirect_uri: Optional[str] = None
    additional_parameters: Tuple[Tuple[str, str], ...] = ()


@dataclass(frozen=True)
class ClientCertificate:
    cert_path: str
    key_path: Optional[str] = None
    password: Optional[str] = None


# broker payloads

@dataclass(frozen=True)
class SaslPlainAuth:
    username: str
    password: str
    use_ssl: bool = True


@dataclass(frozen=True)
class SaslScramAuth:
    username: str
    password: str
    use_ssl: bool = True


@dataclass(frozen=True)
class SslAuth:
    ca_location: Optional[str] = None
    certificate_location: Optional[str] = None
    key_location: Optional[str] = None
    key_password: Optional[str] = None
    enable_verification: bool = True


@dataclass(frozen=True)
class HttpAuthConfig:
    """One active HTTP auth variant, selected by `type`."""

    type: HttpAuthType = HttpAuthType.NONE
    basic: Optional[BasicAuth] = None
    bearer: Optional[BearerAuth] = None
    api_key: Optional[ApiKeyAuth] = None
    custom_header: Optional[CustomHeaderAuth] = None
    oauth2: Optional[OAuth2Auth] = None
    certificate: Optional[ClientCertificate] = None

    @classmethod
    def none(cls) -> "HttpAuthConfig":
        return cls()

    @classmethod
    def basic_auth(cls, username: str, password: str) -> "HttpAuthConfig":
        return cls(type=HttpAuthType.BASIC, basic=BasicAuth(username, password))

    @classmethod
    def bearer_token(cls, token: str, prefix: str = "Bearer") -> "HttpAuthConfig":
        return cls(type=HttpAuthType.BEARER, bearer=BearerAuth(token, prefix))

    @classmethod
    def api_key_auth(
        cls, value: str, name: str = "X-API-Key", location: ApiKeyLocation = ApiKeyLocation.HEADER
    ) -> "HttpAuthConfig":
        return cls(type=HttpAuthType.API_KEY, api_key=ApiKeyAuth(value, name, ApiKeyLocation(location)))

    @classmethod
    def custom_headers(cls, headers: Dict[str, str]) -> "HttpAuthConfig":
        return cls(
            type=HttpAuthType.CUSTOM_HEADER,
            custom_header=CustomHeaderAuth(tuple((str(k), str(v)) for k, v in headers.items())),
        )

    @classmethod
    def oauth2_auth(cls, oauth2: OAuth2Auth) -> "HttpAuthConfig":
        return cls(type=HttpAuthType.OAUTH2, oauth2=oauth2)

    @classmethod
    def client_certificate(
        cls, cert_path: str, key_path: Optional[str] = None, password: Optional[str] = None
    ) -> "HttpAuthConfig":
        return cls(
            type=HttpAuthType.CERTIFICATE,
            certificate=ClientCertificate(cert_path, key_path, password),
        )


@dataclass(frozen=True)
class BrokerAuthConfig:
    """
    One active broker auth variant plus an optional `ssl` block.

    The ssl block is used on its own for SSL / MUTUAL_TLS, and as a transport
    overlay on top of the SASL variants.
    """

    type: BrokerAuthType = BrokerAuthType.NONE
    sasl_plain: Optional[SaslPlainAuth] = None
    sasl_scram: Optional[SaslScramAuth] = None
    ssl: Optional[SslAuth] = None

    @classmethod
    def none(cls) -> "BrokerAuthConfig":
        return cls()

    @classmethod
    def plain(
        cls, username: str, password: str, use_ssl: bool = True, ssl: Optional[SslAuth] = None
    ) -> "BrokerAuthConfig":
        return cls(type=BrokerAuthType.SASL_PLAIN, sasl_plain=SaslPlainAuth(username, password, use_ssl), ssl=ssl)

    @classmethod
    def scram_256(
        cls, username: str, password: str, use_ssl: bool = True, ssl: Optional[SslAuth] = None
    ) -> "BrokerAuthConfig":
        return cls(type=BrokerAuthType.SASL_SCRAM_256, sasl_scram=SaslScramAuth(username, password, use_ssl), ssl=ssl)

    @classmethod
    def scram_512(
        cls, username: str, password: str, use_ssl: bool = True, ssl: Optional[SslAuth] = None
    ) -> "BrokerAuthConfig":
        return cls(type=BrokerAuthType.SASL_SCRAM_512, sasl_scram=SaslScramAuth(username, password, use_ssl), ssl=ssl)

    @classmethod
    def ssl_only(cls, ssl: SslAuth) -> "BrokerAuthConfig":
        return cls(type=BrokerAuthType.SSL, ssl=ssl)

    @classmethod
    def mutual_tls(cls, ssl: SslAuth) -> "BrokerAuthConfig":
        return cls(type=BrokerAuthType.MUTUAL_TLS, ssl=ssl)


def _section(raw: Dict[str, Any], key: str) -> Optional[Dict[str, Any]]:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigurationError(f"authentication.{key} must be a mapping, got {type(value).__name__}")
    return value


def _build(payload_cls, raw: Optional[Dict[str, Any]], where: str):
    if raw is None:
        return None
    try:
        return payload_cls(**raw)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid authentication.{where} block: {exc}") from exc


def http_auth_from_dict(raw: Optional[Dict[str, Any]]) -> Optional[HttpAuthConfig]:
    """Build an HttpAuthConfig from a settings-file mapping."""
    if not raw:
        return None
    try:
        auth_type = HttpAuthType(str(raw.get("type", "none")).lower())
    except ValueError as exc:
        raise ConfigurationError(f"Unknown HTTP authentication type: {raw.get('type')!r}") from exc

    api_key = _section(raw, "api_key")
    if api_key is not None and "location" in api_key:
        api_key = dict(api_key, location=ApiKeyLocation(str(api_key["location"]).lower()))

    custom = _section(raw, "custom_header")
    custom_payload = None
    if custom is not None:
        custom_payload = CustomHeaderAuth(tuple((str(k), str(v)) for k, v in custom.items()))

    oauth2 = _section(raw, "oauth2")
    if oauth2 is not None:
        oauth2 = dict(oauth2)
        if "grant_type" in oauth2:
            try:
                oauth2["grant_type"] = OAuth2GrantType(oauth2["grant_type"])
            except ValueError as exc:
                raise ConfigurationError(f"Unknown OAuth2 grant type: {oauth2['grant_type']!r}") from exc
        oauth2["scopes"] = tuple(oauth2.get("scopes") or ())
        oauth2["additional_parameters"] = tuple((oauth2.get("additional_parameters") or {}).items())

    return HttpAuthConfig(
        type=auth_type,
        basic=_build(BasicAuth, _section(raw, "basic"), "basic"),
        bearer=_build(BearerAuth, _section(raw, "bearer"), "bearer"),
        api_key=_build(ApiKeyAuth, api_key, "api_key"),
        custom_header=custom_payload,
        oauth2=_build(OAuth2Auth, oauth2, "oauth2"),
        certificate=_build(ClientCertificate, _section(raw, "certificate"), "certificate"),
    )


def broker_auth_from_dict(raw: Optional[Dict[str, Any]]) -> Optional[BrokerAuthConfig]:
    if not raw:
        return None
    try:
        auth_type = BrokerAuthType(str(raw.get("type", "none")).lower())
    except ValueError as exc:
        raise ConfigurationError(f"Unknown broker authentication type: {raw.get('type')!r}") from exc

    return BrokerAuthConfig(
        type=auth_type,
        sasl_plain=_build(SaslPlainAuth, _section(raw, "sasl_plain"), "sasl_plain"),
        sasl_scram=_build(SaslScramAuth, _section(raw, "sasl_scram"), "sasl_scram"),
        ssl=_build(SslAuth, _section(raw, "ssl"), "ssl"),
    )
