from __future__ import annotations

import logging
from functools import partial
from typing import Optional

import httpx

from assured.auth.config import BrokerAuthConfig, BrokerAuthType, HttpAuthConfig, HttpAuthType
from assured.auth.strategies import (
    ApiKeyStrategy,
    BasicAuthStrategy,
    BearerTokenStrategy,
    BrokerAuthStrategy,
    CertificateStrategy,
    CompositeStrategy,
    CustomHeaderStrategy,
    HttpAuthStrategy,
    NoAuthStrategy,
    OAuth2Strategy,
    SaslPlainStrategy,
    SaslScramStrategy,
    SslOverlay,
    SslStrategy,
)
from assured.auth.token_cache import MemoryTokenCache
from assured.errors import ConfigurationError

logger = logging.getLogger(__name__)

# discriminant -> (payload attribute, strategy factory)
HTTP_STRATEGIES = {
    HttpAuthType.BASIC: ("basic", BasicAuthStrategy),
    HttpAuthType.BEARER: ("bearer", BearerTokenStrategy),
    HttpAuthType.API_KEY: ("api_key", ApiKeyStrategy),
    HttpAuthType.CUSTOM_HEADER: ("custom_header", CustomHeaderStrategy),
    HttpAuthType.OAUTH2: ("oauth2", OAuth2Strategy),
    HttpAuthType.CERTIFICATE: ("certificate", CertificateStrategy),
}

BROKER_STRATEGIES = {
    BrokerAuthType.SASL_PLAIN: ("sasl_plain", SaslPlainStrategy),
    BrokerAuthType.SASL_SCRAM_256: ("sasl_scram", partial(SaslScramStrategy, mechanism="SCRAM-SHA-256")),
    BrokerAuthType.SASL_SCRAM_512: ("sasl_scram", partial(SaslScramStrategy, mechanism="SCRAM-SHA-512")),
    BrokerAuthType.SSL: ("ssl", SslStrategy),
    BrokerAuthType.MUTUAL_TLS: ("ssl", partial(SslStrategy, require_client_cert=True)),
}


def _payload(config, field: str, type_name: str):
    payload = getattr(config, field)
    if payload is None:
        raise ConfigurationError(
            f"Authentication type {type_name} selected but the '{field}' configuration is missing"
        )
    return payload


def resolve_http_auth(
    config: Optional[HttpAuthConfig],
    token_cache: Optional[MemoryTokenCache] = None,
    token_client: Optional[httpx.Client] = None,
) -> HttpAuthStrategy:
    if config is None or config.type is HttpAuthType.NONE:
        return NoAuthStrategy()

    try:
        field, factory = HTTP_STRATEGIES[HttpAuthType(config.type)]
    except (KeyError, ValueError) as exc:
        raise ConfigurationError(f"Unsupported HTTP authentication type: {config.type!r}") from exc

    payload = _payload(config, field, HttpAuthType(config.type).name)
    if factory is OAuth2Strategy:
        strategy = OAuth2Strategy(payload, token_cache=token_cache, client=token_client)
    else:
        strategy = factory(payload)
    logger.debug("Resolved HTTP auth %s -> %s", config.type.name, type(strategy).__name__)
    return strategy


def resolve_broker_auth(config: Optional[BrokerAuthConfig]) -> BrokerAuthStrategy:
    """
    Map a broker auth config to its strategy.

    A SASL variant that also carries an `ssl` block resolves to the SASL
    strategy composed with an SslOverlay. The two write disjoint keys, so the
    order in which they are applied does not change the resulting config.
    """
    if config is None:
        return NoAuthStrategy()

    try:
        auth_type = BrokerAuthType(config.type)
    except ValueError as exc:
        raise ConfigurationError(f"Unsupported broker authentication type: {config.type!r}") from exc

    if auth_type is BrokerAuthType.NONE:
        if config.ssl is not None:
            return SslOverlay(config.ssl)
        return NoAuthStrategy()

    try:
        field, factory = BROKER_STRATEGIES[auth_type]
    except KeyError as exc:
        raise ConfigurationError(f"Unsupported broker authentication type: {config.type!r}") from exc

    strategy = factory(_payload(config, field, auth_type.name))
    if field != "ssl" and config.ssl is not None:
        strategy = CompositeStrategy(strategy, SslOverlay(config.ssl))
    logger.debug("Resolved broker auth %s -> %s", auth_type.name, type(strategy).__name__)
    return strategy
