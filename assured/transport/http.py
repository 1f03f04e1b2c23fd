from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import ssl
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import httpx

from assured.auth.config import ClientCertificate
from assured.errors import ConfigurationError, StepTimeoutError

logger = logging.getLogger(__name__)

SENSITIVE_HEADERS = {"authorization", "proxy-authorization", "x-api-key", "cookie", "set-cookie"}


def mask_headers(headers: Dict[str, Any]) -> Dict[str, Any]:
    return {k: ("***" if k.lower() in SENSITIVE_HEADERS else v) for k, v in headers.items()}


@dataclass
class HttpRequestOptions:
    """Mutable outgoing request that auth strategies write into before sending."""

    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    params: List[Tuple[str, str]] = field(default_factory=list)
    body: Any = None
    timeout: float = 30.0
    client_cert: Optional[ClientCertificate] = None

    def set_header(self, name: str, value: str) -> None:
        for existing in [k for k in self.headers if k.lower() == name.lower()]:
            del self.headers[existing]
        self.headers[name] = value

    def set_param(self, name: str, value: str) -> None:
        self.params = [(k, v) for k, v in self.params if k != name]
        self.params.append((name, value))


class _AsyncLoopThread:
    """Runs one asyncio loop on a daemon thread so blocking callers can share async clients."""

    def __init__(self) -> None:
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self._start()

    def _runner(self) -> None:
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        self._ready.set()
        self._loop.run_forever()
        self._loop.close()

    def _start(self) -> None:
        t = threading.Thread(target=self._runner, name="assured-http-loop", daemon=True)
        t.start()
        self._thread = t
        self._ready.wait()

    def submit(self, coro, timeout: Optional[float] = None):
        fut = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return fut.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            fut.cancel()
            raise

    def stop(self) -> None:
        if self._loop and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread is not None:
            self._thread.join(timeout=5)


def _ssl_context(cert: ClientCertificate, verify: bool) -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    if not verify:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    try:
        ctx.load_cert_chain(cert.cert_path, keyfile=cert.key_path, password=cert.password)
    except (OSError, ssl.SSLError) as exc:
        raise ConfigurationError(f"Cannot load client certificate '{cert.cert_path}': {exc}") from exc
    return ctx


class HttpTransport:
    """
    Blocking facade over one httpx.AsyncClient.

    Requests run on the shared loop thread; callers block until the response is
    read or the request timeout (plus a small grace period) elapses. Safe to use
    from many threads at once.
    """

    GRACE_SECONDS = 1.0

    def __init__(
        self,
        loop: _AsyncLoopThread,
        verify: bool = True,
        client_cert: Optional[ClientCertificate] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._loop = loop
        self.client_cert = client_cert

        kwargs: Dict[str, Any] = {"follow_redirects": False}
        if transport is not None:
            kwargs["transport"] = transport
        elif client_cert is not None:
            kwargs["verify"] = _ssl_context(client_cert, verify)
        else:
            kwargs["verify"] = verify
        self._client = httpx.AsyncClient(**kwargs)

    def send(self, options: HttpRequestOptions) -> httpx.Response:
        logger.debug("HTTP %s %s headers=%s", options.method, options.url, mask_headers(options.headers))
        try:
            return self._loop.submit(self._send(options), timeout=options.timeout + self.GRACE_SECONDS)
        except concurrent.futures.TimeoutError as exc:
            raise StepTimeoutError(
                f"HTTP {options.method} {options.url} did not complete within timeout of {options.timeout:g}s"
            ) from exc

    async def _send(self, options: HttpRequestOptions) -> httpx.Response:
        kwargs: Dict[str, Any] = {}
        if isinstance(options.body, (str, bytes, bytearray)):
            kwargs["content"] = options.body
        elif options.body is not None:
            kwargs["json"] = options.body

        return await self._client.request(
            options.method,
            options.url,
            headers=options.headers,
            params=options.params,
            timeout=options.timeout,
            **kwargs,
        )

    def close(self) -> None:
        self._loop.submit(self._client.aclose(), timeout=5)
