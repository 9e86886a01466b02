"""
Transport capability: sends one prepared request and returns the response.

The lifecycle only depends on ``Transport``; ``HttpxTransport`` is the
default implementation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import httpx

from shared.config import get_settings
from shared.errors import ConfigurationError, TransportError
from shared.logging import get_logger


FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# keyword arguments of httpx.AsyncClient.request a caller may pass through
REQUEST_OPTIONS = frozenset({
    "params", "cookies", "auth", "follow_redirects", "timeout", "extensions", "headers",
})


@dataclass
class PreparedRequest:
    """Everything a transport needs for one attempt.

    ``body_encoding`` is ``"form"`` for a single-part form body,
    ``"multipart"`` for a single-part multipart body, or None without a body.
    ``extra`` holds caller options handed to the client as-is.
    """
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None
    body_encoding: Optional[str] = None
    binary: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TransportResponse:
    """What came back: text, or raw bytes for binary requests."""
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Union[str, bytes, None] = None


class Transport(ABC):
    """Abstract network transport."""

    # seconds the transport itself waits before giving up
    timeout: float

    @abstractmethod
    async def send(self, request: PreparedRequest) -> TransportResponse:
        """Perform one request.

        Raises TransportError on connection failures or malformed responses.
        Cancelling the awaiting task aborts the call.
        """
        ...

    async def aclose(self) -> None:
        """Release pooled resources, if any."""
        return None


class HttpxTransport(Transport):
    """Transport backed by httpx.AsyncClient."""

    def __init__(self,
                 timeout: Optional[float] = None,
                 verify: Optional[bool] = None,
                 client: Optional[httpx.AsyncClient] = None,
                 http_transport: Optional[httpx.AsyncBaseTransport] = None):
        settings = get_settings()
        self.timeout = timeout if timeout is not None else settings.transport_timeout
        self.verify = verify if verify is not None else settings.verify_tls
        self.logger = get_logger("advanced_request.transport")
        # An injected client is reused and owned by the caller; otherwise a
        # client is opened per call.
        self._client = client
        self._http_transport = http_transport

    def _client_kwargs(self) -> Dict[str, object]:
        kwargs: Dict[str, object] = {
            "timeout": httpx.Timeout(self.timeout),
            "verify": self.verify,
            "follow_redirects": True,
        }
        if self._http_transport is not None:
            kwargs["transport"] = self._http_transport
        return kwargs

    @staticmethod
    def _request_kwargs(request: PreparedRequest) -> Dict[str, object]:
        unknown = sorted(set(request.extra) - REQUEST_OPTIONS)
        if unknown:
            raise ConfigurationError(
                "Unsupported request options",
                details={"options": unknown, "supported": sorted(REQUEST_OPTIONS)}
            )

        extra = dict(request.extra)
        headers = dict(request.headers)
        headers.update(extra.pop("headers", None) or {})
        kwargs: Dict[str, object] = {"headers": headers}
        kwargs.update(extra)

        if request.body is not None:
            if request.body_encoding == "multipart":
                kwargs["files"] = {"body": (None, request.body.encode("utf-8"))}
            else:
                if not any(key.lower() == "content-type" for key in headers):
                    headers["Content-Type"] = FORM_CONTENT_TYPE
                kwargs["content"] = request.body.encode("utf-8")

        return kwargs

    async def _send(self, client: httpx.AsyncClient, request: PreparedRequest) -> TransportResponse:
        response = await client.request(request.method, request.url, **self._request_kwargs(request))
        body: Union[str, bytes] = response.content if request.binary else response.text
        return TransportResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=body
        )

    async def send(self, request: PreparedRequest) -> TransportResponse:
        try:
            if self._client is not None:
                return await self._send(self._client, request)
            async with httpx.AsyncClient(**self._client_kwargs()) as client:
                return await self._send(client, request)
        except httpx.TimeoutException as e:
            self.logger.warning("Transport timeout", url=request.url, error=str(e))
            raise TransportError(
                f"Transport timeout: {e}",
                details={"url": request.url, "timeout": self.timeout}
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            self.logger.warning("Transport request error", url=request.url, error=str(e))
            raise TransportError(
                f"Transport error: {e}",
                details={"url": request.url, "error_type": type(e).__name__}
            )
