"""HTTP transports for the Enginesis service endpoint.

Every request is a form POST to the single service URL. Two interchangeable
transports are provided; the queue uses the first one that reports itself
available:

- HttpxTransport: native asyncio client (preferred).
- RequestsTransport: blocking requests session run in a worker thread (fallback).

A transport either returns the HTTP response (any status) or raises TransportError
when no response was received at all; the queue treats the latter as "offline".
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

import httpx
import requests


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
_HEADERS = {"Accept": "application/json"}


class TransportError(Exception):
    """No HTTP response was received (DNS, connect, read timeout, closed client)."""


@dataclass
class TransportResponse:
    status_code: int
    text: str

    def json(self) -> Any:
        return json.loads(self.text)


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(_form_value(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value)
    return str(value)


def convert_params_to_form_data(parameters: Dict[str, Any]) -> Dict[str, str]:
    """Flatten a parameter mapping to form fields; callables and None are skipped."""

    form: Dict[str, str] = {}
    for key, value in parameters.items():
        if value is None or callable(value):
            continue
        form[key] = _form_value(value)
    return form


class Transport(ABC):
    name = "transport"

    def is_available(self) -> bool:
        return True

    @abstractmethod
    async def post_form(self, url: str, fields: Dict[str, str]) -> TransportResponse:
        raise NotImplementedError


class HttpxTransport(Transport):
    name = "httpx"

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._closed = False

    def is_available(self) -> bool:
        return not self._closed and not (self._client is not None and self._client.is_closed)

    async def post_form(self, url: str, fields: Dict[str, str]) -> TransportResponse:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        try:
            resp = await self._client.post(url, data=fields, headers=_HEADERS)
        except (httpx.HTTPError, RuntimeError) as exc:
            # RuntimeError: the client was closed under us
            logger.debug("httpx post to %s failed: %s", url, exc)
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc
        return TransportResponse(resp.status_code, resp.text)

    async def aclose(self) -> None:
        self._closed = True
        if self._client is not None and self._owns_client:
            await self._client.aclose()


class RequestsTransport(Transport):
    name = "requests"

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._session = session or requests.Session()
        self._timeout = timeout

    def _post(self, url: str, fields: Dict[str, str]) -> requests.Response:
        try:
            return self._session.post(url, data=fields, headers=_HEADERS, timeout=self._timeout)
        except requests.exceptions.ConnectionError:
            # one light retry for connections dropped by keep-alive reuse
            return self._session.post(url, data=fields, headers={**_HEADERS, "Connection": "close"}, timeout=self._timeout)

    async def post_form(self, url: str, fields: Dict[str, str]) -> TransportResponse:
        try:
            resp = await asyncio.to_thread(self._post, url, fields)
        except requests.exceptions.RequestException as exc:
            logger.debug("requests post to %s failed: %s", url, exc)
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc
        return TransportResponse(resp.status_code, resp.text)

    def close(self) -> None:
        self._session.close()


def select_transport(transports: Iterable[Transport]) -> Optional[Transport]:
    for transport in transports:
        if transport.is_available():
            return transport
    return None


def default_transports() -> list:
    return [HttpxTransport(), RequestsTransport()]


__all__ = [
    "HttpxTransport",
    "RequestsTransport",
    "Transport",
    "TransportError",
    "TransportResponse",
    "convert_params_to_form_data",
    "default_transports",
    "select_transport",
]
