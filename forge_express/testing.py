"""Test utilities for Forge Express.

``AsgiClient`` drives an application in-process through its ASGI
interface, so tests exercise the kernel, the stack and the middleware
exactly as a server would, without opening sockets.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import quote, unquote, urlencode

import orjson
from multidict import CIMultiDict


@dataclass
class ClientResponse:
    """A response captured from the application."""

    status: int
    headers: CIMultiDict
    body: bytes

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")

    def json(self) -> Any:
        return orjson.loads(self.body)


class AsgiClient:
    """In-process client for an ASGI application.

    Args:
        app: The ASGI application, usually an ``App``.
        timeout: Seconds to wait for a response before failing. A request
            that no middleware ever finalizes fails with ``TimeoutError``.
        client: Address reported as the peer of every request.
    """

    def __init__(
        self,
        app: Any,
        timeout: float = 5.0,
        client: Tuple[str, int] = ("127.0.0.1", 50000),
    ) -> None:
        self._app = app
        self._timeout = timeout
        self._client = client

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        body: bytes = b"",
        json: Any = None,
        form: Optional[Mapping[str, Any]] = None,
        scheme: str = "http",
    ) -> ClientResponse:
        """Send a request and collect the response.

        Args:
            method: HTTP method.
            url: Path with an optional query string.
            headers: Request headers.
            body: Raw request body.
            json: Value to send as a JSON body.
            form: Mapping to send as a urlencoded body.
            scheme: ``http`` or ``https``.

        Returns:
            The captured response.
        """
        header_map = CIMultiDict(headers or {})
        if json is not None:
            body = orjson.dumps(json)
            header_map.setdefault("Content-Type", "application/json")
        elif form is not None:
            body = urlencode(form, doseq=True).encode("utf-8")
            header_map.setdefault("Content-Type", "application/x-www-form-urlencoded")
        header_map.setdefault("Host", "testserver")
        if body:
            header_map.setdefault("Content-Length", str(len(body)))

        path, _, query = url.partition("?")
        scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": method,
            "scheme": scheme,
            "path": unquote(path),
            "raw_path": quote(path, safe="/%:@!$&'()*+,;=").encode("latin-1"),
            "query_string": query.encode("latin-1"),
            "root_path": "",
            "headers": [
                (name.lower().encode("latin-1"), value.encode("latin-1"))
                for name, value in header_map.items()
            ],
            "client": self._client,
            "server": ("testserver", 443 if scheme == "https" else 80),
        }

        messages: List[Dict[str, Any]] = [{"type": "http.request", "body": body, "more_body": False}]

        async def receive() -> Dict[str, Any]:
            if messages:
                return messages.pop(0)
            return {"type": "http.disconnect"}

        sent: List[Dict[str, Any]] = []

        async def send(message: Dict[str, Any]) -> None:
            sent.append(message)

        await asyncio.wait_for(self._app(scope, receive, send), self._timeout)

        start = next(message for message in sent if message["type"] == "http.response.start")
        response_headers = CIMultiDict(
            (name.decode("latin-1"), value.decode("latin-1"))
            for name, value in start.get("headers", [])
        )
        response_body = b"".join(
            message.get("body", b"") for message in sent if message["type"] == "http.response.body"
        )
        return ClientResponse(start["status"], response_headers, response_body)

    async def get(self, url: str, **kwargs: Any) -> ClientResponse:
        return await self.request("GET", url, **kwargs)

    async def head(self, url: str, **kwargs: Any) -> ClientResponse:
        return await self.request("HEAD", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> ClientResponse:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> ClientResponse:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> ClientResponse:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> ClientResponse:
        return await self.request("DELETE", url, **kwargs)

    async def options(self, url: str, **kwargs: Any) -> ClientResponse:
        return await self.request("OPTIONS", url, **kwargs)
