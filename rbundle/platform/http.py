"""HTTP client abstraction for the API store and the registry client.

This module provides:
- HttpClient: Protocol for HTTP exchanges (injectable for tests)
- RealHttpClient: Implementation using urllib
- MockHttpClient: Scripted implementation for tests

Any completed exchange is Ok, whatever its status code: the API store and
the registry client both need to look at 4xx responses (conflicts, auth
challenges). Err is reserved for exchanges that never completed.
"""

from __future__ import annotations

import json
import ssl
import urllib.error
import urllib.request
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from rbundle.core.result import Err, Ok, Result

__all__ = [
    "HttpClient",
    "HttpError",
    "HttpResponse",
    "MockHttpClient",
    "RealHttpClient",
    "RecordedCall",
    "decode_json",
]


@dataclass(frozen=True, slots=True)
class HttpError:
    """Transport failure (DNS, refused connection, timeout).

    Attributes:
        url: The URL that failed
        message: Human-readable error message
    """

    url: str
    message: str

    def __str__(self) -> str:
        return f"{self.message} ({self.url})"


@dataclass(frozen=True, slots=True)
class HttpResponse:
    """A completed HTTP exchange. Header names are lower-cased."""

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


def decode_json(response: HttpResponse, *, url: str) -> Result[object, HttpError]:
    if not response.body:
        return Ok(None)
    try:
        return Ok(json.loads(response.body.decode("utf-8")))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        return Err(HttpError(url=url, message=f"JSON parse error: {e}"))


@runtime_checkable
class HttpClient(Protocol):
    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
    ) -> Result[HttpResponse, HttpError]:
        """Perform one HTTP exchange.

        Args:
            method: HTTP verb
            url: Absolute URL
            headers: Extra request headers
            body: Raw request body

        Returns:
            Ok with the response (any status), or Err with HttpError
        """
        ...


class RealHttpClient:
    """HTTP client using urllib with system certificates."""

    def __init__(self, timeout: float = 60.0, user_agent: str = "rbundle/0.1.0") -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self._ssl_context = ssl.create_default_context()

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
    ) -> Result[HttpResponse, HttpError]:
        all_headers = {"User-Agent": self.user_agent, **(headers or {})}
        req = urllib.request.Request(url, data=body, headers=all_headers, method=method)
        try:
            with urllib.request.urlopen(
                req,
                timeout=self.timeout,
                context=self._ssl_context,
            ) as response:
                return Ok(
                    HttpResponse(
                        status=response.status,
                        headers={k.lower(): v for k, v in response.headers.items()},
                        body=response.read(),
                    )
                )
        except urllib.error.HTTPError as e:
            # Non-2xx statuses are still completed exchanges.
            return Ok(
                HttpResponse(
                    status=e.code,
                    headers={k.lower(): v for k, v in (e.headers or {}).items()},
                    body=e.read() or b"",
                )
            )
        except urllib.error.URLError as e:
            return Err(HttpError(url=url, message=str(e.reason)))
        except TimeoutError:
            return Err(HttpError(url=url, message="Request timed out"))
        except (ValueError, OSError) as e:
            return Err(HttpError(url=url, message=str(e)))


@dataclass(frozen=True, slots=True)
class RecordedCall:
    method: str
    url: str
    headers: Mapping[str, str]
    body: bytes | None

    def json(self) -> object:
        return json.loads(self.body or b"null")


class MockHttpClient:
    """Scripted HTTP client for tests.

    Responses are queued per (method, url). Each call pops the next queued
    response; the last one keeps answering. Unknown routes answer 404.

    Usage:
        http = MockHttpClient()
        http.add_json("GET", "https://api.example.com/v6/release", {"d": []})
        result = http.request("GET", "https://api.example.com/v6/release")
    """

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], list[HttpResponse | HttpError]] = {}
        self.calls: list[RecordedCall] = []

    def add(self, method: str, url: str, response: HttpResponse | HttpError) -> None:
        self._routes.setdefault((method.upper(), url), []).append(response)

    def add_json(
        self,
        method: str,
        url: str,
        payload: object,
        *,
        status: int = 200,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.add(
            method,
            url,
            HttpResponse(
                status=status,
                headers={"content-type": "application/json", **(headers or {})},
                body=json.dumps(payload).encode("utf-8"),
            ),
        )

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
    ) -> Result[HttpResponse, HttpError]:
        self.calls.append(RecordedCall(method.upper(), url, dict(headers or {}), body))

        queue = self._routes.get((method.upper(), url))
        if not queue:
            return Ok(HttpResponse(status=404, body=b"Not found (mock)"))

        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, HttpError):
            return Err(response)
        return Ok(response)

    def calls_to(self, method: str, url_prefix: str) -> list[RecordedCall]:
        return [c for c in self.calls if c.method == method.upper() and c.url.startswith(url_prefix)]
