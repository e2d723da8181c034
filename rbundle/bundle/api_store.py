"""RemoteStore backed by the deployment API's OData endpoints."""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from time import sleep as _sleep
from urllib.parse import quote

from rbundle.core.result import Err, Ok, Result
from rbundle.core.structured import StrDict, as_obj_list, as_str_dict
from rbundle.platform.http import HttpClient, HttpError, HttpResponse, decode_json
from rbundle.bundle.store import QueryOptions, StoreError

API_VERSION = "v6"
READ_RETRY_ATTEMPTS = 3
READ_RETRY_DELAY_SECONDS = 1.0

_TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})
_QUERY_SAFE = "(),=;$'*/:@"


def render_literal(value: object) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    text = str(value).replace("'", "''")
    return f"'{text}'"


def _render_condition(field_name: str, condition: object) -> list[str]:
    cond = as_str_dict(condition)
    if cond is None:
        return [f"{field_name} eq {render_literal(condition)}"]

    out: list[str] = []
    for op, operand in cond.items():
        if op == "$eq":
            out.append(f"{field_name} eq {render_literal(operand)}")
        elif op == "$ne":
            out.append(f"{field_name} ne {render_literal(operand)}")
        elif op == "$in":
            values = as_obj_list(operand) or []
            alts = " or ".join(f"{field_name} eq {render_literal(v)}" for v in values)
            out.append(f"({alts})" if alts else "false")
    return out


def render_filter(flt: Mapping[str, object]) -> str:
    """Render a filter dict as an OData $filter expression."""
    clauses: list[str] = []
    for key, condition in flt.items():
        if key in ("$or", "$and"):
            branches = [
                render_filter(b) for b in (as_obj_list(condition) or []) if isinstance(b, Mapping)
            ]
            joiner = " or " if key == "$or" else " and "
            if branches:
                clauses.append("(" + joiner.join(f"({b})" for b in branches) + ")")
            continue
        clauses.extend(_render_condition(key, condition))
    return " and ".join(clauses)


def _option_pairs(options: Mapping[str, object]) -> list[tuple[str, str]]:
    parts: list[tuple[str, str]] = []
    select = options.get("$select")
    if isinstance(select, list):
        parts.append(("$select", ",".join(str(s) for s in select)))
    elif isinstance(select, str):
        parts.append(("$select", select))

    flt = as_str_dict(options.get("$filter"))
    if flt:
        parts.append(("$filter", render_filter(flt)))

    expand = options.get("$expand")
    if expand is not None:
        parts.append(("$expand", render_expand(expand)))

    orderby = options.get("$orderby")
    if isinstance(orderby, str):
        parts.append(("$orderby", orderby))
    elif isinstance(orderby, list):
        parts.append(("$orderby", ",".join(str(o) for o in orderby)))

    top = options.get("$top")
    if isinstance(top, int):
        parts.append(("$top", str(top)))
    return parts


def render_expand(expand: object) -> str:
    if isinstance(expand, str):
        return expand
    if isinstance(expand, list):
        return ",".join(str(e) for e in expand)
    expand_tree = as_str_dict(expand) or {}
    out: list[str] = []
    for name, nested_obj in expand_tree.items():
        nested = as_str_dict(nested_obj) or {}
        inner = ";".join(f"{k}={v}" for k, v in _option_pairs(nested))
        out.append(f"{name}({inner})" if inner else name)
    return ",".join(out)


def render_query(options: QueryOptions | None) -> str:
    if not options:
        return ""
    pairs = _option_pairs(options)
    if not pairs:
        return ""
    return "?" + "&".join(f"{k}={quote(v, safe=_QUERY_SAFE)}" for k, v in pairs)


class ApiStore:
    """OData client for the deployment API.

    Idempotent reads are retried on transient failures (network errors,
    429 and 5xx) with a linear backoff. Writes are never retried.
    """

    def __init__(
        self,
        http: HttpClient,
        *,
        api_url: str,
        token: str | None,
        api_version: str = API_VERSION,
        retry_attempts: int = READ_RETRY_ATTEMPTS,
        retry_delay: float = READ_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = _sleep,
    ) -> None:
        self._http = http
        self._base = f"{api_url.rstrip('/')}/{api_version}"
        self._token = token
        self._retry_attempts = max(1, retry_attempts)
        self._retry_delay = retry_delay
        self._sleep = sleep

    def _headers(self, *, json_body: bool = False) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _error(self, resource: str, response: HttpResponse) -> StoreError:
        message = response.text().strip() or "request failed"
        return StoreError(resource=resource, message=message, status=response.status)

    def _read(self, resource: str, url: str) -> Result[object, StoreError]:
        failure = StoreError(resource=resource, message="no attempt made")
        for attempt in range(self._retry_attempts):
            result = self._http.request("GET", url, headers=self._headers())
            if isinstance(result, Err):
                failure = StoreError(resource=resource, message=str(result.error))
            elif result.value.status in _TRANSIENT_STATUSES:
                failure = self._error(resource, result.value)
            elif not result.value.ok:
                return Err(self._error(resource, result.value))
            else:
                decoded = decode_json(result.value, url=url)
                if isinstance(decoded, Err):
                    return Err(StoreError(resource=resource, message=str(decoded.error)))
                return decoded

            if attempt < self._retry_attempts - 1:
                self._sleep(self._retry_delay * (attempt + 1))

        return Err(failure)

    def _write(
        self, method: str, resource: str, url: str, body: Mapping[str, object] | None
    ) -> Result[HttpResponse, StoreError]:
        payload = json.dumps(dict(body)).encode("utf-8") if body is not None else None
        result: Result[HttpResponse, HttpError] = self._http.request(
            method, url, headers=self._headers(json_body=payload is not None), body=payload
        )
        if isinstance(result, Err):
            return Err(StoreError(resource=resource, message=str(result.error)))
        if not result.value.ok:
            return Err(self._error(resource, result.value))
        return Ok(result.value)

    def get(
        self, resource: str, *, options: QueryOptions | None = None
    ) -> Result[list[StrDict], StoreError]:
        url = f"{self._base}/{resource}{render_query(options)}"
        obj = self._read(resource, url)
        if isinstance(obj, Err):
            return obj
        data = as_str_dict(obj.value)
        rows = as_obj_list(data.get("d")) if data is not None else None
        if rows is None:
            return Err(StoreError(resource=resource, message="unexpected collection payload"))
        return Ok([r for r in (as_str_dict(item) for item in rows) if r is not None])

    def get_by_id(
        self, resource: str, id: int, *, options: QueryOptions | None = None
    ) -> Result[StrDict | None, StoreError]:
        url = f"{self._base}/{resource}({id}){render_query(options)}"
        obj = self._read(resource, url)
        if isinstance(obj, Err):
            if obj.error.status == 404:
                return Ok(None)
            return obj
        data = as_str_dict(obj.value)
        rows = as_obj_list(data.get("d")) if data is not None else None
        if rows is None:
            return Err(StoreError(resource=resource, message="unexpected entity payload"))
        return Ok(as_str_dict(rows[0]) if rows else None)

    def post(self, resource: str, body: Mapping[str, object]) -> Result[StrDict, StoreError]:
        url = f"{self._base}/{resource}"
        result = self._write("POST", resource, url, body)
        if isinstance(result, Err):
            return result
        decoded = decode_json(result.value, url=url)
        created = as_str_dict(decoded.value) if isinstance(decoded, Ok) else None
        if created is None or not isinstance(created.get("id"), int):
            return Err(StoreError(resource=resource, message="created entity has no id"))
        return Ok(created)

    def patch(
        self, resource: str, id: int, body: Mapping[str, object]
    ) -> Result[None, StoreError]:
        result = self._write("PATCH", resource, f"{self._base}/{resource}({id})", body)
        if isinstance(result, Err):
            return result
        return Ok(None)

    def delete(self, resource: str, id: int) -> Result[None, StoreError]:
        result = self._write("DELETE", resource, f"{self._base}/{resource}({id})", None)
        if isinstance(result, Err):
            return result
        return Ok(None)

    def get_or_create(
        self,
        resource: str,
        natural_key: Mapping[str, object],
        body: Mapping[str, object],
    ) -> Result[StrDict, StoreError]:
        existing = self.get(resource, options={"$filter": dict(natural_key), "$top": 1})
        if isinstance(existing, Err):
            return existing
        if existing.value:
            return Ok(existing.value[0])
        return self.post(resource, body)
