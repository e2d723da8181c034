"""Remote data store boundary.

The apply and create pipelines only ever talk to a RemoteStore: typed CRUD
primitives over the API's resources, driven by structured query options.
They never build sessions or credentials themselves; callers hand them an
already authenticated store.

Query options follow the API's OData dialect, expressed as dicts:

    {
        "$select": ["id", "semver"],
        "$filter": {
            "belongs_to__application": 12,
            "status": "success",
            "$or": [{"commit": "abc"}, {"semver": "1.2.3"}],
            "revision": {"$ne": None},
        },
        "$expand": {"release_tag": {"$select": ["tag_key", "value"]}},
        "$orderby": "revision desc",
        "$top": 1,
    }

To-one expansions come back as one-element lists, as the API returns them.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from rbundle.core.result import Err, Ok, Result
from rbundle.core.structured import StrDict, as_str_dict

__all__ = [
    "MemoryStore",
    "QueryOptions",
    "Relation",
    "RemoteStore",
    "StoreError",
    "RELATIONS",
    "matches_filter",
]

QueryOptions = Mapping[str, object]


@dataclass(frozen=True, slots=True)
class StoreError:
    resource: str
    message: str
    status: int = 0

    def __str__(self) -> str:
        if self.status:
            return f"{self.resource}: HTTP {self.status}: {self.message}"
        return f"{self.resource}: {self.message}"


@runtime_checkable
class RemoteStore(Protocol):
    def get(
        self, resource: str, *, options: QueryOptions | None = None
    ) -> Result[list[StrDict], StoreError]: ...

    def get_by_id(
        self, resource: str, id: int, *, options: QueryOptions | None = None
    ) -> Result[StrDict | None, StoreError]: ...

    def post(self, resource: str, body: Mapping[str, object]) -> Result[StrDict, StoreError]: ...

    def patch(
        self, resource: str, id: int, body: Mapping[str, object]
    ) -> Result[None, StoreError]: ...

    def delete(self, resource: str, id: int) -> Result[None, StoreError]: ...

    def get_or_create(
        self,
        resource: str,
        natural_key: Mapping[str, object],
        body: Mapping[str, object],
    ) -> Result[StrDict, StoreError]: ...


@dataclass(frozen=True, slots=True)
class Relation:
    """Navigation from one resource to another.

    For to-many relations ``key`` is the field on the target that points
    back; for to-one relations it is the field on the source holding the
    target id.
    """

    target: str
    key: str
    many: bool


RELATIONS: dict[tuple[str, str], Relation] = {
    ("release", "release_tag"): Relation("release_tag", "release", many=True),
    ("release", "release_image"): Relation(
        "image__is_part_of__release", "is_part_of__release", many=True
    ),
    ("release", "belongs_to__application"): Relation(
        "application", "belongs_to__application", many=False
    ),
    ("image__is_part_of__release", "image"): Relation("image", "image", many=False),
    ("image", "is_a_build_of__service"): Relation(
        "service", "is_a_build_of__service", many=False
    ),
    ("service", "application"): Relation("application", "application", many=False),
}


def _field_matches(value: object, condition: object) -> bool:
    cond = as_str_dict(condition)
    if cond is None:
        return value == condition
    for op, operand in cond.items():
        if op == "$eq" and value != operand:
            return False
        if op == "$ne" and value == operand:
            return False
        if op == "$in" and (not isinstance(operand, list) or value not in operand):
            return False
    return True


def matches_filter(row: Mapping[str, object], flt: Mapping[str, object]) -> bool:
    for key, condition in flt.items():
        if key == "$or":
            branches = condition if isinstance(condition, list) else []
            if not any(
                matches_filter(row, b) for b in branches if isinstance(b, Mapping)
            ):
                return False
        elif key == "$and":
            branches = condition if isinstance(condition, list) else []
            if not all(
                matches_filter(row, b) for b in branches if isinstance(b, Mapping)
            ):
                return False
        elif not _field_matches(row.get(key), condition):
            return False
    return True


def _order_key(value: object) -> tuple[int, object]:
    # nulls first, like the API
    if value is None:
        return (0, 0)
    return (1, value)


class MemoryStore:
    """In-process RemoteStore.

    Serves as the target in tests and in dry runs. Ids are allocated per
    resource starting at 1. ``calls`` records every mutation in order.
    """

    def __init__(self, relations: Mapping[tuple[str, str], Relation] | None = None) -> None:
        self._relations = dict(RELATIONS if relations is None else relations)
        self._tables: dict[str, dict[int, StrDict]] = {}
        self._next_id: dict[str, int] = {}
        self._failures: dict[tuple[str, str], tuple[int, str]] = {}
        self._lock = threading.RLock()
        self.calls: list[tuple[str, str, object]] = []

    # -- test helpers -----------------------------------------------------

    def seed(self, resource: str, row: Mapping[str, object]) -> int:
        """Insert a row directly, bypassing the call log and failures."""
        with self._lock:
            return self._insert(resource, row)

    def rows(self, resource: str, **where: object) -> list[StrDict]:
        with self._lock:
            table = self._tables.get(resource, {})
            return [dict(r) for r in table.values() if matches_filter(r, where)]

    def fail_on(
        self, method: str, resource: str, *, message: str = "injected failure", after: int = 0
    ) -> None:
        """Make the (after + 1)-th ``method`` call on ``resource`` fail."""
        self._failures[(method, resource)] = (after, message)

    def calls_for(self, method: str, resource: str | None = None) -> list[object]:
        return [
            payload
            for m, r, payload in self.calls
            if m == method and (resource is None or r == resource)
        ]

    # -- internals ----------------------------------------------------------

    def _insert(self, resource: str, row: Mapping[str, object]) -> int:
        table = self._tables.setdefault(resource, {})
        row_id = row.get("id")
        if not isinstance(row_id, int):
            row_id = self._next_id.get(resource, 1)
        self._next_id[resource] = max(self._next_id.get(resource, 1), row_id + 1)
        table[row_id] = {**row, "id": row_id}
        return row_id

    def _check_failure(self, method: str, resource: str) -> StoreError | None:
        key = (method, resource)
        if key not in self._failures:
            return None
        remaining, message = self._failures[key]
        if remaining > 0:
            self._failures[key] = (remaining - 1, message)
            return None
        del self._failures[key]
        return StoreError(resource=resource, message=message, status=500)

    def _expand(self, resource: str, row: StrDict, expand: object) -> StrDict:
        expand_tree: Mapping[str, object]
        if isinstance(expand, str):
            expand_tree = {expand: {}}
        elif isinstance(expand, Sequence):
            expand_tree = {name: {} for name in expand if isinstance(name, str)}
        elif isinstance(expand, Mapping):
            expand_tree = expand
        else:
            return row

        out = dict(row)
        for name, nested_obj in expand_tree.items():
            relation = self._relations.get((resource, name))
            if relation is None:
                continue
            nested = as_str_dict(nested_obj) or {}
            if relation.many:
                flt = {**(as_str_dict(nested.get("$filter")) or {}), relation.key: row["id"]}
                out[name] = self._query(relation.target, {**nested, "$filter": flt})
            else:
                target_id = row.get(relation.key)
                target = (
                    self._tables.get(relation.target, {}).get(target_id)
                    if isinstance(target_id, int)
                    else None
                )
                out[name] = (
                    [self._shape(relation.target, dict(target), nested)] if target else []
                )
        return out

    def _shape(self, resource: str, row: StrDict, options: Mapping[str, object]) -> StrDict:
        expand = options.get("$expand")
        if expand is not None:
            row = self._expand(resource, row, expand)
        select = options.get("$select")
        if isinstance(select, list):
            keep = {str(s) for s in select}
            if isinstance(expand, Mapping):
                keep |= {str(k) for k in expand}
            elif isinstance(expand, list):
                keep |= {str(k) for k in expand}
            elif isinstance(expand, str):
                keep.add(expand)
            row = {k: v for k, v in row.items() if k in keep}
        return row

    def _query(self, resource: str, options: Mapping[str, object]) -> list[StrDict]:
        rows = [dict(r) for r in self._tables.get(resource, {}).values()]

        flt = as_str_dict(options.get("$filter"))
        if flt:
            rows = [r for r in rows if matches_filter(r, flt)]

        orderby = options.get("$orderby")
        if isinstance(orderby, str):
            clauses = [orderby]
        elif isinstance(orderby, list):
            clauses = [str(c) for c in orderby]
        else:
            clauses = []
        for clause in reversed(clauses):
            field_name, _, direction = str(clause).partition(" ")
            rows.sort(
                key=lambda r: _order_key(r.get(field_name)),
                reverse=direction.strip().lower() == "desc",
            )

        top = options.get("$top")
        if isinstance(top, int):
            rows = rows[:top]

        return [self._shape(resource, r, options) for r in rows]

    # -- RemoteStore ----------------------------------------------------------

    def get(
        self, resource: str, *, options: QueryOptions | None = None
    ) -> Result[list[StrDict], StoreError]:
        with self._lock:
            failure = self._check_failure("get", resource)
            if failure is not None:
                return Err(failure)
            return Ok(self._query(resource, options or {}))

    def get_by_id(
        self, resource: str, id: int, *, options: QueryOptions | None = None
    ) -> Result[StrDict | None, StoreError]:
        with self._lock:
            failure = self._check_failure("get", resource)
            if failure is not None:
                return Err(failure)
            row = self._tables.get(resource, {}).get(id)
            if row is None:
                return Ok(None)
            return Ok(self._shape(resource, dict(row), options or {}))

    def post(self, resource: str, body: Mapping[str, object]) -> Result[StrDict, StoreError]:
        with self._lock:
            self.calls.append(("post", resource, dict(body)))
            failure = self._check_failure("post", resource)
            if failure is not None:
                return Err(failure)
            row_id = self._insert(resource, {k: v for k, v in body.items() if k != "id"})
            return Ok(dict(self._tables[resource][row_id]))

    def patch(
        self, resource: str, id: int, body: Mapping[str, object]
    ) -> Result[None, StoreError]:
        with self._lock:
            self.calls.append(("patch", resource, {"id": id, **body}))
            failure = self._check_failure("patch", resource)
            if failure is not None:
                return Err(failure)
            row = self._tables.get(resource, {}).get(id)
            if row is None:
                return Err(StoreError(resource=resource, message=f"no such id: {id}", status=404))
            row.update({k: v for k, v in body.items() if k != "id"})
            return Ok(None)

    def delete(self, resource: str, id: int) -> Result[None, StoreError]:
        with self._lock:
            self.calls.append(("delete", resource, {"id": id}))
            failure = self._check_failure("delete", resource)
            if failure is not None:
                return Err(failure)
            table = self._tables.get(resource, {})
            if id not in table:
                return Err(StoreError(resource=resource, message=f"no such id: {id}", status=404))
            del table[id]
            return Ok(None)

    def get_or_create(
        self,
        resource: str,
        natural_key: Mapping[str, object],
        body: Mapping[str, object],
    ) -> Result[StrDict, StoreError]:
        with self._lock:
            existing = self.get(resource, options={"$filter": dict(natural_key), "$top": 1})
            if isinstance(existing, Err):
                return existing
            if existing.value:
                return Ok(existing.value[0])
            return self.post(resource, body)
