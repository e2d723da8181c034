"""What ``apply --force`` removes from a stale release before replacing it.

The stale release record, its images and its services always stay behind;
only association rows are removed. Whether more should go is an open
question, so the behavior is a policy rather than a cascade.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

from rbundle.core.result import Err, Ok, Result

if TYPE_CHECKING:
    from rbundle.bundle.store import RemoteStore, StoreError


class CleanupPolicy(StrEnum):
    # delete the stale release's image__is_part_of__release rows
    LINKS = "links"
    # also delete the stale release's release_tag rows
    LINKS_AND_TAGS = "links_and_tags"


def parse_cleanup_policy(value: str) -> CleanupPolicy | None:
    try:
        return CleanupPolicy(value.strip().lower())
    except ValueError:
        return None


def _delete_rows(
    store: RemoteStore,
    *,
    resource: str,
    release_field: str,
    release_id: int,
) -> Result[int, StoreError]:
    rows = store.get(
        resource,
        options={"$select": ["id"], "$filter": {release_field: release_id}},
    )
    if isinstance(rows, Err):
        return rows

    deleted = 0
    for row in rows.value:
        row_id = row.get("id")
        if not isinstance(row_id, int):
            continue
        done = store.delete(resource, row_id)
        if isinstance(done, Err):
            return done
        deleted += 1
    return Ok(deleted)


def clean_stale_release(
    store: RemoteStore,
    *,
    release_id: int,
    policy: CleanupPolicy,
) -> Result[dict[str, int], StoreError]:
    """Apply ``policy`` to the release being replaced.

    Returns the number of deleted rows per resource.
    """
    removed: dict[str, int] = {}

    links = _delete_rows(
        store,
        resource="image__is_part_of__release",
        release_field="is_part_of__release",
        release_id=release_id,
    )
    if isinstance(links, Err):
        return links
    removed["image__is_part_of__release"] = links.value

    if policy is CleanupPolicy.LINKS_AND_TAGS:
        tags = _delete_rows(
            store,
            resource="release_tag",
            release_field="release",
            release_id=release_id,
        )
        if isinstance(tags, Err):
            return tags
        removed["release_tag"] = tags.value

    return Ok(removed)
