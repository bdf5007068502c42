from __future__ import annotations

from tagstash.common.exceptions import DuplicateNameError
from tagstash.tag.repository import TagDraft, TagQueryBuilder


def ensure_tag_name_unique(candidate: TagDraft, qb: TagQueryBuilder) -> None:
    """Raise DuplicateNameError if another tag already uses ``candidate.name``.

    Names compare exactly (case-sensitive), matching the ``uq_tag_name``
    constraint. A candidate without an id collides with any match; one with an
    id only collides with a different tag.
    """
    existing = qb.find_by_name(candidate.name)
    if existing is not None and (candidate.id is None or existing.id != candidate.id):
        raise DuplicateNameError("Tag", candidate.name)
