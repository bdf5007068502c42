from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tagstash.common.exceptions import DuplicateNameError, NotFoundError, StoreError
from tagstash.tag.models import TAG_NAME_CONSTRAINT, Tag, TagImage

if TYPE_CHECKING:
    from tagstash.repository import Repository


@dataclass
class TagDraft:
    """Field values for a tag write. ``id`` is None until the store assigns one."""

    name: Optional[str]
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def is_tag_name_violation(exc: IntegrityError) -> bool:
    # postgres names the constraint, sqlite names the column
    text = str(exc.orig)
    return TAG_NAME_CONSTRAINT in text or "tag.name" in text


class TagQueryBuilder:
    def __init__(self, repo: "Repository") -> None:
        self.repo = repo
        self.db = repo.db

    @contextmanager
    def _statement(self, name: Optional[str] = None) -> Iterator[None]:
        self.repo.check_cancelled()
        try:
            yield
        except IntegrityError as exc:
            if name is not None and is_tag_name_violation(exc):
                raise DuplicateNameError("Tag", name) from exc
            raise StoreError("Tag write violated a store constraint") from exc
        except SQLAlchemyError as exc:
            raise StoreError("Tag store operation failed") from exc

    def find(self, id: int) -> Optional[Tag]:
        with self._statement():
            return self.db.get(Tag, id)

    def find_by_name(self, name: str) -> Optional[Tag]:
        with self._statement():
            return self.db.execute(select(Tag).where(Tag.name == name)).scalars().first()

    def find_all(self) -> List[Tag]:
        with self._statement():
            return list(self.db.execute(select(Tag).order_by(Tag.name.asc(), Tag.id.asc())).scalars().all())

    def create(self, draft: TagDraft) -> Tag:
        tag = Tag(name=draft.name)
        if draft.created_at is not None:
            tag.created_at = draft.created_at
        if draft.updated_at is not None:
            tag.updated_at = draft.updated_at
        with self._statement(draft.name):
            self.db.add(tag)
            self.db.flush()
        return tag

    def update(self, draft: TagDraft) -> Tag:
        with self._statement(draft.name):
            tag = self.db.get(Tag, draft.id)
            if tag is None:
                raise NotFoundError("Tag", draft.id)
            tag.name = draft.name
            if draft.updated_at is not None:
                tag.updated_at = draft.updated_at
            self.db.flush()
        return tag

    def destroy(self, id: int) -> None:
        with self._statement():
            tag = self.db.get(Tag, id)
            if tag is None:
                raise NotFoundError("Tag", id)
            image = self.db.get(TagImage, id)
            if image is not None:
                self.db.delete(image)
                self.db.flush()
            self.db.delete(tag)
            self.db.flush()

    def get_image(self, id: int) -> Optional[bytes]:
        with self._statement():
            image = self.db.get(TagImage, id)
            return image.image if image is not None else None

    def update_image(self, id: int, data: bytes) -> None:
        with self._statement():
            image = self.db.get(TagImage, id)
            if image is None:
                self.db.add(TagImage(tag_id=id, image=data))
            else:
                image.image = data
            self.db.flush()

    def destroy_image(self, id: int) -> None:
        with self._statement():
            image = self.db.get(TagImage, id)
            if image is not None:
                self.db.delete(image)
                self.db.flush()
