from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from tagstash.common.changeset import ChangesetTranslator
from tagstash.common.exceptions import NotFoundError
from tagstash.common.image import process_image_input
from tagstash.common.params import parse_id, parse_id_list
from tagstash.common.time import utcnow
from tagstash.common.transaction import run_in_transaction
from tagstash.repository import CancelSignal, Repository
from tagstash.tag.manager import ensure_tag_name_unique
from tagstash.tag.models import Tag
from tagstash.tag.repository import TagDraft
from tagstash.tag.schemas import TagCreateInput, TagDestroyInput, TagUpdateInput

logger = logging.getLogger(__name__)


class TagService:
    def __init__(self, db: Session, *, cancel: CancelSignal | None = None):
        self.db = db
        self.cancel = cancel

    def _with_txn(self, work):
        return run_in_transaction(self.db, work, cancel=self.cancel)

    def find_all(self) -> List[Tag]:
        return self._with_txn(lambda repo: repo.tag().find_all())

    def find_by_id(self, id: str | int) -> Tag:
        tag_id = parse_id(id)

        def work(repo: Repository) -> Tag:
            tag = repo.tag().find(tag_id)
            if tag is None:
                raise NotFoundError("Tag", tag_id)
            return tag

        return self._with_txn(work)

    def find_image(self, id: str | int) -> bytes:
        tag_id = parse_id(id)

        def work(repo: Repository) -> bytes:
            qb = repo.tag()
            if qb.find(tag_id) is None:
                raise NotFoundError("Tag", tag_id)
            data = qb.get_image(tag_id)
            if data is None:
                raise NotFoundError("Tag image", tag_id)
            return data

        return self._with_txn(work)

    def tag_create(self, input: TagCreateInput) -> Tag:
        now = utcnow()
        draft = TagDraft(name=input.name, created_at=now, updated_at=now)

        # decode outside the transaction; downloads can be slow
        image_data = b""
        if input.image is not None:
            image_data = process_image_input(input.image)

        def work(repo: Repository) -> Tag:
            qb = repo.tag()
            ensure_tag_name_unique(draft, qb)

            tag = qb.create(draft)
            if image_data:
                qb.update_image(tag.id, image_data)
            return tag

        tag = self._with_txn(work)
        logger.info("tag_created id=%s name=%s image=%s", tag.id, tag.name, bool(image_data))
        return tag

    def tag_update(
        self,
        input: TagUpdateInput,
        input_map: Optional[Mapping[str, Any]] = None,
    ) -> Tag:
        """Apply a partial update.

        ``input_map`` is the raw request payload. It decides whether an absent
        image means "leave it" (key omitted) or "remove it" (key sent as null
        or empty). Without it, the fields explicitly set on ``input`` are used.
        """
        tag_id = parse_id(input.id)
        draft = TagDraft(id=tag_id, name=input.name, updated_at=utcnow())

        translator = (
            ChangesetTranslator(input_map)
            if input_map is not None
            else ChangesetTranslator.from_model(input)
        )
        image_included = translator.has_field("image")

        image_data = b""
        if input.image is not None:
            image_data = process_image_input(input.image)

        def work(repo: Repository) -> Tag:
            qb = repo.tag()

            existing = qb.find(tag_id)
            if existing is None:
                raise NotFoundError("Tag", tag_id)

            if draft.name is None:
                draft.name = existing.name
            elif existing.name != draft.name:
                ensure_tag_name_unique(draft, qb)

            tag = qb.update(draft)

            if image_data:
                qb.update_image(tag.id, image_data)
            elif image_included:
                qb.destroy_image(tag.id)
            return tag

        tag = self._with_txn(work)
        logger.info(
            "tag_updated id=%s name=%s image=%s",
            tag.id,
            tag.name,
            "set" if image_data else ("cleared" if image_included else "unchanged"),
        )
        return tag

    def tag_destroy(self, input: TagDestroyInput) -> bool:
        tag_id = parse_id(input.id)
        self._with_txn(lambda repo: repo.tag().destroy(tag_id))
        logger.info("tag_destroyed id=%s", tag_id)
        return True

    def tags_destroy(self, ids: List[str]) -> bool:
        tag_ids = parse_id_list(ids)

        def work(repo: Repository) -> None:
            qb = repo.tag()
            for tag_id in tag_ids:
                qb.destroy(tag_id)

        self._with_txn(work)
        logger.info("tags_destroyed count=%s ids=%s", len(tag_ids), tag_ids)
        return True
