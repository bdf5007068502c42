from __future__ import annotations

import base64
import unittest
from unittest.mock import patch

from tests._bootstrap import bootstrap_backend_imports, reset_caches
from tests._db import make_session


bootstrap_backend_imports()
reset_caches()

from tagstash.common.exceptions import (  # noqa: E402
    DuplicateNameError,
    ImageDecodeError,
    InvalidIdentifierError,
    NotFoundError,
    StoreError,
)
from tagstash.tag.models import Tag, TagImage  # noqa: E402
from tagstash.tag.repository import TagQueryBuilder  # noqa: E402
from tagstash.tag.schemas import TagCreateInput, TagDestroyInput, TagUpdateInput  # noqa: E402
from tagstash.tag.service import TagService  # noqa: E402

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"pixels"
PNG_B64 = base64.b64encode(PNG_BYTES).decode("ascii")
JPEG_BYTES = b"\xff\xd8\xff" + b"other-pixels"


class TagServiceTestBase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.svc = TagService(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def _count(self) -> int:
        return self.db.query(Tag).count()

    def _image(self, tag_id: int) -> bytes | None:
        row = self.db.get(TagImage, tag_id)
        return row.image if row is not None else None


class TagCreateTests(TagServiceTestBase):
    def test_create_returns_tag_with_input_name(self) -> None:
        tag = self.svc.tag_create(TagCreateInput(name="Outdoor"))

        self.assertIsNotNone(tag.id)
        self.assertEqual(tag.name, "Outdoor")
        self.assertEqual(tag.created_at, tag.updated_at)
        self.assertEqual(self._count(), 1)
        self.assertIsNone(self._image(tag.id))

    def test_create_duplicate_name_leaves_store_unchanged(self) -> None:
        self.svc.tag_create(TagCreateInput(name="Outdoor"))

        with self.assertRaises(DuplicateNameError) as ctx:
            self.svc.tag_create(TagCreateInput(name="Outdoor"))
        self.assertEqual(ctx.exception.name, "Outdoor")
        self.assertEqual(ctx.exception.code, 40001)
        self.assertEqual(self._count(), 1)

    def test_store_constraint_catches_duplicates_the_guard_missed(self) -> None:
        # A concurrent writer can commit the same name between the guard's lookup and our write.
        self.svc.tag_create(TagCreateInput(name="Outdoor"))
        other = self.svc.tag_create(TagCreateInput(name="Indoor"))
        other_id = other.id

        with patch("tagstash.tag.service.ensure_tag_name_unique") as guard:
            with self.assertRaises(DuplicateNameError) as create_ctx:
                self.svc.tag_create(TagCreateInput(name="Outdoor"))
            with self.assertRaises(DuplicateNameError) as update_ctx:
                self.svc.tag_update(TagUpdateInput(id=str(other_id), name="Outdoor"))

        self.assertEqual(guard.call_count, 2)
        self.assertEqual(create_ctx.exception.name, "Outdoor")
        self.assertEqual(update_ctx.exception.name, "Outdoor")
        self.assertEqual(self._count(), 2)
        self.assertEqual(self.db.get(Tag, other_id).name, "Indoor")

    def test_names_compare_case_sensitively(self) -> None:
        self.svc.tag_create(TagCreateInput(name="Outdoor"))
        other = self.svc.tag_create(TagCreateInput(name="outdoor"))
        self.assertEqual(other.name, "outdoor")
        self.assertEqual(self._count(), 2)

    def test_create_with_image_stores_it(self) -> None:
        tag = self.svc.tag_create(TagCreateInput(name="Beach", image=f"data:image/png;base64,{PNG_B64}"))
        self.assertEqual(self._image(tag.id), PNG_BYTES)

    def test_create_with_empty_image_skips_image_write(self) -> None:
        with patch.object(
            TagQueryBuilder, "update_image", autospec=True, side_effect=TagQueryBuilder.update_image
        ) as update_image:
            tag = self.svc.tag_create(TagCreateInput(name="Beach", image=""))
        update_image.assert_not_called()
        self.assertIsNone(self._image(tag.id))

    def test_malformed_image_fails_before_any_write(self) -> None:
        with self.assertRaises(ImageDecodeError):
            self.svc.tag_create(TagCreateInput(name="Beach", image="!!not base64!!"))
        self.assertEqual(self._count(), 0)

    def test_image_write_failure_rolls_back_created_tag(self) -> None:
        with patch.object(TagQueryBuilder, "update_image", side_effect=StoreError("disk full")):
            with self.assertRaises(StoreError):
                self.svc.tag_create(TagCreateInput(name="Beach", image=PNG_B64))
        self.assertEqual(self._count(), 0)


class TagUpdateTests(TagServiceTestBase):
    def test_update_renames(self) -> None:
        tag = self.svc.tag_create(TagCreateInput(name="Old"))
        created_at = tag.created_at

        updated = self.svc.tag_update(TagUpdateInput(id=str(tag.id), name="New"))

        self.assertEqual(updated.id, tag.id)
        self.assertEqual(updated.name, "New")
        self.assertEqual(updated.created_at, created_at)
        self.assertGreaterEqual(updated.updated_at, created_at)

    def test_keeping_same_name_skips_uniqueness_check(self) -> None:
        tag = self.svc.tag_create(TagCreateInput(name="Same"))
        self.svc.tag_create(TagCreateInput(name="Other"))

        with patch("tagstash.tag.service.ensure_tag_name_unique") as guard:
            updated = self.svc.tag_update(TagUpdateInput(id=str(tag.id), name="Same"))
        guard.assert_not_called()
        self.assertEqual(updated.name, "Same")

    def test_case_only_rename_runs_uniqueness_check(self) -> None:
        tag = self.svc.tag_create(TagCreateInput(name="Same"))

        with patch("tagstash.tag.service.ensure_tag_name_unique") as guard:
            self.svc.tag_update(TagUpdateInput(id=str(tag.id), name="SAME"))
        guard.assert_called_once()

    def test_rename_to_other_tags_name_fails_and_keeps_original(self) -> None:
        first = self.svc.tag_create(TagCreateInput(name="First"))
        self.svc.tag_create(TagCreateInput(name="Second"))
        first_id = first.id

        with self.assertRaises(DuplicateNameError):
            self.svc.tag_update(TagUpdateInput(id=str(first_id), name="Second"))

        self.assertEqual(self.db.get(Tag, first_id).name, "First")

    def test_omitted_name_keeps_stored_name(self) -> None:
        tag = self.svc.tag_create(TagCreateInput(name="Keep"))
        updated = self.svc.tag_update(TagUpdateInput(id=str(tag.id), image=PNG_B64))
        self.assertEqual(updated.name, "Keep")
        self.assertEqual(self._image(tag.id), PNG_BYTES)

    def test_missing_tag_raises_not_found_before_any_write(self) -> None:
        with patch.object(TagQueryBuilder, "update") as update:
            with self.assertRaises(NotFoundError) as ctx:
                self.svc.tag_update(TagUpdateInput(id="999", name="Ghost"))
        update.assert_not_called()
        self.assertEqual(ctx.exception.status_code, 404)

    def test_malformed_id_raises_before_any_side_effect(self) -> None:
        with patch("tagstash.tag.service.run_in_transaction") as run:
            with self.assertRaises(InvalidIdentifierError):
                self.svc.tag_update(TagUpdateInput(id="abc", name="X"))
        run.assert_not_called()

    def test_image_replaced_when_new_bytes_given(self) -> None:
        tag = self.svc.tag_create(TagCreateInput(name="Pic", image=PNG_B64))
        jpeg_b64 = base64.b64encode(JPEG_BYTES).decode("ascii")

        self.svc.tag_update(TagUpdateInput(id=str(tag.id), image=jpeg_b64))
        self.assertEqual(self._image(tag.id), JPEG_BYTES)

    def test_image_sent_as_null_clears_it(self) -> None:
        tag = self.svc.tag_create(TagCreateInput(name="Pic", image=PNG_B64))
        payload = {"name": "Pic", "image": None}

        with (
            patch.object(
                TagQueryBuilder, "destroy_image", autospec=True, side_effect=TagQueryBuilder.destroy_image
            ) as destroy_image,
            patch.object(TagQueryBuilder, "update_image") as update_image,
        ):
            self.svc.tag_update(TagUpdateInput(id=str(tag.id), **payload), input_map=payload)

        destroy_image.assert_called_once()
        update_image.assert_not_called()
        self.assertIsNone(self._image(tag.id))

    def test_image_sent_as_empty_string_clears_it(self) -> None:
        tag = self.svc.tag_create(TagCreateInput(name="Pic", image=PNG_B64))
        payload = {"image": ""}

        self.svc.tag_update(TagUpdateInput(id=str(tag.id), **payload), input_map=payload)
        self.assertIsNone(self._image(tag.id))

    def test_omitted_image_leaves_it_untouched(self) -> None:
        tag = self.svc.tag_create(TagCreateInput(name="Pic", image=PNG_B64))
        payload = {"name": "Renamed"}

        with (
            patch.object(TagQueryBuilder, "destroy_image") as destroy_image,
            patch.object(TagQueryBuilder, "update_image") as update_image,
        ):
            self.svc.tag_update(TagUpdateInput(id=str(tag.id), **payload), input_map=payload)

        destroy_image.assert_not_called()
        update_image.assert_not_called()
        self.assertEqual(self._image(tag.id), PNG_BYTES)

    def test_presence_falls_back_to_explicitly_set_model_fields(self) -> None:
        tag = self.svc.tag_create(TagCreateInput(name="Pic", image=PNG_B64))

        self.svc.tag_update(TagUpdateInput(id=str(tag.id), name="Pic"))
        self.assertEqual(self._image(tag.id), PNG_BYTES)

        self.svc.tag_update(TagUpdateInput(id=str(tag.id), image=None))
        self.assertIsNone(self._image(tag.id))

    def test_clearing_absent_image_is_not_an_error(self) -> None:
        tag = self.svc.tag_create(TagCreateInput(name="NoPic"))
        updated = self.svc.tag_update(TagUpdateInput(id=str(tag.id), image=None))
        self.assertEqual(updated.name, "NoPic")


class TagDestroyTests(TagServiceTestBase):
    def test_destroy_removes_tag_and_image(self) -> None:
        tag = self.svc.tag_create(TagCreateInput(name="Gone", image=PNG_B64))
        tag_id = tag.id

        self.assertTrue(self.svc.tag_destroy(TagDestroyInput(id=str(tag_id))))
        self.assertIsNone(self.db.get(Tag, tag_id))
        self.assertIsNone(self._image(tag_id))

    def test_destroy_twice_fails_second_time(self) -> None:
        tag = self.svc.tag_create(TagCreateInput(name="Once"))
        tag_id = str(tag.id)

        self.assertTrue(self.svc.tag_destroy(TagDestroyInput(id=tag_id)))
        with self.assertRaises(NotFoundError):
            self.svc.tag_destroy(TagDestroyInput(id=tag_id))

    def test_destroy_malformed_id(self) -> None:
        with self.assertRaises(InvalidIdentifierError):
            self.svc.tag_destroy(TagDestroyInput(id="1.5"))

    def test_batch_destroy_removes_all(self) -> None:
        ids = [str(self.svc.tag_create(TagCreateInput(name=n)).id) for n in ("a", "b", "c")]
        self.assertTrue(self.svc.tags_destroy(ids))
        self.assertEqual(self._count(), 0)

    def test_batch_destroy_is_all_or_nothing(self) -> None:
        t1 = self.svc.tag_create(TagCreateInput(name="one", image=PNG_B64))
        t3 = self.svc.tag_create(TagCreateInput(name="three"))
        t1_id, t3_id = t1.id, t3.id
        missing_id = t3_id + 100

        attempted: list[int] = []
        original_destroy = TagQueryBuilder.destroy

        def _recording_destroy(qb: TagQueryBuilder, id: int) -> None:
            attempted.append(id)
            original_destroy(qb, id)

        with patch.object(TagQueryBuilder, "destroy", autospec=True, side_effect=_recording_destroy):
            with self.assertRaises(NotFoundError):
                self.svc.tags_destroy([str(t1_id), str(missing_id), str(t3_id)])

        self.assertEqual(attempted, [t1_id, missing_id])
        self.assertEqual(self._count(), 2)
        self.assertEqual(self.db.get(Tag, t1_id).name, "one")
        self.assertEqual(self._image(t1_id), PNG_BYTES)

    def test_batch_destroy_rejects_malformed_ids_before_destroying(self) -> None:
        tag = self.svc.tag_create(TagCreateInput(name="stay"))

        with self.assertRaises(InvalidIdentifierError):
            self.svc.tags_destroy([str(tag.id), "nope"])
        self.assertEqual(self._count(), 1)

    def test_out_of_range_ids_rejected_before_opening_a_transaction(self) -> None:
        tag = self.svc.tag_create(TagCreateInput(name="stay"))
        too_large = "99999999999999999999"

        calls = (
            lambda: self.svc.tag_destroy(TagDestroyInput(id=too_large)),
            lambda: self.svc.tag_update(TagUpdateInput(id=too_large, name="x")),
            lambda: self.svc.tags_destroy([str(tag.id), too_large]),
        )
        for call in calls:
            with (
                patch("tagstash.tag.service.run_in_transaction") as run,
                patch.object(TagQueryBuilder, "destroy") as destroy,
            ):
                with self.assertRaises(InvalidIdentifierError):
                    call()
            run.assert_not_called()
            destroy.assert_not_called()
        self.assertEqual(self._count(), 1)


class TagReadTests(TagServiceTestBase):
    def test_find_all_sorted_by_name(self) -> None:
        for name in ("b", "c", "a"):
            self.svc.tag_create(TagCreateInput(name=name))
        self.assertEqual([t.name for t in self.svc.find_all()], ["a", "b", "c"])

    def test_find_by_id(self) -> None:
        tag = self.svc.tag_create(TagCreateInput(name="x"))
        self.assertEqual(self.svc.find_by_id(str(tag.id)).name, "x")
        with self.assertRaises(NotFoundError):
            self.svc.find_by_id("12345")

    def test_find_image(self) -> None:
        with_image = self.svc.tag_create(TagCreateInput(name="with", image=PNG_B64))
        without = self.svc.tag_create(TagCreateInput(name="without"))

        self.assertEqual(self.svc.find_image(with_image.id), PNG_BYTES)
        with self.assertRaises(NotFoundError):
            self.svc.find_image(without.id)
        with self.assertRaises(NotFoundError):
            self.svc.find_image(9999)


if __name__ == "__main__":
    unittest.main()
