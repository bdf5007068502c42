from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Response
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.orm import Session

from tagstash.common.exceptions import ApiException
from tagstash.common.schemas import ApiResponse
from tagstash.database import get_db
from tagstash.tag.schemas import (
    TagCreateInput,
    TagDestroyInput,
    TagResponse,
    TagsDestroyInput,
    TagUpdateInput,
)
from tagstash.tag.service import TagService

router = APIRouter(prefix="/api/tags", tags=["tags"])

_IMAGE_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


def _sniff_media_type(data: bytes) -> str:
    for signature, media_type in _IMAGE_SIGNATURES:
        if data.startswith(signature):
            return media_type
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "application/octet-stream"


@router.get("", response_model=ApiResponse)
def list_tags(db: Session = Depends(get_db)) -> ApiResponse:
    service = TagService(db)
    tags = service.find_all()
    return ApiResponse.ok([TagResponse.model_validate(tag).model_dump(by_alias=True) for tag in tags])


@router.get("/{id}", response_model=ApiResponse)
def get_tag(id: str, db: Session = Depends(get_db)) -> ApiResponse:
    service = TagService(db)
    tag = service.find_by_id(id)
    return ApiResponse.ok(TagResponse.model_validate(tag).model_dump(by_alias=True))


@router.get("/{id}/image")
def get_tag_image(id: str, db: Session = Depends(get_db)) -> Response:
    service = TagService(db)
    data = service.find_image(id)
    return Response(content=data, media_type=_sniff_media_type(data))


@router.post("", response_model=ApiResponse)
def create_tag(request: TagCreateInput, db: Session = Depends(get_db)) -> ApiResponse:
    service = TagService(db)
    tag = service.tag_create(request)
    return ApiResponse.ok(TagResponse.model_validate(tag).model_dump(by_alias=True))


@router.put("/{id}", response_model=ApiResponse)
def update_tag(
    id: str,
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
) -> ApiResponse:
    # Keep the raw payload: key presence decides whether the image is cleared.
    if "id" in payload and str(payload["id"]) != id:
        raise ApiException(status_code=400, code=40004, message="Body id does not match path id")
    try:
        request = TagUpdateInput.model_validate({**payload, "id": id})
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False)) from exc

    service = TagService(db)
    tag = service.tag_update(request, input_map=payload)
    return ApiResponse.ok(TagResponse.model_validate(tag).model_dump(by_alias=True))


@router.delete("/{id}", response_model=ApiResponse)
def delete_tag(id: str, db: Session = Depends(get_db)) -> ApiResponse:
    service = TagService(db)
    service.tag_destroy(TagDestroyInput(id=id))
    return ApiResponse.ok(True, "Tag deleted successfully")


@router.post("/batch-delete", response_model=ApiResponse)
def delete_tags(request: TagsDestroyInput, db: Session = Depends(get_db)) -> ApiResponse:
    service = TagService(db)
    service.tags_destroy(request.ids)
    return ApiResponse.ok(True, "Tags deleted successfully")
