from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Integer, LargeBinary, String, UniqueConstraint

from tagstash.common.models import IntegerPrimaryKeyMixin, TimestampMixin
from tagstash.database import Base

TAG_NAME_CONSTRAINT = "uq_tag_name"


class Tag(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "tag"
    __table_args__ = (UniqueConstraint("name", name=TAG_NAME_CONSTRAINT),)

    name = Column(String(128), nullable=False)


class TagImage(Base):
    __tablename__ = "tag_image"

    tag_id = Column(Integer, ForeignKey("tag.id", ondelete="CASCADE"), primary_key=True)
    image = Column(LargeBinary, nullable=False)
