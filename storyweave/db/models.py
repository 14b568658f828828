from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from storyweave.db.base import Base
from storyweave.db.types import JSONType
from storyweave.utils.time import utc_now_naive


class UserSave(Base):
    __tablename__ = "user_saves"
    __table_args__ = (
        UniqueConstraint("user_id", "save_name", name="uq_user_saves_user_save_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    save_name: Mapped[str] = mapped_column(String(100))
    game_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    game_mode: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    save_data: Mapped[dict] = mapped_column(JSONType, default=dict)
    current_node: Mapped[str | None] = mapped_column(String(100), nullable=True)
    total_pages: Mapped[int] = mapped_column(Integer, default=0)
    record_updated_at: Mapped[int] = mapped_column(BigInteger, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, onupdate=utc_now_naive)


class ActiveSessionPointer(Base):
    __tablename__ = "active_session_pointers"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    session_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    pointer_updated_at: Mapped[int] = mapped_column(BigInteger, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, onupdate=utc_now_naive)


class DeletedSave(Base):
    __tablename__ = "deleted_saves"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    save_name: Mapped[str] = mapped_column(String(100), primary_key=True)
    deleted_at: Mapped[int] = mapped_column(BigInteger, default=0)


Index("ix_user_saves_user_updated", UserSave.user_id, UserSave.record_updated_at)
