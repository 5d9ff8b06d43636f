"""Folder model for user-curated upload collections."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Folder(Base):
    """User-owned collection of uploads."""

    __tablename__ = "folders"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    memberships = relationship(
        "FolderUpload",
        back_populates="folder",
        cascade="all, delete-orphan",
        order_by="FolderUpload.id",
    )


class FolderUpload(Base):
    """Folder membership row; the autoincrement key preserves insertion order."""

    __tablename__ = "folder_uploads"
    __table_args__ = (UniqueConstraint("folder_id", "upload_id", name="uq_folder_uploads_folder_upload"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    folder_id = Column(String, ForeignKey("folders.id", ondelete="CASCADE"), nullable=False, index=True)
    upload_id = Column(String, ForeignKey("uploads.id", ondelete="CASCADE"), nullable=False, index=True)
    added_at = Column(DateTime(timezone=True), server_default=func.now())

    folder = relationship("Folder", back_populates="memberships")
    upload = relationship("Upload")
