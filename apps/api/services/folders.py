"""Folder CRUD and membership, scoped to the owning user."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from models.folder import Folder, FolderUpload
from models.upload import Upload
from services.storage import MediaStorage
from services.uploads import get_upload, serialize_upload

logger = logging.getLogger(__name__)


class FolderNotFoundError(LookupError):
    pass


class UploadNotFoundError(LookupError):
    pass


def _touch(folder: Folder) -> None:
    folder.updated_at = datetime.now(timezone.utc)


def serialize_folder(folder: Folder, storage: MediaStorage) -> Dict[str, Any]:
    uploads = [membership.upload for membership in folder.memberships if membership.upload is not None]
    return {
        "id": folder.id,
        "name": folder.name,
        "description": folder.description or "",
        "uploads": [serialize_upload(upload, storage) for upload in uploads],
        "upload_count": len(uploads),
        "created_at": folder.created_at.isoformat() if folder.created_at else None,
        "updated_at": folder.updated_at.isoformat() if folder.updated_at else None,
    }


def _folder_query(user_id: str):
    return (
        select(Folder)
        .where(Folder.user_id == user_id)
        .options(selectinload(Folder.memberships).selectinload(FolderUpload.upload))
        .execution_options(populate_existing=True)
    )


async def list_folders_service(user_id: str, db: AsyncSession) -> List[Folder]:
    result = await db.execute(_folder_query(user_id).order_by(Folder.created_at.desc(), Folder.id))
    return list(result.scalars().all())


async def get_folder_service(user_id: str, folder_id: str, db: AsyncSession) -> Folder:
    result = await db.execute(_folder_query(user_id).where(Folder.id == folder_id))
    folder = result.scalar_one_or_none()
    if folder is None:
        raise FolderNotFoundError(folder_id)
    return folder


async def create_folder_service(user_id: str, name: str, description: Optional[str], db: AsyncSession) -> Folder:
    folder = Folder(user_id=user_id, name=name.strip(), description=description or "")
    db.add(folder)
    await db.commit()
    return await get_folder_service(user_id, folder.id, db)


async def update_folder_service(
    user_id: str,
    folder_id: str,
    db: AsyncSession,
    name: Optional[str] = None,
    description: Optional[str] = None,
) -> Folder:
    folder = await get_folder_service(user_id, folder_id, db)
    if name:
        folder.name = name.strip()
    if description is not None:
        folder.description = description
    _touch(folder)
    await db.commit()
    return await get_folder_service(user_id, folder_id, db)


async def delete_folder_service(user_id: str, folder_id: str, db: AsyncSession) -> None:
    """Delete the folder and its membership rows; uploads are left alone."""
    folder = await get_folder_service(user_id, folder_id, db)
    await db.delete(folder)
    await db.commit()


async def add_upload_to_folder_service(user_id: str, folder_id: str, upload_id: str, db: AsyncSession) -> Folder:
    upload: Optional[Upload] = await get_upload(upload_id, db, user_id=user_id)
    if upload is None:
        raise UploadNotFoundError(upload_id)
    folder = await get_folder_service(user_id, folder_id, db)

    if any(membership.upload_id == upload_id for membership in folder.memberships):
        return folder

    db.add(FolderUpload(folder_id=folder_id, upload_id=upload_id))
    _touch(folder)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent request added the same upload first.
        await db.rollback()
        logger.info("Upload %s already in folder %s", upload_id, folder_id)
    return await get_folder_service(user_id, folder_id, db)


async def remove_upload_from_folder_service(user_id: str, folder_id: str, upload_id: str, db: AsyncSession) -> Folder:
    folder = await get_folder_service(user_id, folder_id, db)
    result = await db.execute(
        delete(FolderUpload).where(
            FolderUpload.folder_id == folder.id,
            FolderUpload.upload_id == upload_id,
        )
    )
    if result.rowcount:
        _touch(folder)
    await db.commit()
    return await get_folder_service(user_id, folder_id, db)
