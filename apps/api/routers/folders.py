"""
Folder router: user-owned collections of uploads.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.collaborators import get_media_storage
from services.folders import (
    FolderNotFoundError,
    UploadNotFoundError,
    add_upload_to_folder_service,
    create_folder_service,
    delete_folder_service,
    get_folder_service,
    list_folders_service,
    remove_upload_from_folder_service,
    serialize_folder,
    update_folder_service,
)
from services.storage import MediaStorage

router = APIRouter()


class FolderRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


def _folder_not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"error": "FOLDER_NOT_FOUND", "message": "Folder not found"})


@router.get("")
async def list_folders(
    auth: AuthContext = Depends(get_auth_context),
    storage: MediaStorage = Depends(get_media_storage),
    db: AsyncSession = Depends(get_db),
):
    folders = await list_folders_service(auth.user_id, db)
    return {"folders": [serialize_folder(folder, storage) for folder in folders]}


@router.post("", status_code=201)
async def create_folder(
    request: FolderRequest,
    auth: AuthContext = Depends(get_auth_context),
    storage: MediaStorage = Depends(get_media_storage),
    db: AsyncSession = Depends(get_db),
):
    if not (request.name or "").strip():
        raise HTTPException(
            status_code=400,
            detail={"error": "FOLDER_NAME_REQUIRED", "message": "Folder name is required"},
        )
    folder = await create_folder_service(auth.user_id, request.name, request.description, db)
    return {"success": True, "folder": serialize_folder(folder, storage)}


@router.get("/{folder_id}")
async def get_folder(
    folder_id: str,
    auth: AuthContext = Depends(get_auth_context),
    storage: MediaStorage = Depends(get_media_storage),
    db: AsyncSession = Depends(get_db),
):
    try:
        folder = await get_folder_service(auth.user_id, folder_id, db)
    except FolderNotFoundError:
        raise _folder_not_found()
    return {"folder": serialize_folder(folder, storage)}


@router.put("/{folder_id}")
async def update_folder(
    folder_id: str,
    request: FolderRequest,
    auth: AuthContext = Depends(get_auth_context),
    storage: MediaStorage = Depends(get_media_storage),
    db: AsyncSession = Depends(get_db),
):
    """Rename or re-describe a folder; a blank name keeps the current one."""
    try:
        folder = await update_folder_service(
            auth.user_id,
            folder_id,
            db,
            name=request.name,
            description=request.description,
        )
    except FolderNotFoundError:
        raise _folder_not_found()
    return {"success": True, "folder": serialize_folder(folder, storage)}


@router.delete("/{folder_id}")
async def delete_folder(
    folder_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        await delete_folder_service(auth.user_id, folder_id, db)
    except FolderNotFoundError:
        raise _folder_not_found()
    return {"success": True, "message": "Folder deleted successfully"}


@router.post("/{folder_id}/uploads/{upload_id}")
async def add_upload_to_folder(
    folder_id: str,
    upload_id: str,
    auth: AuthContext = Depends(get_auth_context),
    storage: MediaStorage = Depends(get_media_storage),
    db: AsyncSession = Depends(get_db),
):
    """Add an upload to a folder. Adding it again is a no-op."""
    try:
        folder = await add_upload_to_folder_service(auth.user_id, folder_id, upload_id, db)
    except UploadNotFoundError:
        raise HTTPException(status_code=404, detail={"error": "UPLOAD_NOT_FOUND", "message": "Upload not found"})
    except FolderNotFoundError:
        raise _folder_not_found()
    return {"success": True, "folder": serialize_folder(folder, storage)}


@router.delete("/{folder_id}/uploads/{upload_id}")
async def remove_upload_from_folder(
    folder_id: str,
    upload_id: str,
    auth: AuthContext = Depends(get_auth_context),
    storage: MediaStorage = Depends(get_media_storage),
    db: AsyncSession = Depends(get_db),
):
    try:
        folder = await remove_upload_from_folder_service(auth.user_id, folder_id, upload_id, db)
    except FolderNotFoundError:
        raise _folder_not_found()
    return {"success": True, "folder": serialize_folder(folder, storage)}
