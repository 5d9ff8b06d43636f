"""Models package."""

from .upload import Upload
from .folder import Folder, FolderUpload
