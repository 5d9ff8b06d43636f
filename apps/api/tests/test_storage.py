from pathlib import Path
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from config import Settings
from services.storage import MediaStorage, sanitize_filename


def test_sanitize_filename_strips_paths_and_odd_characters():
    assert sanitize_filename("../../etc/passwd") == "passwd"
    assert sanitize_filename("my trip (1).mp4") == "my_trip__1_.mp4"
    assert sanitize_filename(None) == "upload"


def test_local_urls_are_served_from_uploads(tmp_path):
    storage = MediaStorage(root=tmp_path)

    assert not storage.mirrored
    assert storage.public_url("123-a.jpg") == "/uploads/123-a.jpg"


@pytest.mark.asyncio
async def test_publish_and_delete_mirror_to_bucket(tmp_path):
    s3 = MagicMock()
    storage = MediaStorage(
        root=tmp_path,
        bucket="reely-media",
        s3_client=s3,
        public_base_url="https://cdn.example.com/",
    )
    (tmp_path / "123-a.jpg").write_bytes(b"jpeg")

    url = await storage.publish("123-a.jpg")

    assert url == "https://cdn.example.com/uploads/123-a.jpg"
    args, kwargs = s3.upload_file.call_args
    assert args[1:] == ("reely-media", "uploads/123-a.jpg")
    assert kwargs["ExtraArgs"]["ContentType"] == "image/jpeg"

    s3.delete_object.side_effect = ClientError({"Error": {"Code": "500", "Message": "boom"}}, "DeleteObject")
    await storage.delete("123-a.jpg")

    assert not (tmp_path / "123-a.jpg").exists()
    s3.delete_object.assert_called_once_with(Bucket="reely-media", Key="uploads/123-a.jpg")


def test_persist_frame_copies_into_root(tmp_path):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    frame = scratch / "frame-0001.jpg"
    frame.write_bytes(b"jpeg")
    storage = MediaStorage(root=tmp_path / "uploads")

    first = storage.persist_frame(frame, 1)
    second = storage.persist_frame(frame, 1)

    assert first != second
    assert (storage.root / first).read_bytes() == b"jpeg"
    assert frame.exists()


def test_default_frame_scratch_is_outside_public_uploads():
    fields = Settings.model_fields
    uploads = Path(fields["UPLOAD_DIR"].default).resolve()
    scratch = Path(fields["FRAMES_SCRATCH_DIR"].default).resolve()

    assert uploads not in scratch.parents
    assert scratch != uploads
