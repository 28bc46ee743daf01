"""Google Cloud Storage access for profile photos."""
import datetime
import uuid
from typing import Optional

from google.cloud import storage as gcs_storage

from app.config import get_settings

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/heic": "heic",
}


def get_storage_client():
    return gcs_storage.Client(project=get_settings().GCP_PROJECT_ID or None)


def get_bucket():
    return get_storage_client().bucket(get_settings().GCS_BUCKET_NAME)


def _blob(path: str):
    return get_bucket().blob(path)


def build_photo_path(user_id: uuid.UUID, content_type: str) -> str:
    """Object path for a new profile photo: ``photos/<user>/<uuid>.<ext>``."""
    ext = _EXTENSIONS.get(content_type, "bin")
    return f"photos/{user_id}/{uuid.uuid4().hex}.{ext}"


def upload_file(path: str, file_bytes: bytes, content_type: str = "application/octet-stream") -> str:
    """Store ``file_bytes`` at ``path`` and return its ``gs://`` URI."""
    blob = _blob(path)
    blob.upload_from_string(file_bytes, content_type=content_type)
    return f"gs://{blob.bucket.name}/{path}"


def generate_signed_url(path: str, expiry_minutes: Optional[int] = None) -> str:
    """V4 signed GET URL giving time-limited access to a photo."""
    if expiry_minutes is None:
        expiry_minutes = get_settings().PHOTO_URL_TTL_MINUTES
    return _blob(path).generate_signed_url(
        version="v4",
        expiration=datetime.timedelta(minutes=expiry_minutes),
        method="GET",
    )


def delete_file(path: str) -> None:
    _blob(path).delete()
