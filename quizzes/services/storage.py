"""
Blob storage for recordings, uploaded files and media prompts.
Backed by Django's default storage so local disk and cloud backends work alike.
"""
import logging
import mimetypes
from pathlib import PurePath
from uuid import uuid4

from django.core.files.base import ContentFile
from django.core.files.storage import default_storage

from quizzes.conf import engine_setting
from quizzes.exceptions import UploadFailure

logger = logging.getLogger(__name__)


class MediaStorageService:

    @staticmethod
    def _extension(mime_type, file_name):
        if file_name and PurePath(file_name).suffix:
            return PurePath(file_name).suffix.lower()
        base_type = (mime_type or '').split(';')[0].strip()
        return mimetypes.guess_extension(base_type) or '.bin'

    @classmethod
    def upload(cls, data, mime_type, file_name=None):
        """Store ``data`` and return its durable URL."""
        if not data:
            raise UploadFailure("Nothing to upload.")
        max_bytes = engine_setting('MAX_UPLOAD_BYTES')
        if len(data) > max_bytes:
            raise UploadFailure(f"File exceeds the {max_bytes} byte upload limit.")

        name = f"{engine_setting('UPLOAD_PREFIX')}{uuid4().hex}{cls._extension(mime_type, file_name)}"
        try:
            saved_name = default_storage.save(name, ContentFile(data))
        except OSError as exc:
            logger.warning(f"Upload of {len(data)} bytes failed: {exc}")
            raise UploadFailure("Could not store the uploaded file.") from exc

        logger.info(f"Stored upload {saved_name} ({mime_type}, {len(data)} bytes)")
        return default_storage.url(saved_name)
