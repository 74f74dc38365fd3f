"""
Two-phase media capture: bytes become playable locally at once, while the
upload to durable storage runs as a background task.
"""
import asyncio
import logging
import mimetypes
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from quizzes.conf import engine_setting
from quizzes.exceptions import DeviceUnavailable, StateConflict, UploadFailure

logger = logging.getLogger(__name__)


class LocalPreview:
    """Session-scoped copy of captured bytes kept in a temporary file."""

    def __init__(self, data: bytes, mime_type: str, file_name: str = ''):
        suffix = Path(file_name).suffix if file_name else ''
        if not suffix:
            suffix = mimetypes.guess_extension(mime_type.split(';')[0].strip()) or ''
        fd, path = tempfile.mkstemp(prefix='quiz-preview-', suffix=suffix)
        with os.fdopen(fd, 'wb') as fh:
            fh.write(data)
        self.path = Path(path)
        self.mime_type = mime_type
        self.released = False

    @property
    def uri(self) -> str:
        return self.path.as_uri()

    def release(self):
        if self.released:
            return
        self.path.unlink(missing_ok=True)
        self.released = True


@dataclass
class CaptureResult:
    preview: LocalPreview
    upload: asyncio.Task
    data: bytes
    mime_type: str
    file_name: str = ''
    slot: Optional[object] = None

    @property
    def local_ref(self) -> str:
        return self.preview.uri


class CaptureHandle:
    """An open recording. ``amplitude`` is refreshed on 0-100 while active."""

    def __init__(self, adapter, stream, slot=None, poll_interval=None):
        self._adapter = adapter
        self._stream = stream
        self.slot = slot
        self.amplitude = 0
        self.active = True
        self._poll_interval = poll_interval or engine_setting('AMPLITUDE_POLL_SECONDS')
        self._poller = asyncio.create_task(self._poll())

    @property
    def mime_type(self):
        return self._stream.mime_type

    async def _poll(self):
        while True:
            level = self._stream.level()
            self.amplitude = max(0, min(100, round(level * 100)))
            await asyncio.sleep(self._poll_interval)

    async def _halt(self) -> bytes:
        self.active = False
        self.amplitude = 0
        self._poller.cancel()
        try:
            await self._poller
        except asyncio.CancelledError:
            pass
        try:
            return await self._stream.stop()
        except OSError as exc:
            raise DeviceUnavailable(f"Recording failed: {exc}") from exc
        finally:
            self._stream.release()
            self._adapter._detach(self)

    async def stop(self) -> CaptureResult:
        """Finish recording, stage a local preview and start the upload."""
        if not self.active:
            raise StateConflict("Recording already stopped.")
        data = await self._halt()
        ext = mimetypes.guess_extension(self.mime_type.split(';')[0].strip()) or ''
        return self._adapter.stage(data, self.mime_type, file_name=f'recording{ext}', slot=self.slot)

    async def cancel(self):
        """Abort without keeping the audio."""
        if self.active:
            await self._halt()


class MediaCaptureAdapter:
    """
    Owns the audio device and the staged captures of one session.

    Each staged capture lives in a slot (the question id); staging into an
    occupied slot releases the previous preview.
    """

    def __init__(self, storage, source=None, poll_interval=None, mime_types=None):
        self._storage = storage
        self._source = source
        self._poll_interval = poll_interval
        self._mime_types = tuple(mime_types or engine_setting('AUDIO_MIME_TYPES'))
        self._handle = None
        self._staged = {}

    @property
    def is_capturing(self):
        return self._handle is not None and self._handle.active

    def staged(self, slot):
        return self._staged.get(slot)

    async def begin_capture(self, device_id=None, slot=None) -> CaptureHandle:
        if self.is_capturing:
            await self._handle.cancel()
        if self._source is None:
            raise DeviceUnavailable("No audio input configured.")
        try:
            stream = await self._source.open(device_id=device_id, mime_types=self._mime_types)
        except DeviceUnavailable as exc:
            logger.warning(f"Audio capture unavailable: {exc.message}")
            raise
        except OSError as exc:
            logger.warning(f"Audio capture unavailable: {exc}")
            raise DeviceUnavailable(f"Microphone unavailable: {exc}") from exc
        self._handle = CaptureHandle(self, stream, slot=slot, poll_interval=self._poll_interval)
        return self._handle

    def _detach(self, handle):
        if self._handle is handle:
            self._handle = None

    def stage(self, data: bytes, mime_type: str, file_name: str = '', slot=None) -> CaptureResult:
        """Write a local preview and schedule the upload. Needs a running loop."""
        previous = self._staged.pop(slot, None)
        if previous is not None:
            previous.preview.release()
        preview = LocalPreview(data, mime_type, file_name)
        result = CaptureResult(
            preview=preview,
            upload=asyncio.create_task(self._upload(data, mime_type, file_name)),
            data=data,
            mime_type=mime_type,
            file_name=file_name,
            slot=slot,
        )
        self._staged[slot] = result
        return result

    def retry_upload(self, result: CaptureResult) -> asyncio.Task:
        result.upload = asyncio.create_task(self._upload(result.data, result.mime_type, result.file_name))
        return result.upload

    async def _upload(self, data, mime_type, file_name):
        try:
            url = await self._storage.upload(data, mime_type, file_name=file_name or None)
        except UploadFailure as exc:
            logger.warning(f"Upload of {file_name or mime_type} ({len(data)} bytes) failed: {exc.message}")
            raise
        logger.info(f"Uploaded {file_name or mime_type} ({len(data)} bytes)")
        return url

    async def close(self):
        if self.is_capturing:
            await self._handle.cancel()
        for result in self._staged.values():
            result.preview.release()
        self._staged.clear()
