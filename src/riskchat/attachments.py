"""Validation and transport encoding of user-selected files."""

import base64
import logging
import mimetypes
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from .errors import FileTooLarge, ReadFailure, StagingError, UnsupportedType
from .i18n import Translator
from .models import AttachmentRef

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_TEXT_FILE_BYTES = 4 * 1024 * 1024
VOLATILE_PREFIX = "blob:"
TEXT_MIME_TYPE = "text/plain"
FALLBACK_MIME_TYPE = "application/octet-stream"


def is_binary_type(mime_type: str) -> bool:
    """Types sent to the provider as base64 inline data."""
    return (
        mime_type.startswith("image/")
        or mime_type == "application/pdf"
        or mime_type.startswith("audio/")
        or mime_type.startswith("video/")
    )


def base_mime_type(mime_type: str) -> str:
    """Drops parameters such as ``; charset=utf-8`` from a mime type."""
    return mime_type.split(";", 1)[0].strip().lower()


def is_volatile(ref: Optional[str]) -> bool:
    """True for session-local preview handles that must not outlive the session."""
    return bool(ref) and ref.startswith(VOLATILE_PREFIX)


def to_data_url(mime_type: str, data: str) -> str:
    return f"data:{mime_type};base64,{data}"


def _format_size(num_bytes: int) -> str:
    return f"{num_bytes // (1024 * 1024)}MB"


class RawFile:
    """A file handed over by a picker or capture device: bytes, mime type and name.

    Either ``data`` or ``path`` must be given; a path is read lazily at staging
    time so read errors are reported per file.
    """

    def __init__(
        self,
        filename: str,
        mime_type: str = "",
        data: Optional[bytes] = None,
        path: Optional[str] = None,
    ):
        if data is None and path is None:
            raise ValueError("RawFile needs either data or path")
        self.filename = filename
        mime_type = base_mime_type(mime_type or "")
        self.mime_type = mime_type or mimetypes.guess_type(filename)[0] or FALLBACK_MIME_TYPE
        self._data = data
        self._path = Path(path) if path is not None else None

    @classmethod
    def from_path(cls, path: str, mime_type: str = "") -> "RawFile":
        return cls(filename=Path(path).name, mime_type=mime_type, path=path)

    @property
    def size(self) -> int:
        if self._data is not None:
            return len(self._data)
        return self._path.stat().st_size

    def read(self) -> bytes:
        if self._data is not None:
            return self._data
        return self._path.read_bytes()


class StagingOutcome(NamedTuple):
    """Per-file result of a staging batch; exactly one field is set."""

    attachment: Optional[AttachmentRef]
    error: Optional[StagingError]

    @property
    def ok(self) -> bool:
        return self.error is None


class PreviewRegistry:
    """Holds image bytes behind volatile ``blob:`` handles for the live session."""

    def __init__(self):
        self._lock = threading.Lock()
        self._handles: Dict[str, Tuple[str, bytes]] = {}

    def allocate(self, mime_type: str, data: bytes) -> str:
        handle = f"{VOLATILE_PREFIX}riskchat/{uuid.uuid4()}"
        with self._lock:
            self._handles[handle] = (mime_type, data)
        return handle

    def resolve(self, handle: str) -> Optional[Tuple[str, bytes]]:
        with self._lock:
            return self._handles.get(handle)

    def release(self, handle: Optional[str]) -> None:
        if not is_volatile(handle):
            return
        with self._lock:
            self._handles.pop(handle, None)

    def release_all(self) -> None:
        with self._lock:
            self._handles.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)


class AttachmentStager:
    """Turns raw files into transport-encoded attachments.

    Parameters
    ----------
    translator : Translator
        Used for the user-facing error messages.
    previews : PreviewRegistry, optional
        Registry receiving the volatile preview handles allocated for images.
    max_file_bytes : int, default=10 MiB
        Ceiling for any file.
    max_text_file_bytes : int, default=4 MiB
        Ceiling for plain text files.
    """

    def __init__(
        self,
        translator: Translator,
        previews: Optional[PreviewRegistry] = None,
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
        max_text_file_bytes: int = DEFAULT_MAX_TEXT_FILE_BYTES,
        max_workers: int = 4,
    ):
        self.translator = translator
        self.previews = previews if previews is not None else PreviewRegistry()
        self.max_file_bytes = max_file_bytes
        self.max_text_file_bytes = max_text_file_bytes
        self.max_workers = max_workers

    def stage(self, raw: RawFile) -> StagingOutcome:
        """Stages one file, never raising."""
        try:
            return StagingOutcome(self._stage(raw), None)
        except StagingError as error:
            logger.warning("Could not stage %s: %s", raw.filename, error.message)
            return StagingOutcome(None, error)

    def stage_all(self, raw_files: Iterable[RawFile]) -> List[StagingOutcome]:
        """Stages files concurrently; results keep the input order.

        One file's failure never affects the others.
        """
        raw_files = list(raw_files)
        if not raw_files:
            return []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(raw_files))) as pool:
            return list(pool.map(self.stage, raw_files))

    def release(self, attachment: AttachmentRef) -> None:
        """Frees the preview handle of an attachment removed by the user."""
        self.previews.release(attachment.preview_ref)

    def _stage(self, raw: RawFile) -> AttachmentRef:
        t = self.translator
        name = raw.filename
        mime_type = raw.mime_type

        try:
            size = raw.size
        except OSError as exc:
            raise ReadFailure(t.t("chat.errorReadFailure", fileName=name), name) from exc

        if size > self.max_file_bytes:
            raise FileTooLarge(
                t.t("chat.errorFileTooLarge", fileName=name, limit=_format_size(self.max_file_bytes)),
                name,
            )

        if is_binary_type(mime_type):
            data = self._read(raw)
            encoded = base64.b64encode(data).decode("ascii")
            preview = None
            if mime_type.startswith("image/"):
                preview = self.previews.allocate(mime_type, data)
            return AttachmentRef(
                name=name, mime_type=mime_type, inline_data=encoded, preview_ref=preview
            )

        if mime_type == TEXT_MIME_TYPE:
            if size > self.max_text_file_bytes:
                raise FileTooLarge(
                    t.t(
                        "chat.errorFileTooLarge",
                        fileName=name,
                        limit=_format_size(self.max_text_file_bytes),
                    ),
                    name,
                )
            data = self._read(raw)
            try:
                text = data.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise ReadFailure(t.t("chat.errorReadFailure", fileName=name), name) from exc
            return AttachmentRef(name=name, mime_type=mime_type, text_content=text)

        raise UnsupportedType(t.t("chat.errorUnsupportedFileType", fileType=mime_type), name)

    def _read(self, raw: RawFile) -> bytes:
        try:
            return raw.read()
        except OSError as exc:
            raise ReadFailure(
                self.translator.t("chat.errorReadFailure", fileName=raw.filename), raw.filename
            ) from exc
