"""File, image, and document attachments handed to agent sessions."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterable
from uuid import uuid4

logger = logging.getLogger(__name__)


class AttachmentType(str, Enum):
    IMAGE = "image"
    DOCUMENT = "document"
    SCREENSHOT = "screenshot"


_MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "pdf": "application/pdf",
    "md": "text/markdown",
    "markdown": "text/markdown",
    "txt": "text/plain",
    "json": "application/json",
    "swift": "text/x-swift",
    "py": "text/x-python",
    "js": "text/javascript",
    "ts": "text/typescript",
    "html": "text/html",
    "css": "text/css",
    "yaml": "text/yaml",
    "yml": "text/yaml",
    "xml": "text/xml",
    "csv": "text/csv",
}

_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp", "bmp", "tiff", "tif"}

SUPPORTED_EXTENSIONS = (
    "png", "jpg", "jpeg", "gif", "webp",
    "pdf", "md", "txt", "json",
    "swift", "py", "js", "ts", "html", "css",
    "yaml", "yml", "xml", "csv",
)


@dataclass(frozen=True, slots=True)
class Attachment:
    """Immutable attachment value; converted to a content block when sent."""

    type: AttachmentType
    file_name: str
    data: bytes
    mime_type: str
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def size_label(self) -> str:
        size = len(self.data)
        if size < 1024:
            return f"{size} B"
        if size < 1024 * 1024:
            return f"{size // 1024} KB"
        return f"{size / (1024 * 1024):.1f} MB"

    def to_content_block(self) -> dict[str, Any] | None:
        """Build the transport block for this attachment, or None if it cannot be sent."""

        encoded = base64.b64encode(self.data).decode("ascii")

        if self.type in {AttachmentType.IMAGE, AttachmentType.SCREENSHOT}:
            return {
                "type": "image",
                "source": {"type": "base64", "media_type": self.mime_type, "data": encoded},
            }

        if self.mime_type == "application/pdf":
            return {
                "type": "document",
                "source": {"type": "base64", "media_type": self.mime_type, "data": encoded},
            }

        try:
            text = self.data.decode("utf-8")
        except UnicodeDecodeError:
            return None
        return {
            "type": "text",
            "text": f"--- {self.file_name} ---\n{text}\n--- end {self.file_name} ---",
        }

    @classmethod
    def from_file(cls, path: Path | str) -> "Attachment | None":
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as exc:
            logger.warning("Unable to read attachment", extra={"path": str(path), "error": str(exc)})
            return None
        ext = path.suffix.lower().lstrip(".")
        kind = AttachmentType.IMAGE if ext in _IMAGE_EXTENSIONS else AttachmentType.DOCUMENT
        return cls(
            type=kind,
            file_name=path.name,
            data=data,
            mime_type=mime_type_for(ext),
        )

    @classmethod
    def from_image_bytes(cls, data: bytes, *, file_name: str = "pasted-image.png") -> "Attachment":
        return cls(type=AttachmentType.IMAGE, file_name=file_name, data=data, mime_type="image/png")

    @classmethod
    def from_screenshot(cls, png_data: bytes, *, taken_at: datetime | None = None) -> "Attachment":
        stamp = (taken_at or datetime.now()).strftime("%H%M%S")
        return cls(
            type=AttachmentType.SCREENSHOT,
            file_name=f"screenshot-{stamp}.png",
            data=png_data,
            mime_type="image/png",
        )


def mime_type_for(extension: str) -> str:
    return _MIME_TYPES.get(extension.lower().lstrip("."), "application/octet-stream")


def content_blocks(text: str, attachments: Iterable[Attachment] = ()) -> list[dict[str, Any]]:
    """Return the prompt text followed by every sendable attachment block."""

    blocks: list[dict[str, Any]] = [{"type": "text", "text": text}]
    for attachment in attachments:
        block = attachment.to_content_block()
        if block is None:
            logger.warning(
                "Skipping attachment that cannot be encoded",
                extra={"file_name": attachment.file_name, "mime_type": attachment.mime_type},
            )
            continue
        blocks.append(block)
    return blocks


__all__ = [
    "Attachment",
    "AttachmentType",
    "SUPPORTED_EXTENSIONS",
    "content_blocks",
    "mime_type_for",
]
