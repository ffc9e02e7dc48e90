from __future__ import annotations

import base64
from pathlib import Path

from utterflow.attachments import Attachment, AttachmentType, content_blocks, mime_type_for


def test_image_attachment_becomes_base64_image_block() -> None:
    attachment = Attachment.from_image_bytes(b"\x89PNGdata")

    block = attachment.to_content_block()

    assert block == {
        "type": "image",
        "source": {
            "type": "base64",
            "media_type": "image/png",
            "data": base64.b64encode(b"\x89PNGdata").decode("ascii"),
        },
    }


def test_pdf_attachment_becomes_document_block(tmp_path: Path) -> None:
    path = tmp_path / "spec.pdf"
    path.write_bytes(b"%PDF-1.4")

    attachment = Attachment.from_file(path)

    assert attachment.type == AttachmentType.DOCUMENT
    assert attachment.to_content_block()["type"] == "document"
    assert attachment.to_content_block()["source"]["media_type"] == "application/pdf"


def test_text_attachment_is_inlined(tmp_path: Path) -> None:
    path = tmp_path / "notes.md"
    path.write_text("remember the edge case", encoding="utf-8")

    block = Attachment.from_file(path).to_content_block()

    assert block == {
        "type": "text",
        "text": "--- notes.md ---\nremember the edge case\n--- end notes.md ---",
    }


def test_content_blocks_skip_undecodable_documents() -> None:
    binary = Attachment(
        type=AttachmentType.DOCUMENT,
        file_name="blob.bin",
        data=b"\xff\xfe\xfd",
        mime_type="application/octet-stream",
    )
    screenshot = Attachment.from_screenshot(b"png")

    blocks = content_blocks("look at this", [binary, screenshot])

    assert blocks[0] == {"type": "text", "text": "look at this"}
    assert [block["type"] for block in blocks] == ["text", "image"]
    assert screenshot.file_name.startswith("screenshot-")


def test_from_file_missing_returns_none(tmp_path: Path) -> None:
    assert Attachment.from_file(tmp_path / "missing.txt") is None


def test_mime_types_and_size_labels() -> None:
    assert mime_type_for("JPG") == "image/jpeg"
    assert mime_type_for(".yml") == "text/yaml"
    assert mime_type_for("exe") == "application/octet-stream"
    assert Attachment.from_image_bytes(b"x" * 10).size_label == "10 B"
    assert Attachment.from_image_bytes(b"x" * 2048).size_label == "2 KB"
