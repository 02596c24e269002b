from __future__ import annotations

from typing import Any

from loguru import logger

from message_timeline.models import Attachment

_DEFAULT_MIME = "application/octet-stream"
_KNOWN_TYPES = {"image", "audio", "file"}


def _base_type(mime: str) -> str:
    if mime.startswith("image/"):
        return "image"
    if mime.startswith("audio/"):
        return "audio"
    return "file"


def _to_size(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def normalize_attachments(metadata: dict[str, Any], message_id: str) -> tuple[Attachment, ...] | None:
    """Classify raw attachment descriptors.

    The store keeps only a small preview for images, so ``preview`` is mapped
    onto ``url``. An image without any preview or url cannot be shown inline
    and is downgraded to a plain file.
    """
    raw_attachments = metadata.get("attachments")
    if not isinstance(raw_attachments, list) or not raw_attachments:
        return None

    attachments: list[Attachment] = []
    for index, raw in enumerate(raw_attachments):
        if not isinstance(raw, dict):
            logger.warning(f"Skipping malformed attachment #{index} on message {message_id}")
            continue

        mime = str(raw.get("mimeType") or raw.get("mime") or _DEFAULT_MIME)
        url = str(raw.get("preview") or raw.get("url") or "")
        base_type = _base_type(mime)
        if url:
            declared = raw.get("type")
            attachment_type = declared if declared in _KNOWN_TYPES else base_type
        else:
            attachment_type = "file" if base_type == "image" else base_type

        attachments.append(
            Attachment(
                id=str(raw.get("id") or f"{message_id}_att_{index}"),
                message_id=message_id,
                type=attachment_type,
                name=str(raw.get("name") or f"attachment-{index + 1}"),
                url=url,
                size=_to_size(raw.get("size")),
                mime_type=mime,
            )
        )
    return tuple(attachments) or None
