import base64
from typing import Literal, Optional

UNSUPPORTED_UPLOAD_MESSAGE = "Unsupported file type. Please upload a .txt or image file."

UploadKind = Literal["text", "image"]


class UnsupportedUploadError(ValueError):
    pass


def image_bytes_to_base64(image_bytes: bytes) -> str:
    return base64.b64encode(image_bytes).decode("utf-8")


def normalize_image_base64(image_base64: str) -> str:
    raw = (image_base64 or "").strip()
    if raw.startswith("data:"):
        _, _, tail = raw.partition(",")
        raw = tail.strip()
    return "".join(raw.split())


def upload_kind(filename: Optional[str], content_type: Optional[str]) -> UploadKind:
    ctype = (content_type or "").split(";")[0].strip().lower()
    name = (filename or "").strip().lower()
    if ctype.startswith("image/"):
        return "image"
    if ctype.startswith("text/") or name.endswith(".txt"):
        return "text"
    raise UnsupportedUploadError(UNSUPPORTED_UPLOAD_MESSAGE)


def decode_text_upload(content: bytes) -> str:
    return content.decode("utf-8", errors="replace").lstrip("\ufeff")
