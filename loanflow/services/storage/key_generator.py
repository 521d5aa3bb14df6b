import re
from uuid import UUID, uuid4

_UNSAFE_CHARS = re.compile(r"[^\w.\-()+\s]")
_WHITESPACE = re.compile(r"\s+")


class KeyGenerator:
    @staticmethod
    def _safe_filename(filename: str | None) -> str:
        cleaned = _UNSAFE_CHARS.sub("_", (filename or "").strip())
        cleaned = _WHITESPACE.sub(" ", cleaned)
        return cleaned or "file"

    @staticmethod
    def task_attachment_key(task_id: UUID | str, filename: str | None) -> str:
        return f"tasks/{task_id}/{uuid4()}-{KeyGenerator._safe_filename(filename)}"

    @staticmethod
    def client_document_key(client_id: UUID | str, filename: str | None) -> str:
        return f"clients/{client_id}/{uuid4()}-{KeyGenerator._safe_filename(filename)}"

    @staticmethod
    def belongs_to(prefix: str, owner_id: UUID | str, object_key: str) -> bool:
        """True when ``object_key`` was minted for this task or client."""
        return object_key.startswith(f"{prefix}/{owner_id}/") and ".." not in object_key.split("/")


def sanitize_filename(filename: str | None) -> str:
    return KeyGenerator._safe_filename(filename)
