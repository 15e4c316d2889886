# 🛠️ Utility functions for file naming and reply formatting

import mimetypes
import os
from typing import Optional


def format_size_mb(size_bytes: Optional[int]) -> str:
    """Bytes -> megabytes with two decimals, as stored in FileSize."""
    return f"{(size_bytes or 0) / 1024 / 1024:.2f}"


def guess_extension(file_name: str, mime_type: str) -> str:
    ext = os.path.splitext(file_name)[1]
    if ext:
        return ext.lower()
    if mime_type == "image/jpeg":
        return ".jpg"
    return mimetypes.guess_extension(mime_type or "") or ".jpg"


def normalize_directory(raw: str) -> Optional[str]:
    """
    Clean a user supplied folder path.
    Returns "" for root, None when the path is not allowed.
    """
    parts = []
    for part in raw.strip().replace("\\", "/").split("/"):
        part = part.strip()
        if not part or part == ".":
            continue
        if part == ".." or "@" in part:
            return None
        parts.append(part)
    return "/".join(parts)


def directory_from_key(storage_key: str) -> str:
    """Folder of an allocated storage key, with trailing slash ("" at root)."""
    if "/" not in storage_key:
        return ""
    return storage_key.rsplit("/", 1)[0] + "/"


# ---------------------------
# Reply texts
# ---------------------------
def build_saved_text(storage_key: str, size_mb: str) -> str:
    return f"✅ Image saved\nFile ID: {storage_key}\nSize: {size_mb}MB"


def build_receiving_text() -> str:
    return "📥 Receiving images..."


def build_batch_text(count: int, total_bytes: int, first_file: str) -> str:
    noun = "image" if count == 1 else "images"
    return (
        f"✅ {count} {noun} saved\n"
        f"First file: {first_file}\n"
        f"Total size: {format_size_mb(total_bytes)}MB"
    )


def build_directory_text(directory: str, changed: bool) -> str:
    shown = directory or "/ (root)"
    if changed:
        return f"📁 Upload directory set to: {shown}"
    return f"📁 Current upload directory: {shown}"


def build_invalid_directory_text() -> str:
    return "⚠️ Invalid directory name. Use letters, digits and '/', without '..' or '@'."
