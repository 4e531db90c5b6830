# submission.py
"""Validation and shaping of uploaded asset submissions.

Everything here is pure: it takes the bytes and form fields a request
carried and returns a plain dict describing what should land in the
content repository. Nothing talks to GitHub from this module.
"""

import json
import re
import time
from pathlib import PurePosixPath
from typing import Any, Dict, List, Mapping, Optional

MAX_FILE_SIZE = 25 * 1024 * 1024  # GitHub blob limit
DEFAULT_SUBFOLDER = "incoming"

ALLOWED_MIME_TYPES = [
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
    "image/tiff",
    "application/pdf",
]

EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "image/tiff": ".tiff",
    "application/pdf": ".pdf",
}

METADATA_FIELDS = ("category", "person", "tags", "product")

METADATA_LABELS = {
    "category": "Category",
    "person": "Person",
    "tags": "Tags",
    "product": "Product",
}


class SubmissionError(Exception):
    """Raised when an upload cannot be accepted as submitted."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def detect_file_type(data: bytes) -> Optional[str]:
    """Return the MIME type implied by the leading bytes, or None."""
    if len(data) < 12:
        return None
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data[:4] == b"\x89PNG":
        return "image/png"
    if data[:3] == b"GIF":
        return "image/gif"
    # RIFF container, WEBP fourcc at offset 8
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[:4] in (b"II*\x00", b"MM\x00*"):
        return "image/tiff"
    if data[:5] == b"%PDF-":
        return "application/pdf"
    return None


def sanitize_filename(filename: str) -> str:
    """Return a repository-safe file name without directory components."""
    base = re.split(r"[/\\]", filename or "")[-1] or "image"
    sanitized = re.sub(r"[^a-zA-Z0-9._-]", "_", base)
    sanitized = re.sub(r"_{2,}", "_", sanitized)
    sanitized = re.sub(r"^[._-]+", "", sanitized)[:100]
    return sanitized or "image.jpg"


def sanitize_subfolder(value: Optional[str], default: str = DEFAULT_SUBFOLDER) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9/_-]", "", value or "")
    return cleaned or default


def parse_list_field(value: Optional[str]) -> Optional[List[str]]:
    """Parse a metadata field sent either as a JSON array or comma list.

    Valid JSON that is not an array of strings is ignored.
    """
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(parsed, list) and all(isinstance(item, str) for item in parsed):
        return parsed
    return None


def ensure_extension(filename: str, mime_type: str) -> str:
    expected = EXTENSIONS[mime_type]
    if filename.lower().endswith(expected):
        return filename
    return re.sub(r"\.[^.]+$", "", filename) + expected


def has_metadata(metadata: Mapping[str, Optional[List[str]]]) -> bool:
    return any(metadata.get(key) for key in METADATA_FIELDS)


def _describe_limit(max_bytes: int) -> str:
    for unit, size in (("MB", 1024 * 1024), ("KB", 1024)):
        if max_bytes >= size:
            return f"{round(max_bytes / size, 1):g}{unit}"
    return f"{max_bytes} bytes"


def prepare_submission(
    content: Optional[bytes],
    upload_filename: Optional[str],
    fields: Mapping[str, Optional[str]],
    max_bytes: int = MAX_FILE_SIZE,
    default_subfolder: str = DEFAULT_SUBFOLDER,
) -> Dict[str, Any]:
    """Validate an upload and work out where it goes in the repository.

    ``fields`` holds the raw text form fields. A ``filename`` field wins over
    the name the browser attached to the file part.
    """
    if content is None:
        raise SubmissionError("No file provided")
    if len(content) > max_bytes:
        raise SubmissionError(f"File too large (max {_describe_limit(max_bytes)})")

    detected = detect_file_type(content)
    if not detected or detected not in ALLOWED_MIME_TYPES:
        raise SubmissionError("Invalid file type. Allowed: JPEG, PNG, WebP, GIF, TIFF, PDF")

    subfolder = sanitize_subfolder(fields.get("subfolder"), default_subfolder)
    raw_name = fields.get("filename") or upload_filename or "image"
    filename = ensure_extension(sanitize_filename(raw_name), detected)

    metadata = {key: parse_list_field(fields.get(key)) for key in METADATA_FIELDS}

    return {
        "content": content,
        "mime_type": detected,
        "filename": filename,
        "subfolder": subfolder,
        "path": str(PurePosixPath("assets") / subfolder / filename),
        "metadata": metadata,
    }


def build_pr_body(path: str, metadata: Mapping[str, Optional[List[str]]]) -> str:
    body = f"## Submitted via API\n\n**File**: `{path}`\n"
    if not has_metadata(metadata):
        return body

    body += "\n### Metadata (to embed after merge)\n"
    present = {key: metadata[key] for key in METADATA_FIELDS if metadata.get(key)}
    for key, values in present.items():
        body += f"- **{METADATA_LABELS[key]}**: {', '.join(values)}\n"

    # Machine-readable copy for the merge-time embedding job
    body += f"\n<!-- metadata:{json.dumps(present, separators=(',', ':'))} -->\n"
    return body


def commit_message(filename: str) -> str:
    return f"feat(asset): add {filename}"


def pr_title(submission: Mapping[str, Any]) -> str:
    kind = "document" if submission.get("mime_type") == "application/pdf" else "image"
    return f"Add {kind}: {submission['filename']}"


def branch_name(subfolder: str, now: Optional[float] = None) -> str:
    stamp = int((time.time() if now is None else now) * 1000)
    return f"submit/{subfolder}-{stamp}"
