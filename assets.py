# assets.py
"""Asset catalog backing the gallery grid and the lightbox viewer.

Assets live under ``<site>/assets``. Editorial metadata (tags, people,
categories...) comes from a JSON sidecar next to each file; technical
metadata (dimensions, camera, capture date) is read from the file itself.
"""

import json
import logging
import math
import os
import tempfile
import time
from contextlib import suppress
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from PIL import Image, ExifTags
from jsonschema import validate as js_validate, ValidationError

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
SCHEMA_PATH = BASE_DIR / "AssetSidecar.schema.json"

ASSETS_FOLDER = "assets"

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".tiff", ".tif"}
VIDEO_EXTENSIONS = {".mp4", ".mov", ".webm", ".avi"}
PDF_EXTENSIONS = {".pdf"}
ALLOWED_ASSET_EXTENSIONS = IMAGE_EXTENSIONS | VIDEO_EXTENSIONS | PDF_EXTENSIONS

LIST_FIELDS = ("category", "person", "tags", "product", "hierarchical")
FILTER_PREFIXES = ("tag", "category", "person", "product", "folder")

# Below this size the browser just loads the image directly
PROGRESSIVE_LOAD_MIN_BYTES = 500_000

DEFAULT_PEEL_EDITOR_URL = "https://banana.peel.diy/edit"

EXIF_IFD_POINTER = 0x8769


def atomic_write_json(path: Path, data: Dict[str, Any]) -> None:
    """Write JSON atomically with a unique temp file to avoid cross-process races."""
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(data, indent=2, ensure_ascii=False)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=path.name + ".", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    finally:
        if os.path.exists(tmp_name):
            with suppress(OSError):
                os.remove(tmp_name)


def load_schema() -> Dict[str, Any]:
    try:
        return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Unable to load schema at %s: %s", SCHEMA_PATH, exc)
        list_spec = {"type": "array", "items": {"type": "string"}, "default": []}
        return {
            "type": "object",
            "properties": {
                "subject": {"type": "string", "default": ""},
                **{field: dict(list_spec) for field in LIST_FIELDS},
                "dateTaken": {"type": ["string", "null"], "default": None},
                "duration": {"type": ["number", "null"], "default": None},
                "camera": {"type": ["object", "null"], "default": None},
                "detected_at": {"type": "number", "default": 0},
            },
            "required": ["subject", *LIST_FIELDS, "detected_at"],
        }


def _coerce_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, list):
        return [str(part).strip() for part in value if str(part).strip()]
    return []


def _coerce_duration(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return None
    if isinstance(value, (int, float)) and math.isfinite(value):
        return float(value)
    return None


def apply_schema_defaults(data: Dict[str, Any], schema: Dict[str, Any]) -> Dict[str, Any]:
    """Fill missing keys from schema defaults and repair common hand edits."""
    props = schema.get("properties", {})
    for key, spec in props.items():
        if key in data:
            continue
        if "default" in spec:
            data[key] = spec["default"]
        elif spec.get("type") == "string":
            data[key] = ""
        elif spec.get("type") == "array":
            data[key] = []
        elif spec.get("type") == "number":
            data[key] = 0.0

    for field in LIST_FIELDS:
        data[field] = _coerce_list(data.get(field))
    if not isinstance(data.get("subject"), str):
        data["subject"] = "" if data.get("subject") is None else str(data["subject"])
    if data.get("duration") is not None:
        data["duration"] = _coerce_duration(data["duration"])
    if isinstance(data.get("detected_at"), str):
        try:
            data["detected_at"] = float(data["detected_at"])
        except ValueError:
            data["detected_at"] = time.time()
    camera = data.get("camera")
    if camera is not None and not isinstance(camera, dict):
        data["camera"] = None
    elif isinstance(camera, dict):
        data["camera"] = {k: str(v) for k, v in camera.items() if k in ("make", "model") and v}
    # Drop keys the schema does not know about
    if schema.get("additionalProperties") is False:
        for key in [k for k in data if k not in props]:
            data.pop(key)
    return data


def sidecar_path(asset_path: Path) -> Path:
    return asset_path.with_suffix(".json")


def read_sidecar(asset_path: Path) -> Dict[str, Any]:
    json_path = sidecar_path(asset_path)
    if not json_path.exists():
        return {}
    try:
        loaded = json.loads(json_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Invalid JSON in %s: %s", json_path, exc)
        return {}
    return loaded if isinstance(loaded, dict) else {}


def ensure_sidecar(asset_path: Path, schema: Optional[Dict[str, Any]] = None) -> bool:
    """Create a default sidecar for an asset; returns True if one was written."""
    json_path = sidecar_path(asset_path)
    if json_path.exists():
        return False
    data = apply_schema_defaults({"detected_at": time.time()}, schema or load_schema())
    atomic_write_json(json_path, data)
    return True


def _validated(data: Dict[str, Any], schema: Dict[str, Any], json_path: Path) -> Dict[str, Any]:
    """Reset offending top-level keys until the sidecar validates."""
    for _ in range(len(schema.get("properties", {})) + 1):
        try:
            js_validate(instance=data, schema=schema)
            return data
        except ValidationError as exc:
            logger.warning("Sidecar %s failed schema validation: %s", json_path, exc.message)
            if not exc.path:
                break
            data.pop(exc.path[0], None)
            data = apply_schema_defaults(data, schema)
    return apply_schema_defaults({}, schema)


def validate_and_migrate_sidecars(site_dir: Path) -> Dict[str, int]:
    """Ensure every asset has a schema-conformant sidecar.

    Returns counters for the assets seen, sidecars created and sidecars
    rewritten.
    """
    schema = load_schema()
    counts = {"total": 0, "created": 0, "updated": 0}
    for asset_path in iter_asset_files(site_dir):
        counts["total"] += 1
        if ensure_sidecar(asset_path, schema):
            counts["created"] += 1
            continue
        data = read_sidecar(asset_path)
        before = json.dumps(data, sort_keys=True)
        data = _validated(apply_schema_defaults(data, schema), schema, sidecar_path(asset_path))
        if json.dumps(data, sort_keys=True) != before:
            atomic_write_json(sidecar_path(asset_path), data)
            counts["updated"] += 1
    return counts


def media_kind(path: str) -> str:
    suffix = PurePosixPath(path).suffix.lower()
    if suffix in VIDEO_EXTENSIONS:
        return "video"
    if suffix in PDF_EXTENSIONS:
        return "pdf"
    return "image"


def _exif_datetime_to_iso(value: Any) -> Optional[str]:
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    text = str(value or "").strip().rstrip("\x00")
    if not text:
        return None
    try:
        return datetime.strptime(text, "%Y:%m:%d %H:%M:%S").isoformat()
    except ValueError:
        return None


def _extract_image_info(image_path: Path) -> Dict[str, Any]:
    """Return dimensions plus camera/date hints from EXIF."""
    info: Dict[str, Any] = {}
    try:
        with Image.open(image_path) as img:
            info["w"], info["h"] = img.size
            exif = img.getexif()
            if not exif:
                return info
            tags = {ExifTags.TAGS.get(tag_id, tag_id): value for tag_id, value in exif.items()}
            with suppress(KeyError, TypeError, ValueError):
                for tag_id, value in exif.get_ifd(EXIF_IFD_POINTER).items():
                    tags.setdefault(ExifTags.TAGS.get(tag_id, tag_id), value)
    except Exception as exc:  # pragma: no cover - dependent on image format
        logger.debug("Unable to read image info from %s: %s", image_path, exc)
        return info

    make = str(tags.get("Make") or "").strip().rstrip("\x00")
    model = str(tags.get("Model") or "").strip().rstrip("\x00")
    if make or model:
        info["camera"] = {k: v for k, v in (("make", make), ("model", model)) if v}
    taken = _exif_datetime_to_iso(tags.get("DateTimeOriginal")) or _exif_datetime_to_iso(tags.get("DateTime"))
    if taken:
        info["dateTaken"] = taken
    return info


def iter_asset_files(site_dir: Path):
    root = Path(site_dir) / ASSETS_FOLDER
    if not root.is_dir():
        logger.warning("Assets directory not found or is not a directory: %s", root)
        return
    for path in sorted(root.rglob("*")):
        if path.is_file() and path.suffix.lower() in ALLOWED_ASSET_EXTENSIONS:
            yield path


def build_record(site_dir: Path, asset_path: Path) -> Dict[str, Any]:
    """Combine sidecar data and file metadata into the viewer's asset record."""
    rel = asset_path.relative_to(site_dir).as_posix()
    kind = media_kind(rel)
    sidecar = read_sidecar(asset_path)
    date_taken = sidecar.get("dateTaken")

    record: Dict[str, Any] = {
        "path": rel,
        "bytes": asset_path.stat().st_size,
        "w": 0,
        "h": 0,
        "subject": str(sidecar.get("subject") or ""),
        "dateTaken": date_taken if isinstance(date_taken, str) and date_taken else None,
        "duration": _coerce_duration(sidecar.get("duration")),
        "camera": None,
        "isVideo": kind == "video",
        "isPdf": kind == "pdf",
    }
    for field in LIST_FIELDS:
        record[field] = _coerce_list(sidecar.get(field))

    if kind == "image":
        info = _extract_image_info(asset_path)
        record["w"] = info.get("w", 0)
        record["h"] = info.get("h", 0)
        record["dateTaken"] = record["dateTaken"] or info.get("dateTaken")
        record["camera"] = info.get("camera")
    # Hand-entered camera details win over EXIF
    if isinstance(sidecar.get("camera"), dict) and sidecar["camera"]:
        record["camera"] = {k: str(v) for k, v in sidecar["camera"].items() if k in ("make", "model") and v}
    return record


def scan_assets(site_dir: Path) -> List[Dict[str, Any]]:
    """Return records for every asset under the site, sorted by path."""
    site_dir = Path(site_dir)
    records = []
    for asset_path in iter_asset_files(site_dir):
        try:
            records.append(build_record(site_dir, asset_path))
        except OSError as exc:
            logger.error("Failed to read asset %s: %s", asset_path, exc)
    logger.debug("Found %d assets under %s", len(records), site_dir)
    return records


def resolve_asset_path(site_dir: Path, rel_path: str) -> Path:
    """Map a site-relative asset path to a file, refusing traversal."""
    root = (Path(site_dir) / ASSETS_FOLDER).resolve()
    candidate = (Path(site_dir) / rel_path.lstrip("/")).resolve()
    if root != candidate and root not in candidate.parents:
        raise ValueError(f"Path outside assets directory: {rel_path}")
    if candidate.suffix.lower() not in ALLOWED_ASSET_EXTENSIONS:
        raise ValueError(f"Unsupported asset type: {rel_path}")
    return candidate


def load_asset(site_dir: Path, rel_path: str) -> Dict[str, Any]:
    asset_path = resolve_asset_path(site_dir, rel_path)
    if not asset_path.is_file():
        raise FileNotFoundError(rel_path)
    return build_record(Path(site_dir).resolve(), asset_path)


def folder_for(path: str) -> str:
    parts = path.split("/")
    return parts[1] if len(parts) > 2 else "Root"


def _parse_filter(query: str) -> Tuple[Optional[str], str]:
    prefix, sep, value = query.partition(":")
    if sep and prefix.lower() in FILTER_PREFIXES:
        return prefix.lower(), value.strip().lower()
    return None, query.strip().lower()


def filter_assets(items: List[Dict[str, Any]], query: Optional[str]) -> List[Dict[str, Any]]:
    """Apply a gallery filter such as ``tag:beach`` or plain search text."""
    if not query or not query.strip():
        return list(items)
    field, needle = _parse_filter(query)

    def matches(item: Dict[str, Any]) -> bool:
        if field == "folder":
            return folder_for(item["path"]).lower() == needle
        if field is not None:
            key = "tags" if field == "tag" else field
            return any(value.lower() == needle for value in item.get(key) or [])
        haystack = [item.get("subject") or "", PurePosixPath(item["path"]).name]
        for key in ("tags", "person", "category"):
            haystack.extend(item.get(key) or [])
        return any(needle in text.lower() for text in haystack)

    return [item for item in items if matches(item)]


def neighbors(items: List[Dict[str, Any]], path: str) -> Tuple[Optional[str], Optional[str]]:
    paths = [item["path"] for item in items]
    try:
        index = paths.index(path)
    except ValueError:
        return None, None
    prev_path = paths[index - 1] if index > 0 else None
    next_path = paths[index + 1] if index < len(paths) - 1 else None
    return prev_path, next_path


def share_links(base_url: str, path: str, peel_editor_url: str = DEFAULT_PEEL_EDITOR_URL) -> Dict[str, str]:
    base = base_url.rstrip("/")
    asset_url = f"{base}/{path}"
    return {
        "dam_url": f"{base}/asset/{quote(path, safe='')}",
        "asset_url": asset_url,
        "peel_url": f"{peel_editor_url}?img={quote(asset_url, safe='')}",
    }


def wants_progressive_load(record: Dict[str, Any]) -> bool:
    if record.get("isVideo") or record.get("isPdf"):
        return False
    return int(record.get("bytes") or 0) >= PROGRESSIVE_LOAD_MIN_BYTES


def format_file_size(size: int) -> str:
    if not size:
        return "Unknown"
    units = ["Bytes", "KB", "MB", "GB"]
    i = min(int(math.floor(math.log(size) / math.log(1024))), len(units) - 1)
    return f"{round(size / 1024 ** i, 2):g} {units[i]}"


def format_duration(seconds: Optional[float]) -> str:
    if not seconds:
        return ""
    try:
        whole = int(float(seconds))
    except (TypeError, ValueError, OverflowError):
        return ""
    return f"{whole // 60}:{whole % 60:02d}"


def format_date(value: Optional[str]) -> str:
    if not value or not isinstance(value, str):
        return "Unknown"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return value
    return f"{dt:%b} {dt.day}, {dt.year}"


def display_fields(record: Dict[str, Any]) -> Dict[str, str]:
    """Human readable strings shown in the lightbox sidebar."""
    name = PurePosixPath(record["path"]).name
    return {
        "file_name": name,
        "title": record.get("subject") or name,
        "folder": folder_for(record["path"]),
        "size": format_file_size(record.get("bytes") or 0),
        "dimensions": f"{record.get('w') or 0} × {record.get('h') or 0}",
        "date_taken": format_date(record.get("dateTaken")),
        "duration": format_duration(record.get("duration")),
    }
