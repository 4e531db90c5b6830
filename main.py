# main.py
import os
import logging # Import logging
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette import status
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

import assets
import github_app
import submission as sub

# --- Configuration ---
# Get the directory where this script is located
BASE_DIR = Path(__file__).resolve().parent
# Stylesheets and the lightbox script are served from `/static`; the folder
# on disk keeps the capital "S".
STATIC_DIR = BASE_DIR / "Static"
TEMPLATES_DIR = BASE_DIR / "templates"
DEFAULT_SITE_DIR = BASE_DIR / "site"

SUBMIT_PATHS = ("/api/submit-image", "/.netlify/functions/submit-image")
SUBMIT_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _configure_logging() -> logging.Logger:
    """Configure console + rotating file logging with env-driven levels.

    Env vars:
    - APP_LOG_LEVEL: console log level (default INFO)
    - APP_FILE_LOG: enable file logging to logs/app.log (default 1/true)
    - APP_FILE_LOG_LEVEL: file log level (default INFO)
    """
    logger = logging.getLogger()
    if getattr(logger, "_app_logging_configured", False):
        return logging.getLogger(__name__)

    level_name = os.getenv("APP_LOG_LEVEL", "INFO").upper()
    file_level_name = os.getenv("APP_FILE_LOG_LEVEL", level_name).upper()
    level = getattr(logging, level_name, logging.INFO)
    file_level = getattr(logging, file_level_name, level)

    logger.setLevel(min(level, file_level))

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Console handler (always on)
    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(fmt)
    logger.addHandler(sh)

    # Optional rotating file handler
    if _parse_bool_env(os.getenv("APP_FILE_LOG"), True):
        from logging.handlers import RotatingFileHandler

        logs_dir = BASE_DIR / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(str(logs_dir / "app.log"), maxBytes=5 * 1024 * 1024, backupCount=3)
        fh.setLevel(file_level)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    setattr(logger, "_app_logging_configured", True)
    return logging.getLogger(__name__)


def _parse_bool_env(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in {"1", "true", "yes", "y", "on"}:
        return True
    if candidate in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _parse_float_env(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _parse_int_env(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def load_settings() -> Dict[str, Any]:
    """Build runtime settings from the environment."""
    return {
        "site_dir": Path(os.getenv("DAM_SITE_DIR", str(DEFAULT_SITE_DIR))).expanduser(),
        "public_url": os.getenv("DAM_PUBLIC_URL", "").strip().rstrip("/"),
        "peel_editor_url": os.getenv("DAM_PEEL_EDITOR_URL", assets.DEFAULT_PEEL_EDITOR_URL),
        "submit_max_bytes": max(1, _parse_int_env(os.getenv("SUBMIT_MAX_BYTES"), sub.MAX_FILE_SIZE)),
        "submit_default_subfolder": sub.sanitize_subfolder(os.getenv("SUBMIT_DEFAULT_SUBFOLDER"), sub.DEFAULT_SUBFOLDER),
        "cors_allow_origin": os.getenv("CORS_ALLOW_ORIGIN", "*"),
        "migrate_sidecars_on_startup": _parse_bool_env(os.getenv("DAM_MIGRATE_SIDECARS_AT_STARTUP"), False),
        "github_app_id": os.getenv("GITHUB_APP_ID", "").strip(),
        "github_installation_id": os.getenv("GITHUB_INSTALLATION_ID", "").strip(),
        "github_private_key": os.getenv("GITHUB_PRIVATE_KEY", ""),
        "repo_owner": os.getenv("REPO_OWNER", "").strip(),
        "repo_name": os.getenv("REPO_NAME", "").strip(),
        "github_base_branch": os.getenv("GITHUB_BASE_BRANCH", "main").strip() or "main",
        "github_api_url": os.getenv("GITHUB_API_URL", github_app.DEFAULT_API_URL).rstrip("/"),
        "github_timeout_seconds": max(1.0, _parse_float_env(os.getenv("GITHUB_TIMEOUT_SECONDS"), 30.0)),
    }


logger = _configure_logging()

# --- FastAPI App Setup ---
app = FastAPI(title="StaticDAM")
app.state.settings = load_settings()

app.mount("/static", StaticFiles(directory=STATIC_DIR, check_dir=False), name="static")

templates = Jinja2Templates(directory=TEMPLATES_DIR)


def _settings(request: Request) -> Dict[str, Any]:
    return request.app.state.settings


def _base_url(request: Request) -> str:
    return _settings(request)["public_url"] or str(request.base_url).rstrip("/")


def _cors_headers(settings: Dict[str, Any]) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": settings["cors_allow_origin"],
        "Access-Control-Allow-Headers": "Content-Type",
        "Access-Control-Allow-Methods": "POST, OPTIONS",
    }


def _error(message: str, status_code: int, headers: Dict[str, str]) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code, headers=headers)


def submit_to_github(settings: Dict[str, Any], submission: Dict[str, Any]) -> Dict[str, str]:
    """Blocking GitHub sequence; runs in the threadpool."""
    with github_app.client_from_settings(settings) as client:
        return github_app.open_submission_pr(client, submission, base_branch=settings["github_base_branch"])


@app.on_event("startup")
async def startup_event() -> None:
    settings = app.state.settings
    logger.info("Serving assets from %s", settings["site_dir"])
    if not (settings["github_app_id"] and settings["github_installation_id"] and settings["github_private_key"]):
        logger.warning("GitHub App credentials missing; submissions will fail until configured")
    if settings["migrate_sidecars_on_startup"]:
        counts = assets.validate_and_migrate_sidecars(settings["site_dir"])
        logger.info(
            "Validated %d assets; created %d and updated %d sidecars",
            counts["total"],
            counts["created"],
            counts["updated"],
        )


@app.exception_handler(StarletteHTTPException)
async def submit_aware_http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    # Methods outside SUBMIT_METHODS are refused by the router; keep the JSON envelope and CORS headers
    if request.url.path in SUBMIT_PATHS and exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        headers = {**_cors_headers(_settings(request)), **(exc.headers or {})}
        return _error("Method not allowed", exc.status_code, headers)
    return await http_exception_handler(request, exc)


# --- Routes ---


@app.api_route(SUBMIT_PATHS[0], methods=SUBMIT_METHODS)
@app.api_route(SUBMIT_PATHS[1], methods=SUBMIT_METHODS, include_in_schema=False)
async def submit_image(request: Request) -> Response:
    """Accept an image/PDF upload and open a pull request adding it."""
    settings = _settings(request)
    headers = _cors_headers(settings)

    if request.method == "OPTIONS":
        return Response(status_code=status.HTTP_204_NO_CONTENT, headers=headers)
    if request.method != "POST":
        return _error("Method not allowed", status.HTTP_405_METHOD_NOT_ALLOWED, headers)

    content_type = request.headers.get("content-type", "")
    if "multipart/form-data" not in content_type:
        return _error("Content-Type must be multipart/form-data", status.HTTP_400_BAD_REQUEST, headers)

    try:
        form = await request.form()
    except StarletteHTTPException as exc:
        logger.warning("Rejected malformed multipart body: %s", exc.detail)
        return _error(str(exc.detail), status.HTTP_400_BAD_REQUEST, headers)

    try:
        upload = form.get("file")
        content: Optional[bytes] = None
        upload_filename: Optional[str] = None
        if isinstance(upload, UploadFile):
            content = await upload.read()
            upload_filename = upload.filename
        fields: Dict[str, str] = {}
        for key in ("filename", "subfolder", *sub.METADATA_FIELDS):
            value = form.get(key)
            if isinstance(value, str):
                fields[key] = value
        submission = sub.prepare_submission(
            content,
            upload_filename,
            fields,
            max_bytes=settings["submit_max_bytes"],
            default_subfolder=settings["submit_default_subfolder"],
        )
        result = await run_in_threadpool(submit_to_github, settings, submission)
    except sub.SubmissionError as exc:
        logger.info("Submission rejected: %s", exc.message)
        return _error(exc.message, exc.status_code, headers)
    except github_app.GitHubError as exc:
        logger.error("Submit image error: %s", exc)
        return _error(str(exc), status.HTTP_500_INTERNAL_SERVER_ERROR, headers)
    except Exception as exc:
        logger.exception("Submit image error")
        return _error(str(exc) or "Unknown error", status.HTTP_500_INTERNAL_SERVER_ERROR, headers)
    finally:
        await form.close()

    return JSONResponse({"success": True, **result}, headers=headers)


def _catalog(request: Request, query: Optional[str]) -> list:
    return assets.filter_assets(assets.scan_assets(_settings(request)["site_dir"]), query)


def _asset_or_404(request: Request, asset_path: str) -> Dict[str, Any]:
    try:
        return assets.load_asset(_settings(request)["site_dir"], asset_path)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except FileNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Asset not found")


def _lightbox_context(request: Request, asset_path: str, query: Optional[str]) -> Dict[str, Any]:
    record = _asset_or_404(request, asset_path)
    items = _catalog(request, query)
    prev_path, next_path = assets.neighbors(items, record["path"])
    paths = [item["path"] for item in items]
    return {
        "asset": record,
        "prev": prev_path,
        "next": next_path,
        "index": paths.index(record["path"]) if record["path"] in paths else None,
        "total": len(items),
        "links": assets.share_links(_base_url(request), record["path"], _settings(request)["peel_editor_url"]),
        "display": assets.display_fields(record),
        "progressive": assets.wants_progressive_load(record),
    }


@app.get("/api/assets", response_class=JSONResponse)
async def api_assets(request: Request, q: Optional[str] = None) -> JSONResponse:
    items = _catalog(request, q)
    return JSONResponse({"assets": items, "count": len(items)})


@app.get("/api/assets/{asset_path:path}", response_class=JSONResponse)
async def api_asset_detail(request: Request, asset_path: str, q: Optional[str] = None) -> JSONResponse:
    return JSONResponse(_lightbox_context(request, asset_path, q))


@app.get("/asset/{asset_path:path}", response_class=HTMLResponse)
async def asset_lightbox(request: Request, asset_path: str, q: Optional[str] = None) -> HTMLResponse:
    """Full-page lightbox for a single asset (the shareable DAM URL)."""
    context = _lightbox_context(request, asset_path, q)
    context["query"] = q or ""
    return templates.TemplateResponse(request, "lightbox.html", context)


@app.api_route("/assets/{file_path:path}", methods=["GET", "HEAD"], include_in_schema=False)
async def asset_file(request: Request, file_path: str) -> FileResponse:
    """Raw asset bytes at their site-relative path, so share links resolve."""
    rel_path = f"{assets.ASSETS_FOLDER}/{file_path}"
    try:
        path = assets.resolve_asset_path(_settings(request)["site_dir"], rel_path)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    if not path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    return FileResponse(path)


@app.get("/", response_class=HTMLResponse)
async def read_root(request: Request, q: Optional[str] = None) -> HTMLResponse:
    """Gallery grid, optionally narrowed by a filter such as ``tag:beach``."""
    logger.info("Request received for root path ('/')")
    items = _catalog(request, q)
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "assets": items,
            "query": q or "",
            "gallery_title": "StaticDAM",
        },
    )

# --- Running the App ---
# Development:
#     uvicorn main:app --reload
# Production (see gunicorn.conf.py for env overrides):
#     gunicorn main:app --config gunicorn.conf.py
