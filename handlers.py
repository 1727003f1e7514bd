from fastapi import Request, Depends, Response
from fastapi.responses import ORJSONResponse, PlainTextResponse, RedirectResponse
from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import ValidationError
from urllib.parse import parse_qsl
import json
import logging
import os

from config import Settings
from errors import CollisionExhausted, NotFound, RenewalNotAllowed, RenewalTooEarly, ValidationRejected
from normalize import (
    LANGUAGES, content_size, normalize_expires_in, normalize_is_public, normalize_language,
    normalize_max_views, normalize_title, normalize_token_length, validate_content,
)
from rate_limit import RateLimiter, get_ip_address
from schemas import Paste, PasteCreate, PasteCreated, PublicPaste
from store import PasteStore
from utils import format_remaining, to_iso_z

logger = logging.getLogger(__name__)

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")
EXPLORE_MAX_LIMIT = 100
NOT_FOUND_MESSAGE = "Paste not found or has expired"

templates = Environment(loader=FileSystemLoader(TEMPLATE_DIR), autoescape=select_autoescape(['html', 'xml']))


def get_store(request: Request) -> PasteStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def wants_html(request: Request) -> bool:
    return "text/html" in (request.headers.get("accept") or "").lower()


def paste_payload(p: Paste, now: int) -> dict:
    return {
        "token": p.token,
        "title": p.title,
        "content": p.content,
        "language": p.language,
        "created_at": p.created_at,
        "expires_at": p.expires_at,
        "created_at_iso": to_iso_z(p.created_at),
        "expires_at_iso": to_iso_z(p.expires_at),
        "expires_in": format_remaining(p.expires_at, now),
        "views": p.views,
        "max_views": p.max_views,
        "remaining_views": p.remaining_views,
        "is_public": p.is_public,
    }


async def not_found_response(request: Request, store: PasteStore):
    faded = await store.faded_count()
    if wants_html(request):
        body = templates.get_template("404.html").render(faded=faded)
        return Response(content=body, status_code=404, media_type="text/html")
    return ORJSONResponse(status_code=404, content={"message": NOT_FOUND_MESSAGE, "faded": faded})


async def index_handler(store: PasteStore = Depends(get_store), settings: Settings = Depends(get_settings)):
    await store.housekeeping(settings.max_pastes, 0)
    return ORJSONResponse(content={
        "total_pastes": await store.high_water_id(),
        "public_count": await store.count_public(),
        "faded": await store.faded_count(),
        "expires_options_secs": settings.expires_options_secs,
        "default_expires_secs": settings.default_expires_secs,
        "token_lengths": settings.token_lengths,
        "default_token_length": settings.default_token_length,
        "languages": list(LANGUAGES),
        "max_content_length": settings.max_content_length,
    })


async def _read_body(request: Request, max_bytes: int):
    body_bytes = bytearray()
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > max_bytes:
            return None
        body_bytes.extend(chunk)
    return bytes(body_bytes)


def _parse_paste_request(body: bytes, content_type: str) -> PasteCreate:
    if not content_type or content_type.startswith("text/"):
        return PasteCreate(content=body.decode(errors="ignore"))
    if content_type.startswith("application/x-www-form-urlencoded"):
        fields = dict(parse_qsl(body.decode(errors="ignore"), keep_blank_values=True))
        return PasteCreate(**fields)
    return PasteCreate(**json.loads(body))


async def create_paste_handler(
    request: Request,
    store: PasteStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    allowed = await limiter.check_and_record(f"create|{get_ip_address(request, settings.trust_proxy_headers)}")
    if not allowed:
        return ORJSONResponse(status_code=429, content={"message": "Rate limit exceeded"})

    # --- Parse request body (raw text, form or JSON) ---
    # utf-8 needs at most 4 bytes per char; form encoding may triple that again
    body = await _read_body(request, settings.max_content_length * 12 + 4096)
    if body is None:
        return ORJSONResponse(status_code=400, content={"message": f"Content exceeds {settings.max_content_length} max chars"})

    content_type = request.headers.get("content-type", "")
    try:
        paste_request = _parse_paste_request(body, content_type)
    except (ValueError, TypeError, ValidationError):
        return ORJSONResponse(status_code=400, content={"message": "Request body not compatible JSON format"})

    await store.housekeeping(settings.max_pastes, 1)

    try:
        content = validate_content(paste_request.content, settings)
    except ValidationRejected as e:
        return ORJSONResponse(status_code=400, content={"message": str(e)})

    await store.enforce_byte_budget(settings.max_total_content_length, content_size(content))

    ttl = normalize_expires_in(paste_request.expires_in, settings)
    token_length = normalize_token_length(paste_request.token_length, settings)
    language = normalize_language(paste_request.language)
    max_views = normalize_max_views(paste_request.max_views)
    is_public = normalize_is_public(paste_request.is_public, max_views)
    title = normalize_title(paste_request.title, content)

    try:
        paste = await store.create(title, content, ttl, token_length, language, max_views, is_public)
    except CollisionExhausted:
        return ORJSONResponse(status_code=500, content={"message": "Failed to allocate a paste token"})
    logger.info("Created paste %s (ttl %ds, max_views %s, public %s)", paste.token, ttl, paste.max_views, paste.is_public)

    path = f"/p/{paste.token}"
    if content_type.startswith("application/x-www-form-urlencoded") and "hx-request" not in request.headers:
        return RedirectResponse(path, status_code=303)

    created = PasteCreated(
        token=paste.token,
        path=path,
        expires_at=paste.expires_at,
        language=paste.language,
        remaining_views=paste.max_views,
        is_public=paste.is_public,
    )
    return ORJSONResponse(status_code=201, content=created.model_dump())


async def get_paste_handler(
    token: str,
    request: Request,
    store: PasteStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    await store.housekeeping(settings.max_pastes, 0)
    try:
        paste = await store.read(token)
    except NotFound:
        return await not_found_response(request, store)

    now = store.clock()
    if wants_html(request):
        body = templates.get_template("detail.html").render(
            paste=paste,
            created_at=to_iso_z(paste.created_at),
            expires_in=format_remaining(paste.expires_at, now),
            remaining_views=paste.remaining_views,
        )
        return Response(content=body, media_type="text/html")
    return ORJSONResponse(content=paste_payload(paste, now))


async def get_raw_paste_handler(
    token: str,
    store: PasteStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    await store.housekeeping(settings.max_pastes, 0)
    try:
        content = await store.read_raw(token)
    except NotFound:
        return PlainTextResponse(NOT_FOUND_MESSAGE, status_code=404)
    headers = {"Content-Disposition": f'inline; filename="paste-{token}.txt"'}
    return PlainTextResponse(content, headers=headers)


async def renew_paste_handler(token: str, store: PasteStore = Depends(get_store)):
    try:
        expires_at = await store.renew(token)
    except NotFound:
        return ORJSONResponse(status_code=404, content={"message": NOT_FOUND_MESSAGE})
    except RenewalNotAllowed:
        return ORJSONResponse(status_code=403, content={"message": "Not allowed"})
    except RenewalTooEarly:
        return ORJSONResponse(status_code=400, content={"message": "Paste is not old enough to renew"})
    return ORJSONResponse(content={"renewed": True, "token": token, "expires_at": expires_at})


async def explore_handler(
    request: Request,
    limit: int = EXPLORE_MAX_LIMIT,
    offset: int = 0,
    store: PasteStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    await store.sweep_expired()
    limit = min(max(limit, 1), EXPLORE_MAX_LIMIT)
    offset = max(offset, 0)
    items = await store.list_public(limit, offset)
    total = await store.count_public()

    if wants_html(request):
        now = store.clock()
        body = templates.get_template("explore.html").render(
            pastes=items,
            total=total,
            now_ts=now,
            max_expires_secs=settings.max_expires_secs,
            format_remaining=format_remaining,
        )
        return Response(content=body, media_type="text/html")

    return ORJSONResponse(content={
        "total": total,
        "offset": offset,
        "pastes": [PublicPaste.from_paste(p).model_dump() for p in items],
    })


async def api_explore_handler(offset: int = 0, store: PasteStore = Depends(get_store)):
    await store.sweep_expired()
    offset = max(offset, 0)
    items = await store.list_public(1, offset)
    if not items:
        return ORJSONResponse(status_code=404, content={"message": NOT_FOUND_MESSAGE})
    payload = PublicPaste.from_paste(items[0]).model_dump()
    payload["index"] = offset
    payload["total"] = await store.count_public()
    return ORJSONResponse(content=payload)


async def health_handler(store: PasteStore = Depends(get_store)):
    if not await store.ping():
        return ORJSONResponse(status_code=500, content={"message": {"status": "error", "db_status": "unreachable"}})
    return {"status": "ok", "db_status": "ok"}
