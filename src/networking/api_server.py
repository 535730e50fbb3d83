import contextlib
import datetime
import json
import logging
import time
from typing import AsyncIterator

import fastapi
import filetype
import psutil
from fastapi import APIRouter, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from serde import to_dict

from content_store.errors import (ContentStoreError, CorruptionError, InvalidCIDError, InvalidInputError,
                                  NotFoundError, StoreIOError)
from content_store.stats import StatsCollector
from content_store.store import ContentStore

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Invalid or not found CID"
DEFAULT_MAX_RAW_BODY = 50 * 1024 * 1024
# filetype never looks further than this
SNIFF_BYTES = 8192
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-origin",
}


def error_response(status: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status)


class APIHandler:
    store: ContentStore
    stats: StatsCollector
    max_raw_body: int

    def __init__(self, store: ContentStore, stats: StatsCollector, max_raw_body: int = DEFAULT_MAX_RAW_BODY):
        self.router = APIRouter()
        self.store = store
        self.stats = stats
        self.max_raw_body = max_raw_body
        self.router.add_api_route("/add/text", self.add_text, methods=["POST"])
        self.router.add_api_route("/add/json", self.add_json, methods=["POST"])
        self.router.add_api_route("/add/raw", self.add_raw, methods=["POST"])
        self.router.add_api_route("/add/file", self.add_file, methods=["POST"])
        self.router.add_api_route("/cat/{cid}", self.cat, methods=["GET"])
        self.router.add_api_route("/stat/{cid}", self.stat, methods=["GET"])
        self.router.add_api_route("/status", self.status, methods=["GET"])

    async def add_text(self, request: Request):
        content_type = request.headers.get("content-type", "")
        if not content_type.lower().startswith("text/"):
            raise InvalidInputError("Expected a text/* body")
        body = await request.body()
        if not body:
            raise InvalidInputError("Empty body")
        charset = _charset(content_type)
        try:
            text = body.decode(charset)
        except (UnicodeDecodeError, LookupError) as e:
            raise InvalidInputError(f"Body is not valid {charset} text") from e
        cid = await self.store.add_bytes(text.encode("utf-8"))
        logger.info("Text stored -> CID: %s", cid)
        return {"cid": cid}

    async def add_json(self, request: Request):
        body = await request.body()
        if not body:
            raise InvalidInputError("Empty body")
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidInputError(f"Invalid JSON: {e}") from e
        # same bytes JSON.stringify would produce
        data = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        cid = await self.store.add_bytes(data)
        logger.info("JSON added -> CID: %s", cid)
        return {"cid": cid}

    async def add_raw(self, request: Request):
        body = bytearray()
        async for piece in request.stream():
            body.extend(piece)
            if len(body) > self.max_raw_body:
                logger.warning("Raw upload over %d bytes rejected", self.max_raw_body)
                return error_response(413, "Payload too large")
        if not body:
            logger.warning("Empty body in raw upload")
            raise InvalidInputError("Empty body")
        cid = await self.store.add_bytes(bytes(body))
        logger.info("Raw data added -> CID: %s", cid)
        return {"cid": cid}

    async def add_file(self, file: UploadFile | None = File(None)):
        if file is None:
            logger.warning("No file uploaded")
            raise InvalidInputError("No file uploaded")
        try:
            cid = await self.store.add_bytes(file)
        finally:
            await file.close()
        logger.info("File uploaded: %s -> CID: %s", file.filename, cid)
        return {"cid": cid}

    async def cat(self, cid: str, offset: int = 0, length: int | None = None):
        pieces = self.store.cat(cid.lower(), offset, length)
        head = bytearray()
        exhausted = False
        try:
            # resolve the root before committing to a 200
            while len(head) < SNIFF_BYTES:
                piece = await anext(pieces, None)
                if piece is None:
                    exhausted = True
                    break
                head.extend(piece)
        except (InvalidCIDError, NotFoundError) as e:
            await pieces.aclose()
            logger.warning("Error retrieving %s: %s", cid, e)
            return error_response(404, NOT_FOUND_MESSAGE)
        except BaseException:
            await pieces.aclose()
            raise

        mime = filetype.guess_mime(bytes(head)) or "application/octet-stream"
        logger.info("CID fetched: %s (%s)", cid, mime)
        if exhausted:
            return Response(bytes(head), media_type=mime)
        return StreamingResponse(self._stream(cid, bytes(head), pieces), media_type=mime)

    async def _stream(self, cid: str, head: bytes, pieces: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        try:
            yield head
            async for piece in pieces:
                yield piece
        except Exception:
            # headers are gone already; aborting the body is the only signal left
            logger.exception("Retrieval of %s failed mid-stream", cid)
            raise
        finally:
            await pieces.aclose()

    async def stat(self, cid: str):
        try:
            info = await self.store.stat(cid.lower())
        except (InvalidCIDError, NotFoundError) as e:
            logger.warning("Stat of %s failed: %s", cid, e)
            return error_response(404, NOT_FOUND_MESSAGE)
        return to_dict(info)

    async def status(self):
        snap = self.stats.snapshot()
        blocks, total = await self.store.block_store.usage()
        mem = psutil.Process().memory_info()
        info = {
            "status": "ok",
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "uptime": snap.uptime,
            "totalRequests": snap.total_requests,
            "totalCIDsStored": snap.total_cids_stored,
            "recentCIDs": snap.recent_cids,
            "memoryUsage": {
                "rss": f"{round(mem.rss / 1024 / 1024)} MB",
                "vms": f"{round(mem.vms / 1024 / 1024)} MB",
            },
            "blockStore": {
                "blocks": blocks,
                "bytes": total,
            },
        }
        logger.info("Health check: %s", info)
        return info


def _charset(content_type: str) -> str:
    for param in content_type.split(";")[1:]:
        key, _, value = param.strip().partition("=")
        if key.lower() == "charset" and value:
            return value.strip('"')
    return "utf-8"


async def _invalid_input(request: Request, exc: InvalidInputError):
    logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
    return error_response(400, str(exc))


async def _not_found(request: Request, exc: ContentStoreError):
    logger.warning("Not found on %s %s: %s", request.method, request.url.path, exc)
    return error_response(404, NOT_FOUND_MESSAGE)


async def _store_failure(request: Request, exc: ContentStoreError):
    logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return error_response(500, str(exc))


def create_app(store: ContentStore, stats: StatsCollector, frontend_url: str = "http://localhost:3000",
               max_raw_body: int = DEFAULT_MAX_RAW_BODY) -> fastapi.FastAPI:
    @contextlib.asynccontextmanager
    async def lifespan(app: fastapi.FastAPI):
        yield
        store.close()
        logger.info("Content store stopped cleanly")

    app = fastapi.FastAPI(title="content-store", lifespan=lifespan)
    handler = APIHandler(store, stats, max_raw_body)
    app.include_router(handler.router)

    app.add_exception_handler(InvalidInputError, _invalid_input)
    app.add_exception_handler(InvalidCIDError, _not_found)
    app.add_exception_handler(NotFoundError, _not_found)
    app.add_exception_handler(CorruptionError, _store_failure)
    app.add_exception_handler(StoreIOError, _store_failure)

    @app.middleware("http")
    async def count_and_log(request: Request, call_next):
        stats.record_request()
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
            response = error_response(500, "Internal server error")
        for key, value in SECURITY_HEADERS.items():
            response.headers.setdefault(key, value)
        elapsed = (time.perf_counter() - start) * 1000
        client = request.client.host if request.client else "-"
        logger.info('%s "%s %s" %d %.1fms', client, request.method, request.url.path, response.status_code, elapsed)
        return response

    # outermost, so preflight requests never reach the handlers
    app.add_middleware(CORSMiddleware, allow_origins=[frontend_url], allow_methods=["*"], allow_headers=["*"])

    app.state.store = store
    app.state.stats = stats
    return app
