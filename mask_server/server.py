from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import List, Optional

import requests
import uvicorn
from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
from starlette.background import BackgroundTask

from common.logging_setup import get_logger, uvicorn_log_config
from common.types import Trait
from mask_server.config import Settings, load_settings
from mask_server.debug_writer import DebugImageError, DebugImageWriter
from mask_server.metadata import (
    ImageProxy,
    InvalidImageUrl,
    MetadataFetchError,
    MetadataService,
    ProxyNotAllowed,
)
from mask_server.resolver import AssetRootMissing, build_resolver


log = get_logger("mask_server")


class SaveDebugImageRequest(BaseModel):
    filename: Optional[str] = None
    imageData: Optional[str] = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def parse_traits(raw: str) -> List[Trait]:
    """`traits` query value -> Trait list. Raises ValueError for anything but a JSON array of objects."""
    data = json.loads(raw)
    if not isinstance(data, list):
        raise ValueError("traits must be a JSON array")
    return [Trait.from_dict(d) for d in data]


def create_app(settings: Optional[Settings] = None, session: Optional[requests.Session] = None) -> FastAPI:
    S = settings or load_settings()

    resolver = build_resolver(S)
    metadata = MetadataService(S.metadata_base_url, session=session, timeout=S.metadata_timeout_s)
    proxy = ImageProxy(S.proxy_allowed_hosts, session=session, timeout=S.proxy_timeout_s)
    debug_writer = DebugImageWriter(S.debug_output_dir)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        debug_writer.ensure_dir()
        log.info("Mask server ready", extra={"extra": {"port": S.port, "debug_output": str(S.debug_output_dir)}})
        yield

    app = FastAPI(title="KIRINUKI RG Mask API", version="1.0.0", lifespan=lifespan)
    app.state.settings = S
    app.state.resolver = resolver

    app.add_middleware(
        CORSMiddleware,
        allow_origins=S.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def index():
        log.info("Front-end page requested")
        if not S.index_page.is_file():
            return _error(404, "front-end page not found")
        return FileResponse(S.index_page, media_type="text/html")

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "assets": {"exists": resolver.assets.exists, "path": str(S.assets_dir)},
            "recovery_assets": {"exists": resolver.recovery.exists, "path": str(S.recovery_assets_dir)},
            "token_exceptions": {"exists": resolver.exceptions.exists},
            "rules": [r.name for r in resolver.rules.rules],
            "proxy": {"allowed_hosts": list(S.proxy_allowed_hosts)},
        }

    @app.get("/api/get-traits")
    def get_traits(tokenId: Optional[str] = Query(None)):
        if not tokenId:
            return _error(400, "tokenId is required")
        try:
            traits = metadata.get_traits(tokenId)
        except MetadataFetchError as e:
            return _error(e.status_code, str(e))
        log.info("Traits fetched for token %s", tokenId)
        return {"traits": traits}

    @app.get("/api/get-image")
    def get_image(tokenId: Optional[str] = Query(None)):
        if not tokenId:
            return _error(400, "tokenId is required")
        try:
            image_url = metadata.get_image_url(tokenId)
        except MetadataFetchError as e:
            return _error(e.status_code, str(e))
        if not image_url:
            return _error(404, "image URL not found")
        return {"imageUrl": image_url}

    @app.get("/api/proxy-image")
    def proxy_image(url: Optional[str] = Query(None)):
        if not url:
            return PlainTextResponse("url is required", status_code=400)
        try:
            upstream = proxy.open(url)
        except InvalidImageUrl:
            return PlainTextResponse("invalid url", status_code=400)
        except ProxyNotAllowed:
            return PlainTextResponse("host not allowed", status_code=403)
        except MetadataFetchError as e:
            return PlainTextResponse(str(e), status_code=e.status_code)
        return StreamingResponse(
            upstream.iter_content(chunk_size=S.proxy_chunk_size),
            media_type=upstream.headers.get("content-type"),
            background=BackgroundTask(upstream.close),
        )

    @app.get("/api/get-masks-by-layers")
    def get_masks_by_layers(traits: Optional[str] = Query(None), tokenId: Optional[str] = Query(None)):
        if not traits:
            return _error(400, "traits parameter is required")
        try:
            parsed = parse_traits(traits)
        except ValueError as e:
            return _error(400, f"invalid traits: {e}")
        try:
            result = resolver.resolve(parsed, tokenId)
        except AssetRootMissing as e:
            return _error(404, f"assets directory not found: {e}")
        except Exception:
            log.exception("Mask resolution failed")
            return _error(500, "failed to resolve masks by layer")
        return result.to_dict()

    @app.get("/api/get-recovery-masks-by-layers")
    def get_recovery_masks_by_layers(traits: Optional[str] = Query(None), tokenId: Optional[str] = Query(None)):
        if not traits:
            return _error(400, "traits parameter is required")
        try:
            parsed = parse_traits(traits)
        except ValueError as e:
            return _error(400, f"invalid traits: {e}")
        try:
            result = resolver.resolve_recovery(parsed, tokenId)
        except AssetRootMissing as e:
            return _error(404, f"recovery_assets directory not found: {e}")
        except Exception:
            log.exception("Recovery mask resolution failed")
            return _error(500, "failed to resolve recovery masks by layer")
        return result.to_dict(include_face=False)

    @app.get("/api/get-token-exceptions")
    def get_token_exceptions():
        if not S.token_exceptions_path.is_file():
            log.error("%s not found", S.token_exceptions_path.name)
            return {}
        return FileResponse(S.token_exceptions_path, media_type="application/json")

    @app.post("/api/save-debug-image")
    def save_debug_image(body: SaveDebugImageRequest):
        if not body.filename or not body.imageData:
            return _error(400, "filename and imageData are required")
        try:
            debug_writer.save(body.filename, body.imageData)
        except DebugImageError as e:
            return _error(400, str(e))
        except OSError:
            log.exception("Failed to save debug image %s", body.filename)
            return _error(500, "failed to save image")
        return {"success": True}

    # static files; the root mount must stay last so it does not shadow the API
    app.mount("/assets", StaticFiles(directory=str(S.assets_dir), check_dir=False), name="assets")
    app.mount(
        "/recovery_assets",
        StaticFiles(directory=str(S.recovery_assets_dir), check_dir=False),
        name="recovery_assets",
    )
    app.mount("/", StaticFiles(directory=str(S.root), check_dir=False), name="root")
    return app


app = create_app()


def main() -> None:
    S: Settings = app.state.settings
    log.info("Server starting on http://localhost:%d", S.port)
    uvicorn.run(app, host=S.host, port=S.port, log_config=uvicorn_log_config())


# -------- local dev entrypoint --------
if __name__ == "__main__":
    main()
