import json
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from .settings import has_all_keys, ALLOWED_ORIGINS
from .errors import STATUS_BY_CODE
from .models import GenerationRequest
from .orchestrator import GenerationPipeline, build_pipeline
from .utils import safe_open_binary

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SERVICE_NAME = "finishflow-live"
CHUNK_SIZE = 1024 * 1024
PREVIEW_CHARS = 200

def _parse_json_body(raw: bytes):
    """Decode the request body by hand so broken JSON is a 400, never a 500"""
    text = raw.decode("utf-8", errors="replace") if raw else ""
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise HTTPException(
            400, {"error": "Invalid JSON body", "details": str(e), "preview": text[:PREVIEW_CHARS]}
        )


def create_app(pipeline: Optional[GenerationPipeline] = None) -> FastAPI:
    pipeline = pipeline or build_pipeline()
    app = FastAPI(title="FinishFlow Backend")
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS or ["*"],
        allow_credentials=True,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health():
        keys_ok = has_all_keys()
        ffmpeg_version = None
        version_probe = getattr(pipeline.renderer, "ffmpeg_version", None)
        if version_probe is not None:
            ffmpeg_version = await version_probe()
        logger.info(f"Health check: API keys present = {keys_ok}")
        return {
            "ok": True,
            "service": SERVICE_NAME,
            "time": datetime.now(timezone.utc).isoformat(),
            "busy": pipeline.gate.busy,
            "has_keys": keys_ok,
            "ffmpeg_available": ffmpeg_version is not None,
        }

    async def handle_execute(request: Request):
        payload = _parse_json_body(await request.body())
        if not payload or not isinstance(payload, dict):
            raise HTTPException(400, {"error": "Invalid or empty JSON body"})
        try:
            req = GenerationRequest.model_validate(payload)
        except ValidationError as e:
            raise HTTPException(400, {"error": "Invalid request", "details": e.errors(include_url=False)})

        logger.info(f"Starting generation for topic: {req.topic[:50]}")
        result = await pipeline.submit(req)
        if result.ok:
            return result.model_dump()
        status = STATUS_BY_CODE.get(result.error.code, 500)
        return JSONResponse(status_code=status, content=result.model_dump())

    app.add_api_route("/execute", handle_execute, methods=["POST"])
    app.add_api_route("/api/execute", handle_execute, methods=["POST"])

    @app.get("/download/{token}")
    def download(token: str):
        path = pipeline.fetch(token)
        if not path:
            # expired and unknown tokens are indistinguishable on purpose
            raise HTTPException(404, "not found")
        try:
            handle = safe_open_binary(path)
        except OSError:
            # a single-use token is already spent here
            pipeline.store.release_after_read(path)
            raise HTTPException(404, "not found")

        def iterfile(f):
            try:
                with f:
                    for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                        yield chunk
            finally:
                pipeline.store.release_after_read(path)

        filename = f"finishflow-{token[:8]}.mp4"
        headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
        return StreamingResponse(iterfile(handle), media_type="video/mp4", headers=headers)

    return app


app = create_app()
