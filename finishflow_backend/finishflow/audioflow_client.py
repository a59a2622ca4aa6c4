"""
AudioFlow background-music client.
Rate limiting and outright failure are routine here; every problem is raised
as UpstreamMusicFailure and the pipeline carries on without music.
"""
import os
import httpx
import logging

from .errors import UpstreamMusicFailure
from .models import MusicArtifact
from .settings import AUDIOFLOW_ENGINE_URL, AUDIOFLOW_TIMEOUT_MS

logger = logging.getLogger(__name__)


class AudioFlowClient:
    def __init__(self, base_url: str = AUDIOFLOW_ENGINE_URL, timeout_ms: int = AUDIOFLOW_TIMEOUT_MS):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout_ms / 1000.0

    async def create_bgm(self, topic: str, preset: str, duration_sec: float, out_path: str) -> MusicArtifact:
        """Request a track for ``preset`` and download it to ``out_path``"""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(
                    f"{self.base_url}/make",
                    json={"topic": topic, "preset": preset, "duration_sec": int(round(duration_sec))},
                )
                if r.status_code == 429:
                    raise UpstreamMusicFailure("AUDIOFLOW_RATE_LIMIT")

                try:
                    body = r.json()
                except ValueError:
                    body = None
                if r.status_code >= 400 or not isinstance(body, dict) or not body.get("ok"):
                    code = (body or {}).get("code") if isinstance(body, dict) else None
                    raise UpstreamMusicFailure(f"AUDIOFLOW_FAIL_{code or f'HTTP_{r.status_code}'}")

                dl_path = ((body.get("data") or {}).get("audio") or {}).get("download_url") or ""
                if not dl_path:
                    raise UpstreamMusicFailure("AUDIOFLOW_NO_DOWNLOAD_URL")
                download_url = dl_path if dl_path.startswith("http") else f"{self.base_url}{dl_path}"

                dl = await client.get(download_url)
                if dl.status_code >= 400:
                    raise UpstreamMusicFailure(f"DL_HTTP_{dl.status_code}")
                if not dl.content:
                    raise UpstreamMusicFailure("DL_EMPTY")
                os.makedirs(os.path.dirname(out_path), exist_ok=True)
                with open(out_path, "wb") as f:
                    f.write(dl.content)
        except httpx.HTTPError as e:
            raise UpstreamMusicFailure("AUDIOFLOW_UNREACHABLE", details=repr(e)) from e

        logger.info(f"Downloaded {preset} background music to {out_path} ({len(dl.content)} bytes)")
        return MusicArtifact(preset=preset, path=out_path, download_url=download_url)
