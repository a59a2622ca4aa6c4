import os
import sys
from pathlib import Path

import pytest

# Add the backend to the path
ROOT = Path(__file__).resolve().parent
BACKEND = ROOT / "finishflow_backend"
if str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))

from finishflow.admission import AdmissionGate
from finishflow.errors import UpstreamMusicFailure
from finishflow.media import RenderOutcome
from finishflow.models import MusicArtifact, ScriptArtifact
from finishflow.orchestrator import GenerationPipeline
from finishflow.token_store import ArtifactTokenStore
from finishflow.validator import MediaValidator

SCRIPT_BODY = (
    "무릎이 아플 때는 천천히 걷는 것이 좋습니다. 하루 20분이면 충분합니다. "
    "발뒤꿈치부터 땅에 닿게 걸어 보세요. 오늘 저녁에 바로 해 보세요."
)
NARRATION_BYTES = b"ID3" + b"\x01" * 4000
VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x07" * 60000


class FakeScriptWriter:
    def __init__(self, body=SCRIPT_BODY, title="무릎 걷기", error=None):
        self.body = body
        self.title = title
        self.error = error
        self.calls = []

    async def write(self, req):
        self.calls.append(req)
        if self.error:
            raise self.error
        return ScriptArtifact(title=self.title, body=self.body)


class FakeNarrator:
    def __init__(self, audio=NARRATION_BYTES, error=None):
        self.audio = audio
        self.error = error
        self.calls = []

    async def synthesize(self, text):
        self.calls.append(text)
        if self.error:
            raise self.error
        return self.audio


class FakeMusic:
    def __init__(self, error=None, audio=b"RIFF" + b"\x02" * 2000):
        self.error = error
        self.audio = audio
        self.calls = []

    async def create_bgm(self, topic, preset, duration_sec, out_path):
        self.calls.append({"topic": topic, "preset": preset, "duration_sec": duration_sec})
        if self.error:
            raise self.error
        with open(out_path, "wb") as f:
            f.write(self.audio)
        return MusicArtifact(preset=preset, path=out_path, download_url="https://audioflow.test/dl/bgm.wav")


class FakeRenderer:
    """Stands in for ffmpeg/ffprobe; writes ``video_bytes`` on render"""

    def __init__(self, narration_seconds=10.0, video_bytes=VIDEO_BYTES, codec="h264", video_seconds=None, error=None, direct_map=False):
        self.narration_seconds = narration_seconds
        self.video_bytes = video_bytes
        self.codec = codec
        self.video_seconds = video_seconds
        self.error = error
        self.direct_map = direct_map
        self.render_calls = []
        self.silence_calls = []
        self._rendered_duration = None

    async def probe_duration(self, path):
        if path.endswith(".mp4"):
            return self.video_seconds if self.video_seconds is not None else self._rendered_duration
        return self.narration_seconds

    async def probe_video_codec(self, path):
        return self.codec

    async def render(self, narration_path, out_path, duration, music_path=None, title=None):
        self.render_calls.append(
            {"narration_path": narration_path, "out_path": out_path, "duration": duration, "music_path": music_path, "title": title}
        )
        if self.error:
            raise self.error
        self._rendered_duration = duration
        with open(out_path, "wb") as f:
            f.write(self.video_bytes)
        return RenderOutcome(mixed=bool(music_path) and not self.direct_map, direct_map=self.direct_map)

    async def synthesize_silence(self, out_path, seconds):
        self.silence_calls.append(seconds)
        os.makedirs(os.path.dirname(out_path), exist_ok=True)
        with open(out_path, "wb") as f:
            f.write(b"\x00" * 1600)
        return out_path

    async def ffmpeg_version(self):
        return "ffmpeg version test"


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def scratch(tmp_path):
    root = tmp_path / "scratch"
    root.mkdir()
    return root


@pytest.fixture
def make_pipeline(scratch):
    def _make(
        script_writer=None,
        narrator=None,
        music=None,
        renderer=None,
        store=None,
        gate=None,
        **kwargs,
    ):
        renderer = renderer or FakeRenderer()
        return GenerationPipeline(
            script_writer=script_writer or FakeScriptWriter(),
            narrator=narrator or FakeNarrator(),
            music_source=music or FakeMusic(error=UpstreamMusicFailure("AUDIOFLOW_RATE_LIMIT")),
            renderer=renderer,
            validator=MediaValidator(renderer, min_duration_seconds=2.5, min_bytes=1000),
            store=store if store is not None else ArtifactTokenStore(1800),
            gate=gate if gate is not None else AdmissionGate(),
            scratch_root=str(scratch),
            **kwargs,
        )

    return _make
