import os, asyncio, logging, shlex
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .settings import VIDEO_WIDTH, VIDEO_HEIGHT, FPS, BACKGROUND_COLOR, MUSIC_GAIN, PROBE_TIMEOUT_S, RENDER_TIMEOUT_S, RENDER_MIX_TIMEOUT_S, TITLE_OVERLAY

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 22


class CommandError(RuntimeError):
    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class CommandTimeout(CommandError):
    pass


@dataclass
class CommandResult:
    stdout: str
    stderr: str


def write_bytes(path: str, data: bytes):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


async def run_command(args: Sequence[str], timeout: float) -> CommandResult:
    """Run an executable, killing it if it outlives ``timeout`` seconds"""
    cmd = list(args)
    logger.info(f"Running command: {shlex.join(cmd)}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd, stdin=asyncio.subprocess.DEVNULL, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
    except OSError as e:
        raise CommandError(f"{cmd[0]} could not be started: {e}") from e

    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        logger.error(f"{cmd[0]} timeout after {timeout}s")
        raise CommandTimeout(f"{cmd[0]} timeout after {timeout}s")

    stdout = out.decode("utf-8", errors="ignore")
    stderr = err.decode("utf-8", errors="ignore")
    if proc.returncode != 0:
        logger.error(f"{cmd[0]} failed with return code {proc.returncode}")
        logger.error(f"Error output: {stderr[-2000:]}")
        raise CommandError(f"{cmd[0]} failed (code={proc.returncode})", returncode=proc.returncode, stderr=stderr)
    return CommandResult(stdout=stdout, stderr=stderr)


def safe_title(title: Optional[str]) -> str:
    # drawtext treats ' : and \ specially
    cleaned = (title or "").replace("'", "’").replace(":", " ").replace("\\", " ")
    return cleaned[:TITLE_MAX_CHARS]


@dataclass
class RenderOutcome:
    mixed: bool
    direct_map: bool = False


class FFmpegRenderer:
    def __init__(
        self,
        ffmpeg_bin: str = "ffmpeg",
        ffprobe_bin: str = "ffprobe",
        *,
        width: int = VIDEO_WIDTH,
        height: int = VIDEO_HEIGHT,
        fps: int = FPS,
        background: str = BACKGROUND_COLOR,
        music_gain: float = MUSIC_GAIN,
        title_overlay: bool = TITLE_OVERLAY,
        probe_timeout: float = PROBE_TIMEOUT_S,
        render_timeout: float = RENDER_TIMEOUT_S,
        render_mix_timeout: float = RENDER_MIX_TIMEOUT_S,
    ):
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin
        self.width = width
        self.height = height
        self.fps = fps
        self.background = background
        self.music_gain = music_gain
        self.title_overlay = title_overlay
        self.probe_timeout = probe_timeout
        self.render_timeout = render_timeout
        self.render_mix_timeout = render_mix_timeout

    async def probe_duration(self, path: str) -> float:
        """Container duration in seconds as reported by ffprobe"""
        result = await run_command(
            [self.ffprobe_bin, "-v", "error", "-show_entries", "format=duration",
             "-of", "default=noprint_wrappers=1:nokey=1", path],
            timeout=self.probe_timeout,
        )
        raw = result.stdout.strip()
        try:
            value = float(raw)
        except ValueError:
            raise CommandError(f'Invalid duration from ffprobe: "{raw}"')
        if value != value or value <= 0:
            raise CommandError(f'Invalid duration from ffprobe: "{raw}"')
        return value

    async def probe_video_codec(self, path: str) -> str:
        """Codec name of the first video stream, or '' when there is none"""
        result = await run_command(
            [self.ffprobe_bin, "-v", "error", "-select_streams", "v:0", "-show_entries", "stream=codec_name",
             "-of", "default=noprint_wrappers=1:nokey=1", path],
            timeout=self.probe_timeout,
        )
        return result.stdout.strip().splitlines()[0].strip() if result.stdout.strip() else ""

    def _background_input(self, duration: float) -> List[str]:
        size = f"{self.width}x{self.height}"
        return ["-f", "lavfi", "-i", f"color=c={self.background}:s={size}:r={self.fps}:d={duration:.3f}"]

    def _video_chain(self, title: Optional[str]) -> str:
        if self.title_overlay and safe_title(title):
            draw = (
                f"drawtext=fontcolor=white:fontsize=52:text='{safe_title(title)}'"
                ":x=(w-text_w)/2:y=(h-text_h)/2"
            )
            return f"[0:v]{draw},format=yuv420p[v]"
        return "[0:v]format=yuv420p[v]"

    def _encode_args(self, duration: float, out_path: str) -> List[str]:
        return [
            "-t", f"{duration:.3f}",
            "-c:v", "libx264", "-pix_fmt", "yuv420p",
            "-c:a", "aac", "-b:a", "192k",
            "-shortest", out_path,
        ]

    def voice_args(self, narration_path: str, out_path: str, duration: float, title: Optional[str] = None) -> List[str]:
        return [
            self.ffmpeg_bin, "-y",
            *self._background_input(duration),
            "-i", narration_path,
            "-filter_complex", self._video_chain(title),
            "-map", "[v]", "-map", "1:a:0",
            *self._encode_args(duration, out_path),
        ]

    def mix_args(self, narration_path: str, music_path: str, out_path: str, duration: float, title: Optional[str] = None) -> List[str]:
        graph = ";".join([
            self._video_chain(title),
            "[1:a]aformat=sample_fmts=fltp:sample_rates=44100:channel_layouts=stereo,volume=1.0[a1]",
            f"[2:a]aformat=sample_fmts=fltp:sample_rates=44100:channel_layouts=stereo,volume={self.music_gain}[a2]",
            "[a1][a2]amix=inputs=2:duration=first:dropout_transition=0[aout]",
        ])
        return [
            self.ffmpeg_bin, "-y",
            *self._background_input(duration),
            "-i", narration_path,
            "-stream_loop", "-1", "-i", music_path,
            "-filter_complex", graph,
            "-map", "[v]", "-map", "[aout]",
            *self._encode_args(duration, out_path),
        ]

    def direct_map_args(self, narration_path: str, music_path: str, out_path: str, duration: float, title: Optional[str] = None) -> List[str]:
        # narration stays the first audio track; music rides along unmixed
        return [
            self.ffmpeg_bin, "-y",
            *self._background_input(duration),
            "-i", narration_path,
            "-stream_loop", "-1", "-i", music_path,
            "-filter_complex", self._video_chain(title),
            "-map", "[v]", "-map", "1:a:0", "-map", "2:a:0",
            *self._encode_args(duration, out_path),
        ]

    async def render(
        self,
        narration_path: str,
        out_path: str,
        duration: float,
        music_path: Optional[str] = None,
        title: Optional[str] = None,
    ) -> RenderOutcome:
        """Composite the background and audio into ``out_path``.

        With music, the mix graph is tried first; if ffmpeg rejects it the
        tracks are mapped directly. Raises CommandError when nothing renders.
        """
        if not music_path:
            await run_command(self.voice_args(narration_path, out_path, duration, title), timeout=self.render_timeout)
            return RenderOutcome(mixed=False)

        try:
            await run_command(self.mix_args(narration_path, music_path, out_path, duration, title), timeout=self.render_mix_timeout)
            return RenderOutcome(mixed=True)
        except CommandTimeout:
            raise
        except CommandError as e:
            logger.warning(f"Mix filter graph failed ({e}); retrying with direct track mapping")

        await run_command(self.direct_map_args(narration_path, music_path, out_path, duration, title), timeout=self.render_mix_timeout)
        return RenderOutcome(mixed=False, direct_map=True)

    async def synthesize_silence(self, out_path: str, seconds: float) -> str:
        """Write a deterministic silent mp3 of the given length"""
        os.makedirs(os.path.dirname(out_path), exist_ok=True)
        await run_command(
            [self.ffmpeg_bin, "-y", "-f", "lavfi", "-i", "anullsrc=r=44100:cl=stereo",
             "-t", f"{seconds:.3f}", "-c:a", "libmp3lame", "-b:a", "128k", out_path],
            timeout=self.probe_timeout,
        )
        return out_path

    async def ffmpeg_version(self) -> Optional[str]:
        try:
            result = await run_command([self.ffmpeg_bin, "-version"], timeout=5)
        except CommandError:
            return None
        return result.stdout.split("\n")[0]
