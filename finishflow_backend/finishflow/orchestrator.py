import os, uuid, tempfile, asyncio, shutil, logging, traceback
from typing import Optional, Sequence, Tuple
from langgraph.graph import StateGraph, END
from . import quality
from .admission import AdmissionGate
from .audioflow_client import AudioFlowClient
from .errors import (
    PipelineError, InvalidInput, Busy, UpstreamScriptFailure, UpstreamSpeechFailure,
    RenderFailure, OutputTooSmall, NoVideoStream, DurationTooShort,
)
from .llm import ScriptWriter
from .media import FFmpegRenderer, CommandError, write_bytes
from .models import ErrorInfo, GenerationRequest, MediaArtifact, NarrationArtifact, PipelineState, SubmitResult
from .presets import preset_for_request
from .settings import (
    SCRATCH_DIR, TTS_FALLBACK, FALLBACK_AUDIO_S, NARRATION_MIN_BYTES, SCRIPT_TIMEOUT_S, TTS_TIMEOUT_S,
    AUDIOFLOW_TIMEOUT_MS, TOKEN_TTL_S, TOKEN_SINGLE_USE,
)
from .speech_client import SpeechClient, normalize_for_tts
from .token_store import ArtifactTokenStore
from .validator import MediaValidator

logger = logging.getLogger(__name__)

MIN_NARRATION_S = 3.0
PREVIEW_CHARS = 120

_OUTPUT_ERRORS = {
    "missing": OutputTooSmall,
    "empty": OutputTooSmall,
    "too_small": OutputTooSmall,
    "no_video_stream": NoVideoStream,
    "probe_failed": NoVideoStream,
    "duration_too_short": DurationTooShort,
}


def _default_scratch_root() -> str:
    return SCRATCH_DIR or os.path.join(tempfile.gettempdir(), "finishflow")


class GenerationPipeline:
    """Topic in, validated video plus download token out.

    Steps run strictly in order as nodes of a linear graph. Script, speech,
    render and validation failures abort the run; background music is
    best-effort and never does.
    """

    def __init__(
        self,
        script_writer,
        narrator,
        music_source,
        renderer,
        validator,
        store: ArtifactTokenStore,
        gate: AdmissionGate,
        *,
        scratch_root: Optional[str] = None,
        tts_fallback: bool = False,
        fallback_seconds: float = 10.0,
        narration_min_bytes: int = NARRATION_MIN_BYTES,
        script_timeout: float = SCRIPT_TIMEOUT_S,
        speech_timeout: float = TTS_TIMEOUT_S,
        music_timeout: float = AUDIOFLOW_TIMEOUT_MS / 1000.0,
        rules: Sequence[quality.QualityRule] = quality.DEFAULT_RULES,
        required_sections: Sequence[quality.SectionSpec] = (quality.CLOSING_ACTION,),
    ):
        self.script_writer = script_writer
        self.narrator = narrator
        self.music_source = music_source
        self.renderer = renderer
        self.validator = validator
        self.store = store
        self.gate = gate
        self.scratch_root = scratch_root or _default_scratch_root()
        self.tts_fallback = tts_fallback
        self.fallback_seconds = fallback_seconds
        self.narration_min_bytes = narration_min_bytes
        self.script_timeout = script_timeout
        self.speech_timeout = speech_timeout
        self.music_timeout = music_timeout
        self.rules = tuple(rules)
        self.required_sections = tuple(required_sections)
        self.graph = self._build_graph()

    def _build_graph(self):
        g = StateGraph(PipelineState)
        g.add_node("write_script", self.node_script)
        g.add_node("synthesize_narration", self.node_narration)
        g.add_node("measure_duration", self.node_duration)
        g.add_node("fetch_music", self.node_music)
        g.add_node("render_video", self.node_render)
        g.add_node("validate_output", self.node_validate)
        g.set_entry_point("write_script")
        g.add_edge("write_script", "synthesize_narration")
        g.add_edge("synthesize_narration", "measure_duration")
        g.add_edge("measure_duration", "fetch_music")
        g.add_edge("fetch_music", "render_video")
        g.add_edge("render_video", "validate_output")
        g.add_edge("validate_output", END)
        return g.compile()

    def _mk_state(self, req: GenerationRequest) -> PipelineState:
        run_id = uuid.uuid4().hex[:12]
        tmp_dir = os.path.join(self.scratch_root, f"finishflow-{run_id}")
        os.makedirs(tmp_dir, exist_ok=True)
        video_path = os.path.join(self.scratch_root, f"finishflow-{run_id}.mp4")
        return PipelineState(run_id=run_id, tmp_dir=tmp_dir, video_path=video_path, request=req)

    async def node_script(self, state: PipelineState) -> dict:
        logger.info(f"[{state.run_id}] Generating script for topic: {state.request.topic[:50]}")
        try:
            script = await asyncio.wait_for(self.script_writer.write(state.request), timeout=self.script_timeout)
        except UpstreamScriptFailure:
            raise
        except asyncio.TimeoutError as e:
            raise UpstreamScriptFailure(f"Script generation timed out after {self.script_timeout}s") from e
        except Exception as e:
            raise UpstreamScriptFailure(f"Script generation failed: {e}") from e
        if not script.body.strip():
            raise UpstreamScriptFailure("Empty script from OpenAI")

        warnings = list(state.warnings)
        results = quality.evaluate(script.body, self.rules)
        warnings.extend(f"quality:{r.name}" for r in results if not r.passed)

        body = script.body
        for section in self.required_sections:
            updated = quality.ensure_section(body, section)
            if updated != body:
                warnings.append(f"section_inserted:{section.name}")
                body = updated

        logger.info(f"[{state.run_id}] Script ready: {len(body)} chars, title={script.title!r}")
        return {
            "script": script.model_copy(update={"body": body}),
            "quality": {r.name: r.passed for r in results},
            "warnings": warnings,
        }

    async def node_narration(self, state: PipelineState) -> dict:
        tts_input = normalize_for_tts(state.script.body)
        path = os.path.join(state.tmp_dir, "narration.mp3")
        warnings = list(state.warnings)
        try:
            audio = await self._synthesize(tts_input)
            write_bytes(path, audio)
            used_fallback = False
            logger.info(f"[{state.run_id}] Saved narration to {path} ({len(audio)} bytes)")
        except UpstreamSpeechFailure as e:
            if not self.tts_fallback:
                raise
            logger.warning(f"[{state.run_id}] TTS failed ({e.message}); using {self.fallback_seconds}s silent fallback")
            try:
                await self.renderer.synthesize_silence(path, self.fallback_seconds)
            except CommandError as ce:
                raise UpstreamSpeechFailure(f"TTS failed and fallback audio could not be generated: {ce}") from ce
            used_fallback = True
            warnings.append(f"tts_fallback:{e.message}")

        narration = NarrationArtifact(
            path=path, size_bytes=os.path.getsize(path), used_fallback=used_fallback, tts_input=tts_input
        )
        return {"narration": narration, "warnings": warnings}

    async def _synthesize(self, text: str) -> bytes:
        try:
            audio = await asyncio.wait_for(self.narrator.synthesize(text), timeout=self.speech_timeout)
        except UpstreamSpeechFailure:
            raise
        except asyncio.TimeoutError as e:
            raise UpstreamSpeechFailure(f"TTS timed out after {self.speech_timeout}s") from e
        except Exception as e:
            raise UpstreamSpeechFailure(f"TTS failed: {e}") from e
        if len(audio or b"") < self.narration_min_bytes:
            raise UpstreamSpeechFailure(f"Narration audio too small ({len(audio or b'')} bytes)")
        return audio

    async def node_duration(self, state: PipelineState) -> dict:
        try:
            measured = await self.renderer.probe_duration(state.narration.path)
        except CommandError as e:
            raise UpstreamSpeechFailure(f"Narration audio is not probeable: {e}") from e
        duration = max(MIN_NARRATION_S, measured)
        logger.info(f"[{state.run_id}] Narration duration {measured:.2f}s (target {duration:.2f}s)")
        narration = state.narration.model_copy(update={"measured_duration_seconds": duration})
        return {"narration": narration, "duration_seconds": duration}

    async def node_music(self, state: PipelineState) -> dict:
        req = state.request
        preset = preset_for_request(req.kind, req.tone, state.duration_seconds).value
        path = os.path.join(state.tmp_dir, "bgm.wav")
        try:
            music = await asyncio.wait_for(
                self.music_source.create_bgm(req.topic.strip(), preset, state.duration_seconds, path),
                timeout=self.music_timeout,
            )
        except Exception as e:
            # fail-open: any music problem degrades to narration only
            reason = getattr(e, "message", None) or type(e).__name__
            logger.warning(f"[{state.run_id}] [BGM] skipped: {reason}")
            try:
                os.remove(path)
            except OSError:
                pass
            return {"preset": preset, "music": None, "warnings": list(state.warnings) + [f"music_skipped:{reason}"]}
        return {"preset": preset, "music": music}

    async def node_render(self, state: PipelineState) -> dict:
        music_path = state.music.path if state.music else None
        logger.info(f"[{state.run_id}] Rendering {state.duration_seconds:.2f}s video (music={'yes' if music_path else 'no'})")
        try:
            outcome = await self.renderer.render(
                state.narration.path, state.video_path, state.duration_seconds,
                music_path=music_path, title=state.script.title,
            )
        except CommandError as e:
            raise RenderFailure(f"Render failed: {e}", details=(e.stderr or "")[-4000:]) from e
        if outcome.direct_map:
            return {"warnings": list(state.warnings) + ["music_unmixed"]}
        return {}

    async def node_validate(self, state: PipelineState) -> dict:
        result = await self.validator.validate(state.video_path)
        if not result.ok:
            error_cls = _OUTPUT_ERRORS.get(result.reason, OutputTooSmall)
            raise error_cls(f"Rendered video rejected: {result.reason}", details=result.model_dump())
        media = MediaArtifact(
            path=state.video_path,
            duration_seconds=result.measured_duration_seconds,
            size_bytes=result.size_bytes,
            has_video_stream=True,
        )
        return {"media": media}

    async def run(self, req: GenerationRequest) -> Tuple[MediaArtifact, str, PipelineState]:
        """Run one generation; raises a PipelineError subclass on failure"""
        if not self.gate.try_acquire():
            raise Busy("Another video is being generated; try again shortly")
        state = None
        finished = False
        try:
            if not (req.topic or "").strip():
                raise InvalidInput("topic is required")
            state = self._mk_state(req)
            logger.info(f"Starting pipeline for run {state.run_id} in {state.tmp_dir}")
            final_state = await self.graph.ainvoke(state)
            if hasattr(final_state, "get"):
                result_state = PipelineState.model_validate({**state.model_dump(), **dict(final_state)})
            else:
                result_state = final_state

            token = self.store.issue(result_state.media.path)
            shutil.rmtree(result_state.tmp_dir, ignore_errors=True)
            logger.info(f"Run {state.run_id} finished: {result_state.media.size_bytes} bytes, token issued")
            finished = True
            return result_state.media, token, result_state
        finally:
            # also covers cancellation, which is not an Exception
            if not finished and state is not None:
                self._discard(state)
            self.gate.release()

    def _discard(self, state: PipelineState) -> None:
        shutil.rmtree(state.tmp_dir, ignore_errors=True)
        try:
            os.remove(state.video_path)
        except OSError:
            pass

    async def submit(self, req: GenerationRequest) -> SubmitResult:
        """Structured wrapper around run(); never raises"""
        try:
            media, token, state = await self.run(req)
        except PipelineError as e:
            logger.error(f"Pipeline failed ({e.code}): {e.message}")
            return SubmitResult(ok=False, error=e.to_info())
        except Exception as e:
            logger.error(f"Unexpected pipeline failure: {str(e)}")
            logger.error(f"Full traceback: {traceback.format_exc()}")
            return SubmitResult(ok=False, error=ErrorInfo(code="internal_error", message=str(e) or type(e).__name__))

        narration = state.narration
        return SubmitResult(
            ok=True,
            token=token,
            download_url=f"/download/{token}",
            duration_seconds=state.duration_seconds,
            used_fallback=narration.used_fallback,
            warnings=state.warnings,
            meta={
                "script_title": state.script.title,
                "duration_sec": round(state.duration_seconds),
                "video_bytes": media.size_bytes,
                "tts_input_preview": narration.tts_input[:PREVIEW_CHARS],
                "bgm_used": state.music is not None,
                "bgm_preset": state.preset or "",
                "bgm_download_url": state.music.download_url if state.music else "",
                "quality": state.quality,
            },
        )

    def fetch(self, token: str) -> Optional[str]:
        return self.store.resolve(token)


def build_pipeline() -> GenerationPipeline:
    renderer = FFmpegRenderer()
    return GenerationPipeline(
        script_writer=ScriptWriter(),
        narrator=SpeechClient(),
        music_source=AudioFlowClient(),
        renderer=renderer,
        validator=MediaValidator(renderer),
        store=ArtifactTokenStore(TOKEN_TTL_S, single_use=TOKEN_SINGLE_USE),
        gate=AdmissionGate(),
        tts_fallback=TTS_FALLBACK,
        fallback_seconds=FALLBACK_AUDIO_S,
    )
