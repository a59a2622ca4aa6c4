import asyncio
import re

import pytest

from conftest import FakeMusic, FakeNarrator, FakeRenderer, FakeScriptWriter, VIDEO_BYTES
from finishflow.admission import AdmissionGate
from finishflow.errors import UpstreamMusicFailure, UpstreamScriptFailure, UpstreamSpeechFailure
from finishflow.media import CommandError
from finishflow.models import GenerationRequest, Tone, VideoKind
from finishflow.token_store import ArtifactTokenStore


@pytest.mark.asyncio
async def test_end_to_end_with_rate_limited_music(make_pipeline):
    renderer = FakeRenderer(narration_seconds=10.0)
    music = FakeMusic(error=UpstreamMusicFailure("AUDIOFLOW_RATE_LIMIT"))
    pipeline = make_pipeline(renderer=renderer, music=music)

    result = await pipeline.submit(GenerationRequest(topic="무릎 통증 줄이는 걷기 방법"))

    assert result.ok is True
    assert re.fullmatch(r"[0-9a-f]{64}", result.token)
    assert result.used_fallback is False
    assert result.duration_seconds == 10
    assert result.download_url == f"/download/{result.token}"
    assert result.meta["bgm_used"] is False
    assert "music_skipped:AUDIOFLOW_RATE_LIMIT" in result.warnings
    assert len(music.calls) == 1
    assert renderer.render_calls[0]["music_path"] is None

    path = pipeline.fetch(result.token)
    with open(path, "rb") as f:
        assert f.read() == VIDEO_BYTES


@pytest.mark.asyncio
async def test_empty_topic_rejected_before_any_external_call(make_pipeline):
    writer, narrator, music, renderer = FakeScriptWriter(), FakeNarrator(), FakeMusic(), FakeRenderer()
    pipeline = make_pipeline(script_writer=writer, narrator=narrator, music=music, renderer=renderer)

    result = await pipeline.submit(GenerationRequest(topic="   "))

    assert result.ok is False
    assert result.error.code == "invalid_input"
    assert writer.calls == [] and narrator.calls == [] and music.calls == []
    assert renderer.render_calls == []
    assert pipeline.gate.busy is False


@pytest.mark.asyncio
async def test_short_narration_is_clamped_to_three_seconds(make_pipeline):
    renderer = FakeRenderer(narration_seconds=1.2)
    pipeline = make_pipeline(renderer=renderer)

    result = await pipeline.submit(GenerationRequest(topic="손목 스트레칭"))

    assert result.ok is True
    assert result.duration_seconds == 3.0
    assert renderer.render_calls[0]["duration"] == 3.0


@pytest.mark.asyncio
async def test_long_narration_duration_is_not_altered(make_pipeline):
    renderer = FakeRenderer(narration_seconds=47.25)
    pipeline = make_pipeline(renderer=renderer)

    result = await pipeline.submit(GenerationRequest(topic="혈압 낮추는 습관"))

    assert result.duration_seconds == 47.25
    assert result.meta["duration_sec"] == 47


@pytest.mark.asyncio
async def test_music_is_mixed_when_available(make_pipeline):
    renderer = FakeRenderer(narration_seconds=120.0)
    music = FakeMusic()
    pipeline = make_pipeline(renderer=renderer, music=music)

    result = await pipeline.submit(GenerationRequest(topic="수면 습관", tone=Tone.INFO))

    assert result.ok is True
    assert music.calls[0]["preset"] == "DOCUMENTARY"
    assert renderer.render_calls[0]["music_path"].endswith("bgm.wav")
    assert result.meta["bgm_used"] is True
    assert result.meta["bgm_preset"] == "DOCUMENTARY"


@pytest.mark.asyncio
async def test_music_preset_follows_kind_and_measured_duration(make_pipeline):
    music = FakeMusic()
    pipeline = make_pipeline(renderer=FakeRenderer(narration_seconds=45.0), music=music)

    await pipeline.submit(GenerationRequest(topic="아침 체조", kind=VideoKind.DEFAULT))

    assert music.calls[0]["preset"] == "UPBEAT_SHORTS"
    assert music.calls[0]["duration_sec"] == 45.0


@pytest.mark.asyncio
async def test_unexpected_music_exception_is_still_fail_open(make_pipeline):
    pipeline = make_pipeline(music=FakeMusic(error=ConnectionRefusedError("refused")))

    result = await pipeline.submit(GenerationRequest(topic="어깨 통증"))

    assert result.ok is True
    assert "music_skipped:ConnectionRefusedError" in result.warnings


@pytest.mark.asyncio
async def test_unmixed_fallback_render_is_reported(make_pipeline):
    pipeline = make_pipeline(renderer=FakeRenderer(direct_map=True), music=FakeMusic())

    result = await pipeline.submit(GenerationRequest(topic="허리 운동"))

    assert result.ok is True
    assert "music_unmixed" in result.warnings


@pytest.mark.asyncio
async def test_script_failure_aborts_and_cleans_scratch(make_pipeline, scratch):
    narrator = FakeNarrator()
    pipeline = make_pipeline(script_writer=FakeScriptWriter(error=UpstreamScriptFailure("OpenAI error 500")), narrator=narrator)

    result = await pipeline.submit(GenerationRequest(topic="관절 건강"))

    assert result.ok is False
    assert result.error.code == "upstream_script_failure"
    assert narrator.calls == []
    assert list(scratch.iterdir()) == []


@pytest.mark.asyncio
async def test_script_timeout_is_an_upstream_failure(make_pipeline):
    class SlowWriter(FakeScriptWriter):
        async def write(self, req):
            await asyncio.sleep(1)

    pipeline = make_pipeline(script_writer=SlowWriter(), script_timeout=0.05)

    result = await pipeline.submit(GenerationRequest(topic="관절 건강"))

    assert result.error.code == "upstream_script_failure"
    assert "timed out" in result.error.message


@pytest.mark.asyncio
async def test_speech_failure_without_fallback_is_fatal(make_pipeline):
    renderer = FakeRenderer()
    pipeline = make_pipeline(narrator=FakeNarrator(error=UpstreamSpeechFailure("OpenAI error 503")), renderer=renderer)

    result = await pipeline.submit(GenerationRequest(topic="관절 건강"))

    assert result.ok is False
    assert result.error.code == "upstream_speech_failure"
    assert renderer.render_calls == []


@pytest.mark.asyncio
async def test_tiny_narration_counts_as_speech_failure(make_pipeline):
    pipeline = make_pipeline(narrator=FakeNarrator(audio=b"ID3"))

    result = await pipeline.submit(GenerationRequest(topic="관절 건강"))

    assert result.error.code == "upstream_speech_failure"


@pytest.mark.asyncio
async def test_speech_failure_uses_silent_fallback_when_enabled(make_pipeline):
    renderer = FakeRenderer(narration_seconds=10.0)
    pipeline = make_pipeline(
        narrator=FakeNarrator(error=UpstreamSpeechFailure("OpenAI error 503")),
        renderer=renderer,
        tts_fallback=True,
        fallback_seconds=10.0,
    )

    result = await pipeline.submit(GenerationRequest(topic="관절 건강"))

    assert result.ok is True
    assert result.used_fallback is True
    assert renderer.silence_calls == [10.0]
    assert any(w.startswith("tts_fallback:") for w in result.warnings)


@pytest.mark.asyncio
async def test_render_failure_carries_stderr_and_cleans_up(make_pipeline, scratch):
    store = ArtifactTokenStore(1800)
    renderer = FakeRenderer(error=CommandError("ffmpeg failed (code=1)", returncode=1, stderr="Invalid filter graph"))
    pipeline = make_pipeline(renderer=renderer, store=store)
    assert pipeline.store is store

    result = await pipeline.submit(GenerationRequest(topic="관절 건강"))

    assert result.ok is False
    assert result.error.code == "render_failure"
    assert "Invalid filter graph" in result.error.details
    assert len(store) == 0
    assert list(scratch.iterdir()) == []


@pytest.mark.asyncio
async def test_zero_exit_render_without_video_stream_is_rejected(make_pipeline, scratch):
    store = ArtifactTokenStore(1800)
    pipeline = make_pipeline(renderer=FakeRenderer(codec=""), store=store)
    assert pipeline.store is store

    result = await pipeline.submit(GenerationRequest(topic="관절 건강"))

    assert result.error.code == "no_video_stream"
    assert len(store) == 0
    assert list(scratch.iterdir()) == []


@pytest.mark.asyncio
async def test_short_render_is_rejected(make_pipeline):
    pipeline = make_pipeline(renderer=FakeRenderer(video_seconds=1.0))

    result = await pipeline.submit(GenerationRequest(topic="관절 건강"))

    assert result.error.code == "duration_too_short"


@pytest.mark.asyncio
async def test_tiny_render_is_rejected(make_pipeline):
    pipeline = make_pipeline(renderer=FakeRenderer(video_bytes=b"\x00" * 10))

    result = await pipeline.submit(GenerationRequest(topic="관절 건강"))

    assert result.error.code == "output_too_small"


@pytest.mark.asyncio
async def test_busy_gate_rejects_without_running(make_pipeline):
    gate = AdmissionGate()
    writer = FakeScriptWriter()
    pipeline = make_pipeline(script_writer=writer, gate=gate)
    assert gate.try_acquire()

    result = await pipeline.submit(GenerationRequest(topic="관절 건강"))

    assert result.error.code == "busy"
    assert writer.calls == []
    gate.release()


@pytest.mark.asyncio
async def test_concurrent_submissions_admit_only_one(make_pipeline):
    class SlowWriter(FakeScriptWriter):
        async def write(self, req):
            await asyncio.sleep(0.05)
            return await super().write(req)

    pipeline = make_pipeline(script_writer=SlowWriter())

    first, second = await asyncio.gather(
        pipeline.submit(GenerationRequest(topic="첫 번째")),
        pipeline.submit(GenerationRequest(topic="두 번째")),
    )

    outcomes = sorted([first.ok, second.ok])
    assert outcomes == [False, True]
    rejected = first if not first.ok else second
    assert rejected.error.code == "busy"
    assert pipeline.gate.busy is False


@pytest.mark.asyncio
async def test_missing_closing_action_is_inserted_once(make_pipeline):
    writer = FakeScriptWriter(body="걷기는 좋은 운동입니다. 하루 30분이면 됩니다.")
    narrator = FakeNarrator()
    pipeline = make_pipeline(script_writer=writer, narrator=narrator)

    result = await pipeline.submit(GenerationRequest(topic="걷기"))

    assert "section_inserted:closing_action" in result.warnings
    assert narrator.calls[0].endswith("오늘 딱 한 가지만 바로 해 보세요.")
    assert result.meta["quality"]["has_number"] is True


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_internal_error(make_pipeline):
    class BrokenValidator:
        async def validate(self, path):
            raise KeyError("boom")

    pipeline = make_pipeline()
    pipeline.validator = BrokenValidator()

    result = await pipeline.submit(GenerationRequest(topic="관절 건강"))

    assert result.ok is False
    assert result.error.code == "internal_error"
    assert pipeline.gate.busy is False


@pytest.mark.asyncio
async def test_successful_run_registers_in_injected_store(make_pipeline):
    store = ArtifactTokenStore(1800)
    pipeline = make_pipeline(store=store)

    result = await pipeline.submit(GenerationRequest(topic="관절 건강"))

    assert pipeline.store is store
    assert len(store) == 1
    assert store.resolve(result.token) is not None


@pytest.mark.asyncio
async def test_documentary_kind_picks_documentary_music(make_pipeline):
    music = FakeMusic()
    pipeline = make_pipeline(renderer=FakeRenderer(narration_seconds=300.0), music=music)

    result = await pipeline.submit(GenerationRequest(topic="한국의 옛 시장", kind="documentary"))

    assert result.ok is True
    assert music.calls[0]["preset"] == "DOCUMENTARY"


@pytest.mark.asyncio
async def test_cancelled_run_cleans_scratch_and_releases_gate(make_pipeline, scratch):
    class HangingScriptWriter:
        def __init__(self):
            self.started = asyncio.Event()

        async def write(self, req):
            self.started.set()
            await asyncio.sleep(3600)

    writer = HangingScriptWriter()
    pipeline = make_pipeline(script_writer=writer)

    task = asyncio.create_task(pipeline.run(GenerationRequest(topic="관절 건강")))
    await asyncio.wait_for(writer.started.wait(), timeout=5)
    assert list(scratch.iterdir()) != []

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert list(scratch.iterdir()) == []
    assert pipeline.gate.busy is False
