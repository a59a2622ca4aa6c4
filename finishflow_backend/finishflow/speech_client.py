import re, httpx, logging
from .errors import UpstreamSpeechFailure
from .settings import OPENAI_API_KEY, OPENAI_BASE_URL, TTS_MODEL, TTS_VOICE, TTS_SPEED, TTS_TIMEOUT_S

logger = logging.getLogger(__name__)

# Minimal pronunciation fixes applied before synthesis
TTS_SUBSTITUTIONS = (
    (re.compile(r"~"), "에서 "),
    (re.compile(r"\bAI\b", re.IGNORECASE), "에이아이"),
    (re.compile(r"%"), " 퍼센트"),
    (re.compile(r"&"), " 그리고 "),
    (re.compile(r"\bkm\b"), "킬로미터"),
    (re.compile(r"\bkg\b"), "킬로그램"),
)

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def normalize_for_tts(text: str) -> str:
    """Collapse whitespace, expand symbols, and rejoin sentences with pauses"""
    t = str(text or "")
    for pattern, replacement in TTS_SUBSTITUTIONS:
        t = pattern.sub(replacement, t)
    t = re.sub(r"\s+", " ", t).strip()

    parts = [p.strip() for p in _SENTENCE_END.split(t) if p.strip()]
    return ", ".join(parts)


class SpeechClient:
    def __init__(self, api_key: str = OPENAI_API_KEY, *, model: str = TTS_MODEL, voice: str = TTS_VOICE, speed: float = TTS_SPEED, timeout: float = TTS_TIMEOUT_S, base_url: str = OPENAI_BASE_URL):
        self.api_key = api_key
        self.model = model
        self.voice = voice
        self.speed = speed
        self.timeout = timeout
        self.base_url = base_url

    def _headers(self):
        if not self.api_key:
            raise UpstreamSpeechFailure("OPENAI_API_KEY is not set; please configure your .env")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

    async def synthesize(self, text: str) -> bytes:
        """Return mp3 bytes for already-normalized narration text"""
        if not (text or "").strip():
            raise UpstreamSpeechFailure("Narration text is empty")
        payload = {
            "model": self.model,
            "voice": self.voice,
            "input": text,
            "response_format": "mp3",
            "speed": self.speed,
        }
        url = f"{self.base_url}/audio/speech"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(url, headers=self._headers(), json=payload)
        except httpx.HTTPError as e:
            logger.error(f"TTS request failed: {e!r}")
            raise UpstreamSpeechFailure(f"TTS request failed: {e!r}") from e

        if r.status_code >= 400:
            logger.error(f"TTS error {r.status_code}: {r.text[:500]}")
            raise UpstreamSpeechFailure(f"OpenAI error {r.status_code}: {r.text[:500]}")
        logger.info(f"TTS returned {len(r.content)} bytes")
        return r.content
