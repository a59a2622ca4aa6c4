import json, logging, re
from .errors import UpstreamScriptFailure
from .models import GenerationRequest, ScriptArtifact
from .prompts import SYSTEM_PROMPT, build_user_prompt
from .settings import OPENAI_API_KEY, OPENAI_BASE_URL, SCRIPT_MODEL, SCRIPT_TIMEOUT_S

logger = logging.getLogger(__name__)


def _strip_json_fence(text: str) -> str:
    fenced = re.match(r"^```(?:json)?\s*(.*?)\s*```$", text, re.DOTALL)
    if fenced:
        return fenced.group(1).strip()
    return text.strip()


def parse_script(raw: str, fallback_title: str) -> ScriptArtifact:
    """Turn model output into a script; plain text is accepted as the body"""
    candidate = _strip_json_fence(raw or "")
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        data = {"title": fallback_title, "body": candidate}
    if not isinstance(data, dict):
        data = {"title": fallback_title, "body": candidate}

    body = str(data.get("body") or data.get("script") or "").strip()
    title = str(data.get("title") or "").strip() or fallback_title
    if not body:
        raise UpstreamScriptFailure("Empty script from OpenAI")
    return ScriptArtifact(title=title, body=body)


class ScriptWriter:
    def __init__(self, api_key: str = OPENAI_API_KEY, *, model: str = SCRIPT_MODEL, timeout: float = SCRIPT_TIMEOUT_S, base_url: str = OPENAI_BASE_URL):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.base_url = base_url
        self._client = None

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            if not self.api_key:
                raise UpstreamScriptFailure("OPENAI_API_KEY is not set; please configure your .env")
            # retries are the caller's business; keep the timeout budget exact
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout, max_retries=0)
        return self._client

    async def write(self, req: GenerationRequest) -> ScriptArtifact:
        logger.info("Calling OpenAI API to generate narration script")
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_user_prompt(req.topic.strip(), req.tone.value, req.effective_target_seconds())},
        ]
        client = self._get_client()
        try:
            resp = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0.4,
                response_format={"type": "json_object"},
            )
            content = resp.choices[0].message.content or ""
        except Exception as e:
            logger.error(f"OpenAI API call failed: {str(e)}")
            raise UpstreamScriptFailure(f"OpenAI error: {str(e)[:500]}") from e
        logger.info("Successfully received response from OpenAI")
        return parse_script(content, fallback_title=req.topic.strip())
