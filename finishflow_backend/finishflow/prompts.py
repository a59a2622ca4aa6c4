SYSTEM_PROMPT = """You write Korean voiceover scripts that sound natural for middle-aged and older audiences.
- Use short spoken sentences and natural pauses.
- Sound like a calm YouTube narrator speaking slowly and clearly. Avoid hype.
- No difficult jargon. Write the way people talk, not the way textbooks read.
Output ONLY valid JSON matching the provided schema."""


SCRIPT_SCHEMA = r"""{
  "title": "<short Korean title, under 22 characters>",
  "body": "<the full narration text, plain sentences, no headings or stage directions>"
}"""


TONE_GUIDANCE = {
    "CALM": "차분하고 따뜻한 말투",
    "HEALTH": "차분하고 따뜻한 말투, 건강 정보는 쉽게",
    "INFO": "정보를 또박또박 전달하는 설명형 말투",
    "DOCUMENTARY": "다큐멘터리 내레이션처럼 담담한 말투",
    "UPBEAT": "밝고 경쾌한 말투",
}


USER_PROMPT_TEMPLATE = """주제: "{topic}"

요구사항:
- 분량: 약 {minutes}분 ({seconds}초) 분량으로 읽히는 길이
- 말투: {tone_guidance}
- 문장 짧게, 어려운 용어 금지
- 구체적인 숫자 하나 이상 포함
- 마지막은 오늘 바로 할 수 있는 행동 1가지로 끝내기

Schema:
{schema}

Return ONLY valid JSON for the schema above."""


def build_user_prompt(topic: str, tone: str, target_seconds: float) -> str:
    seconds = int(round(target_seconds))
    return USER_PROMPT_TEMPLATE.format(
        topic=topic,
        minutes=max(1, round(seconds / 60)),
        seconds=seconds,
        tone_guidance=TONE_GUIDANCE.get(tone, TONE_GUIDANCE["CALM"]),
        schema=SCRIPT_SCHEMA,
    )
