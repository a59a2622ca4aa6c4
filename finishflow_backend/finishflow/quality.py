"""Named checks over generated narration scripts.

Each rule is a ``(name, predicate)`` pair so its outcome can be inspected on
its own. Rule failures are reported as warnings; they never abort a run.
"""
import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Sequence

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")
_ACTION_PHRASE = re.compile(r"하세요|해 ?보세요|합시다|\btry\b|\bstart\b", re.IGNORECASE)
MAX_AVG_SENTENCE_CHARS = 60


@dataclass(frozen=True)
class QualityRule:
    name: str
    predicate: Callable[[str], bool]


@dataclass(frozen=True)
class RuleResult:
    name: str
    passed: bool


def _sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text or "") if s.strip()]


def _non_empty(text: str) -> bool:
    return bool((text or "").strip())


def _has_number(text: str) -> bool:
    return bool(re.search(r"\d", text or ""))


def _has_action_phrase(text: str) -> bool:
    return bool(_ACTION_PHRASE.search(text or ""))


def _short_sentences(text: str) -> bool:
    sentences = _sentences(text)
    if not sentences:
        return False
    return sum(len(s) for s in sentences) / len(sentences) <= MAX_AVG_SENTENCE_CHARS


DEFAULT_RULES: Sequence[QualityRule] = (
    QualityRule("non_empty", _non_empty),
    QualityRule("has_number", _has_number),
    QualityRule("has_action_phrase", _has_action_phrase),
    QualityRule("short_sentences", _short_sentences),
)


def evaluate(text: str, rules: Iterable[QualityRule] = DEFAULT_RULES) -> List[RuleResult]:
    return [RuleResult(rule.name, bool(rule.predicate(text))) for rule in rules]


@dataclass(frozen=True)
class SectionSpec:
    """A section that must appear in the script.

    ``filler`` is appended when ``pattern`` does not match; it has to match
    ``pattern`` itself so a second pass is a no-op.
    """

    name: str
    pattern: str
    filler: str

    def __post_init__(self):
        if not re.search(self.pattern, self.filler):
            raise ValueError(f"filler for section {self.name!r} does not satisfy its own pattern")

    def present_in(self, text: str) -> bool:
        return bool(re.search(self.pattern, text or ""))


CLOSING_ACTION = SectionSpec(
    name="closing_action",
    pattern=r"오늘[^.!?\n]*(해 ?보세요|하세요)",
    filler="오늘 딱 한 가지만 바로 해 보세요.",
)


def ensure_section(text: str, spec: SectionSpec) -> str:
    """Append ``spec.filler`` when the section is missing; never removes content."""
    if spec.present_in(text):
        return text
    base = (text or "").rstrip()
    return f"{base}\n\n{spec.filler}" if base else spec.filler
