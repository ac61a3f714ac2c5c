from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Sequence

from bookerbot.application.ports.llm import LLMPort
from bookerbot.domain.entities.conversation_context import ExtractedInfo, QualificationState
from bookerbot.domain.entities.generation import GenerationRequest, GenerationResult, TokenUsage
from bookerbot.domain.entities.intent import Intent, IntentClassification
from bookerbot.domain.entities.qualification import CriterionVerdict, QualificationCriterion, QualificationVerdict

ReplyScript = str | GenerationResult | Exception


class MockLLM(LLMPort):
    """
    Deterministic stand-in for local runs and tests.

    Replies are served from a queue; each entry is returned as-is (results),
    wrapped (strings) or raised (exceptions). An empty queue echoes a canned reply.
    `criterion_statuses` maps criterion text to matched / missed / unknown.
    """

    def __init__(
        self,
        replies: Iterable[ReplyScript] = (),
        intent: Intent = Intent.UNCLEAR,
        criterion_statuses: dict[str, str] | None = None,
        extracted_info: ExtractedInfo | None = None,
        qualification_error: Exception | None = None,
    ) -> None:
        self.replies: deque[ReplyScript] = deque(replies)
        self.intent = intent
        self.criterion_statuses = dict(criterion_statuses or {})
        self.extracted_info = extracted_info or ExtractedInfo()
        self.qualification_error = qualification_error
        self.generate_calls: list[GenerationRequest] = []
        self.classify_calls: list[str] = []

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.generate_calls.append(request)
        if not self.replies:
            return _result("Thanks for getting back to me! How can I help?")
        scripted = self.replies.popleft()
        if isinstance(scripted, Exception):
            raise scripted
        if isinstance(scripted, GenerationResult):
            return scripted
        return _result(scripted)

    async def classify_intent(self, message: str, context_summary: str) -> IntentClassification:
        self.classify_calls.append(message)
        return IntentClassification(intent=self.intent, confidence=0.7)

    async def assess_qualification(
        self,
        criteria: Sequence[QualificationCriterion],
        transcript: str,
        prior: QualificationState,
    ) -> QualificationVerdict:
        if self.qualification_error is not None:
            raise self.qualification_error
        verdicts = tuple(
            CriterionVerdict(status=self.criterion_statuses[c.text], criterion_id=c.id)
            for c in criteria
            if c.text in self.criterion_statuses
        )
        return QualificationVerdict(criteria=verdicts, extracted_info=self.extracted_info)


def _result(text: str) -> GenerationResult:
    words = len(text.split())
    return GenerationResult(
        content=text,
        usage=TokenUsage(input=100, output=words, total=100 + words),
        stop_reason="stop",
        model="mock",
    )
