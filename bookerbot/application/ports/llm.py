from abc import ABC, abstractmethod
from collections.abc import Sequence

from bookerbot.domain.entities.conversation_context import QualificationState
from bookerbot.domain.entities.generation import GenerationRequest, GenerationResult
from bookerbot.domain.entities.intent import IntentClassification
from bookerbot.domain.entities.qualification import QualificationCriterion, QualificationVerdict


class LLMPort(ABC):
    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        Produce a conversational reply, or a tool call when `request.tools` is set.

        Requirements:
        - Retry rate-limit (429) and server (>=500) failures a bounded number of times
        - Raise LLMUpstreamError once retries are exhausted or on any other provider failure
        - Report token usage for cost accounting

        Returns:
            GenerationResult with content (may be empty when a tool call is present)
        """
        raise NotImplementedError

    @abstractmethod
    async def classify_intent(self, message: str, context_summary: str) -> IntentClassification:
        """
        Classify a message the keyword rules could not place.

        Requirements:
        - intent must belong to the closed Intent set; unknown labels map to UNCLEAR
        - Raise LLMUpstreamError / LLMContractError on failure (caller degrades to UNCLEAR)
        """
        raise NotImplementedError

    @abstractmethod
    async def assess_qualification(
        self,
        criteria: Sequence[QualificationCriterion],
        transcript: str,
        prior: QualificationState,
    ) -> QualificationVerdict:
        """
        Judge each criterion as matched / missed / unknown and extract lead facts.

        Requirements:
        - Each verdict should echo the criterion id it refers to
        - Raise LLMUpstreamError / LLMContractError on failure (caller keeps the prior assessment)
        """
        raise NotImplementedError
