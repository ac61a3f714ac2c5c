from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

from openai import AsyncOpenAI
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
)

from bookerbot.application.dto.conversation_record import parse_extracted_info
from bookerbot.application.exceptions import LLMContractError, LLMUpstreamError
from bookerbot.application.ports.llm import LLMPort
from bookerbot.core.config import settings
from bookerbot.domain.entities.conversation_context import QualificationState
from bookerbot.domain.entities.generation import GenerationRequest, GenerationResult, TokenUsage, ToolCall
from bookerbot.domain.entities.intent import Intent, IntentClassification
from bookerbot.domain.entities.qualification import CriterionVerdict, QualificationCriterion, QualificationVerdict
from bookerbot.infrastructure.llm.prompts import (
    JSON_ONLY_SYSTEM,
    build_classify_prompt,
    build_qualification_prompt,
)

logger = logging.getLogger(__name__)

_VERDICT_STATUSES = {"matched", "missed", "unknown"}


def _is_retryable(exc: BaseException) -> bool:
    status = getattr(exc, "status_code", None)
    return isinstance(status, int) and (status == 429 or status >= 500)


class OpenAILLM(LLMPort):
    """
    OpenAI-backed adapter implementing LLMPort.

    Contract guarantees:
    - generate returns GenerationResult; tool calls are surfaced as ToolCall
    - classify_intent always returns an Intent from the closed set
    - assess_qualification returns one CriterionVerdict per criterion the model judged
    - Raises:
        LLMUpstreamError: networking/provider failures (after retries for generate)
        LLMContractError: invalid JSON or wrong schema/shape
    """

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        max_attempts: int | None = None,
        retry_delays: Sequence[float] | None = None,
    ) -> None:
        self.client = client or AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY,
            timeout=settings.OPENAI_TIMEOUT_SECONDS,
            max_retries=0,  # retries are handled in generate()
        )
        self._max_attempts = max_attempts or settings.LLM_MAX_ATTEMPTS
        delays = settings.LLM_RETRY_DELAYS_SECONDS if retry_delays is None else retry_delays
        self._wait = wait_chain(*[wait_fixed(d) for d in delays]) if delays else wait_fixed(0)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        kwargs: dict[str, Any] = {
            "model": request.model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                *({"role": m.role, "content": m.content} for m in request.messages),
            ],
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        if request.tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters,
                    },
                }
                for tool in request.tools
            ]
            kwargs["tool_choice"] = "auto"

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_retryable),
                stop=stop_after_attempt(self._max_attempts),
                wait=self._wait,
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    resp = await self.client.chat.completions.create(**kwargs)
        except Exception as e:
            raise LLMUpstreamError(f"OpenAI API error: {e}") from e

        if not resp.choices:
            raise LLMContractError("Generate: response contained no choices.")

        choice = resp.choices[0]
        usage = TokenUsage()
        if resp.usage is not None:
            usage = TokenUsage(
                input=resp.usage.prompt_tokens or 0,
                output=resp.usage.completion_tokens or 0,
                total=resp.usage.total_tokens or 0,
            )

        return GenerationResult(
            content=(choice.message.content or "").strip(),
            usage=usage,
            stop_reason=choice.finish_reason,
            tool_call=_parse_tool_call(choice.message.tool_calls),
            model=resp.model or request.model,
        )

    async def classify_intent(self, message: str, context_summary: str) -> IntentClassification:
        text = await self._call_json(
            model=settings.OPENAI_MODEL_CLASSIFY,
            prompt=build_classify_prompt(message, context_summary),
        )
        data = _parse_json(text, what="classify")
        if not isinstance(data, dict):
            raise LLMContractError("Classify: expected a JSON object with an 'intent' key.")

        try:
            confidence = float(data.get("confidence", 0.5))
        except (TypeError, ValueError):
            confidence = 0.5

        entities_raw = data.get("entities") or {}
        entities = (
            {str(k): str(v) for k, v in entities_raw.items() if isinstance(v, str) and v.strip()}
            if isinstance(entities_raw, dict)
            else {}
        )
        reason = data.get("escalationReason")

        return IntentClassification(
            intent=Intent.from_label(data.get("intent")),
            confidence=max(0.0, min(1.0, confidence)),
            entities=entities,
            requires_escalation=data.get("requiresEscalation") is True,
            escalation_reason=reason if isinstance(reason, str) and reason.strip() else None,
        )

    async def assess_qualification(
        self,
        criteria: Sequence[QualificationCriterion],
        transcript: str,
        prior: QualificationState,
    ) -> QualificationVerdict:
        text = await self._call_json(
            model=settings.OPENAI_MODEL_QUALIFY,
            prompt=build_qualification_prompt(criteria, transcript, prior),
        )
        data = _parse_json(text, what="qualify")
        if not isinstance(data, dict):
            raise LLMContractError("Qualify: expected a JSON object with keys: criteria, extractedInfo.")

        items = data.get("criteria")
        if not isinstance(items, list):
            raise LLMContractError("Qualify: 'criteria' must be a list.")

        verdicts: list[CriterionVerdict] = []
        for item in items:
            if not isinstance(item, dict):
                raise LLMContractError("Qualify: each criteria entry must be an object.")
            status = str(item.get("status", "")).strip().lower()
            if status not in _VERDICT_STATUSES:
                continue
            criterion_id = item.get("id")
            criterion = item.get("criterion")
            evidence = item.get("evidence")
            verdicts.append(
                CriterionVerdict(
                    status=status,
                    criterion_id=str(criterion_id) if criterion_id else None,
                    criterion=criterion if isinstance(criterion, str) else None,
                    evidence=evidence if isinstance(evidence, str) else None,
                )
            )

        return QualificationVerdict(
            criteria=tuple(verdicts),
            extracted_info=parse_extracted_info(data.get("extractedInfo")),
        )

    async def _call_json(self, model: str, prompt: str) -> str:
        try:
            resp = await self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": JSON_ONLY_SYSTEM},
                    {"role": "user", "content": prompt},
                ],
                temperature=settings.OPENAI_TEMPERATURE_CLASSIFY,
                max_tokens=800,
                response_format={"type": "json_object"},
            )
        except Exception as e:
            raise LLMUpstreamError(f"OpenAI API error: {e}") from e

        content = (resp.choices[0].message.content or "").strip() if resp.choices else ""
        if not content:
            raise LLMContractError("LLM returned empty response text.")

        return content


def _parse_tool_call(tool_calls: Any) -> ToolCall | None:
    if not tool_calls:
        return None
    function = getattr(tool_calls[0], "function", None)
    name = getattr(function, "name", None)
    if not name:
        return None
    try:
        arguments = json.loads(getattr(function, "arguments", None) or "{}")
    except json.JSONDecodeError:
        logger.warning("Tool call arguments were not valid JSON", extra={"tool": name})
        arguments = {}
    return ToolCall(name=name, arguments=arguments if isinstance(arguments, dict) else {})


def _parse_json(text: str, what: str) -> Any:
    try:
        return json.loads(text)
    except Exception:
        snippet = text[:200].replace("\n", " ")
        raise LLMContractError(f"{what.capitalize()}: invalid JSON. Snippet: {snippet!r}")
