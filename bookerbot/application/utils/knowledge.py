from __future__ import annotations

import re
from dataclasses import dataclass

from bookerbot.domain.entities.contact import FAQ, Channel, Contact
from bookerbot.domain.entities.qualification import QualificationCriterion

DEFAULT_TONE = "Professional and friendly"
DEFAULT_DOS = (
    "Be helpful and answer questions",
    "Be respectful of their time",
    "Keep responses brief for SMS",
)
DEFAULT_DONTS = (
    "Be pushy or aggressive",
    "Make promises you cannot keep",
    "Ignore opt-out requests",
)
DEFAULT_COMPANY_NAME = "the company"


@dataclass(frozen=True)
class WorkflowKnowledge:
    company_name: str
    company_summary: str | None
    services: tuple[str, ...]
    target_audience: str | None
    faqs: tuple[FAQ, ...]
    qualification_criteria: tuple[str, ...]
    tone: str
    dos: tuple[str, ...]
    donts: tuple[str, ...]
    instructions: str
    channel: Channel


def parse_criteria(raw: str | None) -> tuple[str, ...]:
    """Split newline-separated criteria, dropping bullet markers and blanks."""
    if not raw:
        return ()
    criteria = []
    for line in raw.splitlines():
        cleaned = re.sub(r"^[-*•]\s*", "", line.strip()).strip()
        if cleaned:
            criteria.append(cleaned)
    return tuple(criteria)


def identify_criteria(criteria: tuple[str, ...] | list[str]) -> tuple[QualificationCriterion, ...]:
    return tuple(QualificationCriterion(id=f"c{index}", text=text) for index, text in enumerate(criteria, start=1))


def build_workflow_knowledge(contact: Contact) -> WorkflowKnowledge:
    workflow = contact.workflow
    client = workflow.client
    return WorkflowKnowledge(
        company_name=client.name or DEFAULT_COMPANY_NAME,
        company_summary=client.brand_summary,
        services=client.brand_services,
        target_audience=client.brand_target_audience,
        faqs=client.brand_faqs,
        qualification_criteria=parse_criteria(workflow.qualification_criteria),
        tone=client.brand_tone or DEFAULT_TONE,
        dos=client.brand_dos or DEFAULT_DOS,
        donts=client.brand_donts or DEFAULT_DONTS,
        instructions=workflow.instructions,
        channel=workflow.channel,
    )
