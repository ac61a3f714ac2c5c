from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from bookerbot.api.schemas import ErrorSchema, RespondRequestSchema, RespondResponseSchema, TokensUsedSchema
from bookerbot.application.exceptions import ErrorKind, OrchestrationError
from bookerbot.application.use_cases.process_message import ProcessMessageUseCase
from bookerbot.wiring.dependencies import get_process_message_use_case

router = APIRouter()
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    ErrorKind.CONTACT_NOT_FOUND: (404, "NOT_FOUND"),
    ErrorKind.CONTACT_OPTED_OUT: (400, "OPTED_OUT"),
    ErrorKind.CONTACT_HANDED_OFF: (400, "HANDED_OFF"),
    ErrorKind.WORKFLOW_INACTIVE: (400, "WORKFLOW_INACTIVE"),
}


@router.post("/api/ai/respond", response_model=RespondResponseSchema, response_model_by_alias=True)
async def respond(
    req: RespondRequestSchema,
    uc: ProcessMessageUseCase = Depends(get_process_message_use_case),
):
    try:
        result = await uc.handle(req.contact_id, req.message)
    except OrchestrationError as e:
        status_code, code = ERROR_RESPONSES.get(e.kind, (500, "INTERNAL_ERROR"))
        logger.info("Message rejected", extra={"contact_id": req.contact_id, "error_kind": e.kind})
        return JSONResponse(
            status_code=status_code,
            content=ErrorSchema(error=str(e), code=code).model_dump(),
        )

    return RespondResponseSchema(
        response=result.response,
        intent=result.intent.intent,
        confidence=result.intent.confidence,
        should_escalate=result.should_escalate,
        escalation_reason=result.escalation_reason,
        tokens_used=TokensUsedSchema(
            input=result.tokens_used.input,
            output=result.tokens_used.output,
            total=result.tokens_used.total,
        ),
        status_update=result.status_update,
        appointment_created=result.appointment_created,
    )
