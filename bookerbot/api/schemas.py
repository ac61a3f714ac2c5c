from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RespondRequestSchema(_CamelModel):
    contact_id: str = Field(min_length=1)
    message: str = Field(min_length=1)


class TokensUsedSchema(_CamelModel):
    input: int = 0
    output: int = 0
    total: int = 0


class RespondResponseSchema(_CamelModel):
    response: str
    intent: str
    confidence: float
    should_escalate: bool = False
    escalation_reason: str | None = None
    tokens_used: TokensUsedSchema = Field(default_factory=TokensUsedSchema)
    status_update: str | None = None
    appointment_created: bool = False


class ErrorSchema(BaseModel):
    error: str
    code: str
