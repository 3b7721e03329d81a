"""Request and response models.

Wire JSON is camelCase; Python attributes are snake_case.
"""

from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MAX_TOKEN_LENGTH = 4096


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChallengeResponse(CamelModel):
    server_nonce: str
    difficulty: int
    expires_at: int  # epoch milliseconds


class PowVerifyRequest(CamelModel):
    server_nonce: str = Field(..., min_length=1, max_length=128)
    solution_nonce: str = Field(
        ...,
        max_length=256,
        validation_alias=AliasChoices("solutionNonce", "nonce", "solution_nonce"),
    )
    hash: str = Field(..., max_length=128)

    @field_validator("solution_nonce", mode="before")
    @classmethod
    def stringify_solution(cls, v: Any) -> Any:
        # Solvers commonly send the counter as a JSON number
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class PowVerifyResponse(CamelModel):
    ok: bool = True
    pow_token: str


class JoinRequest(CamelModel):
    traffic_class: Optional[str] = Field(
        default=None,
        max_length=32,
        validation_alias=AliasChoices("class", "bucket", "traffic_class"),
    )
    region: Optional[str] = Field(default=None, max_length=32)
    resume_token: Optional[str] = Field(default=None, max_length=MAX_TOKEN_LENGTH)


class JoinResponse(CamelModel):
    ok: bool = True
    queue_token: str


class TokenRequest(CamelModel):
    queue_token: str = Field(..., min_length=1, max_length=MAX_TOKEN_LENGTH)


class StatusResponse(CamelModel):
    ok: bool = True
    position: Optional[int]
    eta_seconds: Optional[int]


class AttestResponse(CamelModel):
    ok: bool
    queue_version: str


class ThrottleRequest(CamelModel):
    admit_per_minute: float


class BudgetsRequest(CamelModel):
    budgets: Dict[str, float]
