from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import (
    ATTACK_DEFAULT_DELAY_MS,
    ATTACK_DEFAULT_THREADS,
    DEFAULT_SESSION_NAME,
    DEFAULT_TEMPLATE,
    NUMERIC_DEFAULT_FROM,
    NUMERIC_DEFAULT_MIN_DIGITS,
    NUMERIC_DEFAULT_STEP,
    NUMERIC_DEFAULT_TO,
)

# Scan order of the fields that may hold markers
MARKER_FIELDS = ("url", "headers", "body")

MarkerField = Literal["url", "headers", "body"]
AttackMode = Literal["sniper", "battering_ram"]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RequestTemplate(BaseModel):
    """Editable request an attack is built from. Headers stay raw text."""
    method: str = DEFAULT_TEMPLATE["method"]
    url: str = DEFAULT_TEMPLATE["url"]
    headers: str = DEFAULT_TEMPLATE["headers"]
    body: str = DEFAULT_TEMPLATE["body"]


class Position(BaseModel):
    """A tracked marker. ``sequence_index`` is its rank in the url→headers→body scan."""
    id: int
    field: MarkerField
    original_value: str
    sequence_index: int = 0


class NumericRangeConfig(BaseModel):
    """Settings for a generated numeric payload set."""
    model_config = ConfigDict(populate_by_name=True)

    mode: Literal["sequential", "random"] = "sequential"
    from_: int = Field(NUMERIC_DEFAULT_FROM, alias="from")
    to: int = NUMERIC_DEFAULT_TO
    step: int = Field(NUMERIC_DEFAULT_STEP, gt=0)
    base: Literal["decimal", "hex"] = "decimal"
    min_digits: int = Field(NUMERIC_DEFAULT_MIN_DIGITS, ge=0)
    max_digits: int = Field(0, ge=0)   # 0 = unbounded


class PayloadSet(BaseModel):
    kind: Literal["list", "numeric_range"] = "list"
    items: list[str] = []
    numeric: Optional[NumericRangeConfig] = None


class AttackOptions(BaseModel):
    delay_ms: int = Field(ATTACK_DEFAULT_DELAY_MS, ge=0)
    threads: int = Field(ATTACK_DEFAULT_THREADS, ge=1)   # reserved, dispatch is sequential
    follow_redirects: bool = False


class AttackResult(BaseModel):
    """Outcome of one round. ``status_code`` 0 means the request never completed."""
    model_config = ConfigDict(frozen=True)

    sequence_id: int
    payload: str
    position_index: int = -1   # -1 for battering ram rounds
    status_code: int = 0
    body_length: int = 0
    elapsed_ms: int = 0
    full_request: str = ""
    full_response: str = ""
    error: str = ""
    timestamp: str = Field(default_factory=_now)


class AttackProgress(BaseModel):
    current: int = 0
    total: int = 0
    percentage: int = 0


class AttackSession(BaseModel):
    """One intruder tab: template, positions, payloads, options and the last run's results."""
    id: str
    name: str = DEFAULT_SESSION_NAME
    template: RequestTemplate = Field(default_factory=RequestTemplate)
    positions: list[Position] = []
    payloads: PayloadSet = Field(default_factory=PayloadSet)
    mode: AttackMode = "sniper"
    options: AttackOptions = Field(default_factory=AttackOptions)
    results: list[AttackResult] = []
    progress: AttackProgress = Field(default_factory=AttackProgress)
    next_position_id: int = 1
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value):
        # UI sends the hyphenated spelling
        if isinstance(value, str):
            return value.replace("-", "_")
        return value

    def touch(self) -> None:
        self.updated_at = _now()
