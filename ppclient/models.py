from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    PENDING = "pending"
    CALCULATING = "calculating"
    DONE = "done"
    ERROR = "error"
    CANT_FORCE = "cant_force"

    @classmethod
    def parse(cls, raw: Any) -> Union["JobStatus", str]:
        """Known statuses become members; anything else is kept as the raw string."""
        text = str(raw or "").strip().lower()
        try:
            return cls(text)
        except ValueError:
            return text


class ModToken(str, Enum):
    HD = "HD"
    HR = "HR"
    DT = "DT"
    FL = "FL"
    NF = "NF"
    EZ = "EZ"
    HT = "HT"
    SO = "SO"


@dataclass(frozen=True)
class StatusReply:
    """One `/pp_request` or `/pp_check` answer."""

    status: Union[JobStatus, str]
    pos: Optional[int] = None
    remaining: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StatusReply":
        pos = payload.get("pos")
        try:
            pos = int(pos) if pos is not None else None
        except (TypeError, ValueError):
            pos = None
        remaining = payload.get("remaining")
        try:
            remaining = int(remaining) if remaining is not None else None
        except (TypeError, ValueError):
            remaining = None
        return cls(status=JobStatus.parse(payload.get("status")), pos=pos, remaining=remaining)

    @property
    def status_name(self) -> str:
        return self.status.value if isinstance(self.status, JobStatus) else self.status


@dataclass(frozen=True)
class PollState:
    """What the previous tick saw; a fresh value is handed to each tick."""

    user: str
    last_status: Union[JobStatus, str, None] = None
    last_queue_pos: Optional[int] = None

    def should_notify(self, reply: StatusReply) -> bool:
        if reply.status != self.last_status:
            return True
        return reply.status == JobStatus.PENDING and reply.pos != self.last_queue_pos

    def advance(self, reply: StatusReply) -> "PollState":
        pos = reply.pos if reply.status == JobStatus.PENDING else self.last_queue_pos
        return PollState(user=self.user, last_status=reply.status, last_queue_pos=pos)


class HitCounts(BaseModel):
    good: int = Field(ge=0)
    meh: int = Field(ge=0)


class SimulationParams(BaseModel):
    # A bare number is a percentage; an object carries 100/50 counts
    accuracy: Union[float, HitCounts]
    mods: List[ModToken] = Field(default_factory=list)
    combo: Optional[int] = None
    misses: Optional[int] = None


class SimulationRequest(BaseModel):
    beatmap_id: int = Field(ge=0, le=2**63 - 1)
    params: SimulationParams

    def to_json(self) -> Dict[str, Any]:
        """Request body for `POST /simulate`; absent optional fields are left out."""
        return self.model_dump(mode="json", exclude_none=True)


class PlayInfo(BaseModel):
    accuracy: float
    combo: int
    max_combo: int
    great: int = 0
    good: int = 0
    meh: int = 0
    miss: int = 0


class SimulationResult(BaseModel):
    beatmap_info: str
    mods: List[str] = Field(default_factory=list)
    play_info: PlayInfo
    category_attribs: Dict[str, float] = Field(default_factory=dict)
    pp: float

    @property
    def accuracy(self) -> float:
        return self.play_info.accuracy

    @property
    def combo(self) -> int:
        return self.play_info.combo

    @property
    def max_combo(self) -> int:
        return self.play_info.max_combo
