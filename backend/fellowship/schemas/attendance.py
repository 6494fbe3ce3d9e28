"""
Schémas Pydantic pour les présences, les demandes de pointage et les rejets.
"""

import enum
from datetime import date, datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, field_validator, model_validator

from fellowship.schemas.payload import as_utc

VISITOR_USER_ID = "visitor"
CheckInMethod = Literal["qrcode", "admin", "self", "offline"]


class RejectReason(str, enum.Enum):
    """Motifs de refus d'un pointage : issues attendues, jamais des exceptions."""
    MALFORMED_TOKEN = "MALFORMED_TOKEN"
    EXPIRED_TOKEN = "EXPIRED_TOKEN"
    STALE_TOKEN = "STALE_TOKEN"
    WORD_MISMATCH = "WORD_MISMATCH"
    DUPLICATE_CHECK_IN = "DUPLICATE_CHECK_IN"
    SESSION_INACTIVE = "SESSION_INACTIVE"


class VisitorInfo(BaseModel):
    """Informations d'un visiteur (seul le nom est obligatoire)."""
    name: str
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[EmailStr] = None
    invited_by: Optional[str] = None
    referred_by: Optional[str] = None
    is_first_time: bool = False

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le nom du visiteur est obligatoire.")
        return v.strip()


class CurrentUser(BaseModel):
    """Identité vérifiée transmise par le fournisseur d'identité."""
    user_id: str
    name: str = ""
    role: str = "member"


class AttendanceRecord(BaseModel):
    """Présence telle que produite par le validateur ou lue depuis le store."""
    id: Optional[str] = None
    session_id: Optional[str] = None
    event_id: Optional[str] = None
    event_name: Optional[str] = None
    event_type: Optional[str] = None
    user_id: str
    user_name: Optional[str] = None
    check_in_time: datetime
    check_in_method: CheckInMethod
    is_visitor: bool = False
    visitor_info: Optional[VisitorInfo] = None
    local_id: Optional[str] = None

    @field_validator("check_in_time")
    @classmethod
    def to_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @model_validator(mode="after")
    def visitor_info_iff_visitor(self) -> "AttendanceRecord":
        if self.is_visitor and self.visitor_info is None:
            raise ValueError("Un pointage visiteur doit porter visitor_info.")
        if not self.is_visitor and self.visitor_info is not None:
            raise ValueError("visitor_info n'est autorisé que pour un visiteur.")
        return self


class CheckInRequest(BaseModel):
    """Code brut lu par le scanner (la caméra est hors périmètre)."""
    code: str


class VisitorCheckInRequest(BaseModel):
    code: str
    visitor_info: VisitorInfo


class AdminCheckInRequest(BaseModel):
    """Pointage d'un membre (user_id) ou d'un visiteur (visitor_info) par un admin, sans scan."""
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    visitor_info: Optional[VisitorInfo] = None
    allow_multiple: bool = False

    @model_validator(mode="after")
    def member_or_visitor(self) -> "AdminCheckInRequest":
        if (self.user_id is None) == (self.visitor_info is None):
            raise ValueError("Indiquer soit user_id (membre), soit visitor_info (visiteur).")
        return self


class CheckInResponse(BaseModel):
    status: Literal["accepted", "queued"]
    attendance_id: Optional[str] = None
    local_id: Optional[str] = None
    record: AttendanceRecord


class RejectionDetail(BaseModel):
    reason: RejectReason
    message: str


class SessionReport(BaseModel):
    """Rapport de présence d'une session."""
    session_id: str
    event_name: str
    attendance_count: int
    member_count: int
    visitor_count: int
    records: List[AttendanceRecord]


class AttendanceStats(BaseModel):
    """Statistiques de présence sur une période (bornes incluses, jours UTC)."""
    start: date
    end: date
    total_attendance: int
    unique_members: int
    visitors: int
    average_per_day: float
    event_breakdown: Dict[str, int]
