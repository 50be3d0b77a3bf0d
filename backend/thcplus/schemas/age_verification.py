from datetime import datetime

from pydantic import BaseModel, ConfigDict


class AgeVerificationRequest(BaseModel):
    accepted: bool


class AgeVerificationData(BaseModel):
    expires_at: datetime


class AgeSessionRead(BaseModel):
    verified: bool


class AgeVerificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    ip_hash: str
    user_agent: str
    verified_at: datetime
    expires_at: datetime
    created_at: datetime


class ComplianceStatsRead(BaseModel):
    total: int
    last_30_days: int
    last_7_days: int
    today: int


class ComplianceOverview(BaseModel):
    stats: ComplianceStatsRead
    items: list[AgeVerificationRead]
    page: int
    page_size: int
    total_items: int
    total_pages: int
