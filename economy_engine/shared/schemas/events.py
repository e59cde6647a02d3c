from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel


# Inbound, from the activity and identity modules


class ActionCompleted(BaseModel):
    event: Literal["economy:action_completed"] = "economy:action_completed"
    user_id: str
    action_type: str


class UserProfileUpdated(BaseModel):
    event: Literal["user:profile_updated"] = "user:profile_updated"
    user_id: str
    country: Optional[str] = None
    email_verified: bool = False
    phone_verified: bool = False
    device_id: Optional[str] = None
    ip_address: Optional[str] = None
    account_created_at: Optional[datetime] = None


# Outbound, for the notification layer


class PointsGranted(BaseModel):
    event: Literal["economy:points_granted"] = "economy:points_granted"
    user_id: str
    event_id: str
    action_type: str
    final_points: int
    multiplier: float


class WithdrawalCreated(BaseModel):
    event: Literal["economy:withdrawal_created"] = "economy:withdrawal_created"
    user_id: str
    withdrawal_id: str
    amount_points: int
    amount_usd: str
    risk_score: int
    fraud_signals: List[str]


class WithdrawalProcessed(BaseModel):
    event: Literal["economy:withdrawal_processed"] = "economy:withdrawal_processed"
    user_id: str
    withdrawal_id: str
    status: str
    processed_by: Optional[str] = None
    rejection_reason: Optional[str] = None
