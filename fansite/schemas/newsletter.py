"""
Pydantic schemas for newsletter endpoints.

Email addresses are not validated here; they go through
fansite.core.email_validation so every endpoint applies the same rules and
error codes.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator

from fansite.models.unsubscription_log import UnsubscribeReason

MAX_TAGS = 10
MAX_TAG_LENGTH = 50
MAX_METADATA_KEYS = 20


class SubscribeRequest(BaseModel):
    """Signup body shared by both subscribe endpoints"""
    email: Any = None
    source: str = Field("web", min_length=1, max_length=50)
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('tags')
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        if len(v) > MAX_TAGS:
            raise ValueError(f'At most {MAX_TAGS} tags are allowed')
        for tag in v:
            if not 1 <= len(tag) <= MAX_TAG_LENGTH:
                raise ValueError(f'Tags must be between 1 and {MAX_TAG_LENGTH} characters')
        return v

    @field_validator('metadata')
    @classmethod
    def validate_metadata(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        if len(v) > MAX_METADATA_KEYS:
            raise ValueError(f'Metadata may contain at most {MAX_METADATA_KEYS} keys')
        return v


class UnsubscribeTokenRequest(BaseModel):
    """Unsubscribe with the token from the email footer"""
    token: str = Field(..., pattern=r'^[a-f0-9]{64}$', description="64-character unsubscribe token")
    reason: Optional[UnsubscribeReason] = None
    feedback: Optional[str] = Field(None, max_length=1000)


class UnsubscribeEmailRequest(BaseModel):
    """Unsubscribe by address; confirm must be explicitly true"""
    email: str = Field(..., max_length=254)
    confirm: Literal[True]


class StatsQuery(BaseModel):
    """Query parameters for the stats endpoint"""
    period: Literal["day", "week", "month", "year"] = "month"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    group_by: Optional[Literal["day", "week", "month", "source", "tag"]] = None
    source: Optional[str] = Field(None, max_length=50)
    tag: Optional[str] = Field(None, max_length=50)
    include_summary: bool = True
    include_period_data: bool = False
    include_tags: bool = False
    limit: int = Field(100, ge=1, le=1000)
