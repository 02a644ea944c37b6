"""
Pydantic schemas for the nudgebox HTTP API.

Field names follow the JSON the mobile clients already send.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class UserPayload(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=256)
    password: str = ""


class NewUserPayload(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=256)
    password: str = Field(..., min_length=1)


class NewMessagePayload(BaseModel):
    identifier_from: str = Field(..., min_length=1, max_length=256)
    password: str
    identifier_to: str = Field(..., min_length=1, max_length=256)
    data: Any = None


class SuccessResponse(BaseModel):
    success: bool = True


class UserExistsResponse(BaseModel):
    success: bool = True
    exists: bool


class FailureResponse(BaseModel):
    success: Literal[False] = False
    reason: str


class DeliveryResponse(BaseModel):
    sender_id: str
    payload: Any = None


class WellbeingRecordPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    post_code: str = Field(..., alias="postCode")
    weekly_steps: Optional[int] = Field(default=None, alias="weeklySteps", ge=0)
    wellbeing_score: Optional[float] = Field(default=None, alias="wellbeingScore")
    sputum_colour: Optional[float] = Field(default=None, alias="sputumColour")
    mrc_dyspnoea_scale: Optional[float] = Field(
        default=None, alias="mrcDyspnoeaScale"
    )
    speech_rate_test: Optional[float] = Field(default=None, alias="speechRateTest")
    test_duration: Optional[float] = Field(default=None, alias="testDuration")
    support_code: str = Field(..., alias="supportCode")
    date_sent: Optional[str] = None
    audio_url: str = Field(default="", alias="audioUrl")


class MapSummaryResponse(BaseModel):
    mapdata: str
    supcode: str


class FriendLinkResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    identifier: str
    pub_key: str = Field(..., alias="pubKey")


class UploadResponse(BaseModel):
    name: str
