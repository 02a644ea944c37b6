"""
HTTP routes for the nudgebox API.
"""

from __future__ import annotations

import logging
import os
import re

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile
from fastapi.responses import PlainTextResponse

from nudgebox.audio import ARCHIVE_NAME, ArchiveExporter, AudioUploader
from nudgebox.credentials import CredentialStore
from nudgebox.db import DbClient, WellbeingRecord
from nudgebox.dependencies import (
    get_archive_exporter,
    get_audio_uploader,
    get_credential_store,
    get_db_client,
    get_exchange_service,
    get_map_cache,
)
from nudgebox.exchange import MESSAGES, NUDGES, Channel, ExchangeService
from nudgebox.schemas import (
    DeliveryResponse,
    FailureResponse,
    FriendLinkResponse,
    MapSummaryResponse,
    NewMessagePayload,
    NewUserPayload,
    SuccessResponse,
    UploadResponse,
    UserExistsResponse,
    UserPayload,
    WellbeingRecordPayload,
)
from nudgebox.wellbeing import MapSummaryCache, is_valid_friend_link

logger = logging.getLogger(__name__)

router = APIRouter()

FAILURE_RESPONSES = {
    400: {"model": FailureResponse},
    503: {"model": FailureResponse},
}

_AUDIO_SUFFIX = re.compile(r"^\.[A-Za-z0-9]{1,8}$")


@router.get("/", response_class=PlainTextResponse)
def index():
    return "Greetings! You may be looking for /map"


# -------------------- Identities --------------------


@router.post("/user", response_model=UserExistsResponse)
def check_user(
    payload: UserPayload,
    credentials: CredentialStore = Depends(get_credential_store),
):
    return UserExistsResponse(exists=credentials.exists(payload.identifier))


@router.post("/user/new", response_model=SuccessResponse, responses=FAILURE_RESPONSES)
def add_user(
    payload: NewUserPayload,
    credentials: CredentialStore = Depends(get_credential_store),
):
    credentials.register(payload.identifier, payload.password)
    return SuccessResponse()


# -------------------- Messages and nudges --------------------
#
# Both channels run the same exchange; clients own the payload format. Messages
# replace an undelivered message from the same sender, nudges queue up.


def _send(channel: Channel, payload: NewMessagePayload, exchange: ExchangeService):
    exchange.send(
        channel,
        payload.identifier_from,
        payload.password,
        payload.identifier_to,
        payload.data,
    )
    return SuccessResponse()


def _receive(channel: Channel, payload: UserPayload, exchange: ExchangeService):
    deliveries = exchange.receive(channel, payload.identifier, payload.password)
    return [DeliveryResponse(**d.as_dict()) for d in deliveries]


@router.post(
    "/user/message/new", response_model=SuccessResponse, responses=FAILURE_RESPONSES
)
def new_message(
    payload: NewMessagePayload,
    exchange: ExchangeService = Depends(get_exchange_service),
):
    return _send(MESSAGES, payload, exchange)


@router.post(
    "/user/message",
    response_model=list[DeliveryResponse],
    responses=FAILURE_RESPONSES,
)
def get_messages(
    payload: UserPayload,
    exchange: ExchangeService = Depends(get_exchange_service),
):
    return _receive(MESSAGES, payload, exchange)


@router.post(
    "/user/nudge/new", response_model=SuccessResponse, responses=FAILURE_RESPONSES
)
def new_nudge(
    payload: NewMessagePayload,
    exchange: ExchangeService = Depends(get_exchange_service),
):
    return _send(NUDGES, payload, exchange)


@router.post(
    "/user/nudge",
    response_model=list[DeliveryResponse],
    responses=FAILURE_RESPONSES,
)
def get_nudges(
    payload: UserPayload,
    exchange: ExchangeService = Depends(get_exchange_service),
):
    return _receive(NUDGES, payload, exchange)


@router.get("/add-friend", response_model=FriendLinkResponse)
def add_friend(
    identifier: str = Query(""),
    pub_key: str = Query("", alias="pubKey"),
):
    if not is_valid_friend_link(identifier, pub_key):
        return PlainTextResponse("That link doesn't look right.", status_code=400)
    return FriendLinkResponse(identifier=identifier, pub_key=pub_key)


# -------------------- Audio --------------------


@router.post("/upload_audio", response_model=UploadResponse)
async def upload_audio(
    audio_file: UploadFile = File(..., alias="audioFile"),
    uploader: AudioUploader = Depends(get_audio_uploader),
):
    data = await audio_file.read()
    suffix = os.path.splitext(audio_file.filename or "")[1]
    if not _AUDIO_SUFFIX.match(suffix):
        suffix = ".m4a"
    name = uploader.upload(data, suffix=suffix)
    return UploadResponse(name=name)


@router.get(
    "/download_audio",
    response_class=Response,
    responses={
        200: {"content": {"application/zip": {}}},
        400: {"model": FailureResponse},
        404: {"model": FailureResponse},
    },
)
def download_audio(
    secret: str = Query(""),
    exporter: ArchiveExporter = Depends(get_archive_exporter),
):
    result = exporter.export(secret)
    headers = {"Content-Disposition": f'attachment; filename="{ARCHIVE_NAME}"'}
    if result.skipped:
        headers["X-Skipped-Files"] = str(len(result.skipped))
    return Response(
        content=result.archive, media_type="application/zip", headers=headers
    )


# -------------------- Wellbeing --------------------


@router.post("/add-wellbeing-record", response_model=SuccessResponse)
def add_wellbeing_record(
    payload: WellbeingRecordPayload,
    db: DbClient = Depends(get_db_client),
):
    db.insert_wellbeing_record(WellbeingRecord(**payload.model_dump()))
    return SuccessResponse()


@router.get("/map", response_model=MapSummaryResponse)
def map_summary(cache: MapSummaryCache = Depends(get_map_cache)):
    return MapSummaryResponse(**cache.get().as_dict())
