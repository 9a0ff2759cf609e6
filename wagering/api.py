from typing import Optional
from uuid import UUID
from fastapi import FastAPI, Header, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware

from .config import Config
from .errors import (
    AlreadySettledError, DuplicateEntryError, DuplicateUsernameError, EventFullError,
    EventNotOpenError, NotAuthorizedError, NotFoundError, OfferNotOpenError, WageringError,
)
from .logger import setup_logger
from .models import (
    CreateEventRequest, CreateMiniPoolRequest, CreateOfferRequest, EntryResponse, Event,
    EventDetail, EventResponse, EventStatus, JoinEventRequest, JoinMiniPoolRequest,
    LedgerHistoryResponse, MatchOfferRequest, MiniPoolDetail, MiniPoolEntryResponse,
    MiniPoolResponse, OfferResponse, OfferStatus, P2POffer, RegisterUserRequest,
    SettleEventRequest, SettlementReport, UserAccount, UserBalance,
)
from .service import WageringService

logger = setup_logger(__name__)

Config.validate()

app = FastAPI(
    title="Prediction Pool API",
    description="Escrow and settlement core for pools, mini-pools and peer-to-peer wagers",
    version="1.0.0",
    root_path=Config.API_ROOT_PATH,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

wagering_service = WageringService()

ERROR_STATUS = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    NotAuthorizedError: status.HTTP_403_FORBIDDEN,
    AlreadySettledError: status.HTTP_409_CONFLICT,
    DuplicateEntryError: status.HTTP_409_CONFLICT,
    DuplicateUsernameError: status.HTTP_409_CONFLICT,
    EventFullError: status.HTTP_409_CONFLICT,
    EventNotOpenError: status.HTTP_409_CONFLICT,
    OfferNotOpenError: status.HTTP_409_CONFLICT,
}


def _http_error(e: WageringError) -> HTTPException:
    status_code = ERROR_STATUS.get(type(e), status.HTTP_400_BAD_REQUEST)
    logger.debug(f"Rejected with {e.code}: {e}")
    return HTTPException(status_code=status_code, detail={"code": e.code, "message": str(e)})


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "prediction-pools"}


# Users

@app.post("/users", response_model=UserAccount, status_code=status.HTTP_201_CREATED, tags=["Users"])
def register_user(request: RegisterUserRequest) -> UserAccount:
    try:
        return wagering_service.register_user(request.username)
    except WageringError as e:
        raise _http_error(e)


@app.get("/users/{user_id}/balance", response_model=UserBalance, tags=["Users"])
def get_user_balance(user_id: UUID) -> UserBalance:
    try:
        return wagering_service.get_balance(user_id)
    except WageringError as e:
        raise _http_error(e)


@app.get("/users/{user_id}/ledger", response_model=LedgerHistoryResponse, tags=["Users"])
def get_user_ledger(user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
    try:
        return wagering_service.get_ledger_history(user_id, limit, offset)
    except WageringError as e:
        raise _http_error(e)


# Events

@app.post("/events", response_model=EventResponse, status_code=status.HTTP_201_CREATED, tags=["Events"])
def create_event(request: CreateEventRequest, x_user_id: UUID = Header(...)) -> EventResponse:
    try:
        return wagering_service.create_event(x_user_id, request)
    except WageringError as e:
        raise _http_error(e)


@app.get("/events", response_model=list[Event], tags=["Events"])
def list_events(event_status: Optional[EventStatus] = Query(None, alias="status")) -> list[Event]:
    return wagering_service.list_events(event_status)


@app.get("/events/{event_id}", response_model=EventDetail, tags=["Events"])
def get_event(event_id: UUID) -> EventDetail:
    try:
        return wagering_service.get_event_detail(event_id)
    except WageringError as e:
        raise _http_error(e)


@app.post("/events/{event_id}/entries", response_model=EntryResponse, status_code=status.HTTP_201_CREATED, tags=["Events"])
def join_event(event_id: UUID, request: JoinEventRequest, x_user_id: UUID = Header(...)) -> EntryResponse:
    try:
        return wagering_service.join_event(x_user_id, event_id, request)
    except WageringError as e:
        raise _http_error(e)


@app.post("/events/{event_id}/lock", response_model=EventResponse, tags=["Events"])
def lock_event(event_id: UUID, x_user_id: UUID = Header(...)) -> EventResponse:
    try:
        return wagering_service.lock_event(x_user_id, event_id)
    except WageringError as e:
        raise _http_error(e)


@app.post("/events/{event_id}/settle", response_model=SettlementReport, tags=["Events"])
def settle_event(event_id: UUID, request: SettleEventRequest, x_user_id: UUID = Header(...)) -> SettlementReport:
    try:
        return wagering_service.settle_event(x_user_id, event_id, request)
    except WageringError as e:
        raise _http_error(e)


# Mini-pools

@app.post("/events/{event_id}/mini-pools", response_model=MiniPoolResponse, status_code=status.HTTP_201_CREATED, tags=["Mini-pools"])
def create_mini_pool(event_id: UUID, request: CreateMiniPoolRequest, x_user_id: UUID = Header(...)) -> MiniPoolResponse:
    try:
        return wagering_service.create_mini_pool(x_user_id, event_id, request)
    except WageringError as e:
        raise _http_error(e)


@app.get("/mini-pools/{mini_pool_id}", response_model=MiniPoolDetail, tags=["Mini-pools"])
def get_mini_pool(mini_pool_id: UUID) -> MiniPoolDetail:
    try:
        return wagering_service.get_mini_pool_detail(mini_pool_id)
    except WageringError as e:
        raise _http_error(e)


@app.post("/mini-pools/{mini_pool_id}/entries", response_model=MiniPoolEntryResponse, status_code=status.HTTP_201_CREATED, tags=["Mini-pools"])
def join_mini_pool(mini_pool_id: UUID, request: JoinMiniPoolRequest, x_user_id: UUID = Header(...)) -> MiniPoolEntryResponse:
    try:
        return wagering_service.join_mini_pool(x_user_id, mini_pool_id, request)
    except WageringError as e:
        raise _http_error(e)


# P2P offers

@app.get("/events/{event_id}/offers", response_model=list[P2POffer], tags=["Offers"])
def list_offers(
    event_id: UUID,
    offer_status: Optional[OfferStatus] = Query(OfferStatus.OPEN, alias="status"),
    side: Optional[str] = None,
) -> list[P2POffer]:
    try:
        return wagering_service.list_offers(event_id, offer_status, side)
    except WageringError as e:
        raise _http_error(e)


@app.post("/events/{event_id}/offers", response_model=OfferResponse, status_code=status.HTTP_201_CREATED, tags=["Offers"])
def create_offer(event_id: UUID, request: CreateOfferRequest, x_user_id: UUID = Header(...)) -> OfferResponse:
    try:
        return wagering_service.create_offer(x_user_id, event_id, request)
    except WageringError as e:
        raise _http_error(e)


@app.get("/offers/{offer_id}", response_model=P2POffer, tags=["Offers"])
def get_offer(offer_id: UUID) -> P2POffer:
    try:
        return wagering_service.get_offer(offer_id)
    except WageringError as e:
        raise _http_error(e)


@app.post("/offers/{offer_id}/match", response_model=OfferResponse, tags=["Offers"])
def match_offer(offer_id: UUID, request: MatchOfferRequest, x_user_id: UUID = Header(...)) -> OfferResponse:
    try:
        return wagering_service.match_offer(x_user_id, offer_id, request)
    except WageringError as e:
        raise _http_error(e)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
