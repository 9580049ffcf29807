"""FastAPI boundary over the giveaway engine.

Identity resolution and CSRF verification are collaborators injected into
:func:`create_app`; the engine itself never inspects requests.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Iterator, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, WebSocket
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from .. import workflows
from ..config import Settings, configure_logging
from ..eligibility import is_open
from ..errors import GiveawayError, NotFound, ValidationError
from ..identity import Identity
from ..ledger import EntryLedger
from ..locks import GiveawayLocks
from ..models import Giveaway
from ..notifier import (
    CountNotifier,
    FanoutPublisher,
    HttpRelayPublisher,
    InMemoryHub,
    Publisher,
    giveaway_room,
)
from .realtime import stream_room
from .schemas import (
    CountOut,
    CreateEntryIn,
    CreateEntryOut,
    GiveawayInput,
    RegisteredOut,
    RerollIn,
)

logger = logging.getLogger(__name__)

IdentityResolver = Callable[[Request], Optional[int]]
CsrfVerifier = Callable[[Optional[str], Optional[int]], bool]


class _Forbidden(GiveawayError):
    status_code = 403
    code = "forbidden"


class _Unauthorized(GiveawayError):
    status_code = 401
    code = "unauthorized"


def request_state_user(request: Request) -> Optional[int]:
    """Default resolver: the user id an upstream auth middleware stored."""
    return getattr(request.state, "user_id", None)


def get_session(request: Request) -> Iterator[Session]:
    with request.app.state.session_factory() as session:
        yield session


def current_user_id(request: Request) -> Optional[int]:
    return request.app.state.identity_resolver(request)


def verify_csrf(
    request: Request,
    user_id: Optional[int] = Depends(current_user_id),
    x_csrf_token: Optional[str] = Header(default=None),
) -> None:
    verifier: Optional[CsrfVerifier] = request.app.state.csrf_verifier
    if verifier is None:
        return
    if not x_csrf_token or not verifier(x_csrf_token, user_id):
        raise _Forbidden("Invalid CSRF")


def _notifier(request: Request) -> CountNotifier:
    return request.app.state.notifier


def _locks(request: Request) -> GiveawayLocks:
    return request.app.state.locks


def _winners_payload(session: Session, giveaway_id: int) -> dict[str, Any]:
    return workflows.get_winners_with_details(session, giveaway_id)


public_router = APIRouter(prefix="/giveaways", tags=["giveaways"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])


@public_router.get("/participating")
def participating(
    user_id: Optional[int] = Depends(current_user_id),
    session: Session = Depends(get_session),
):
    if user_id is None:
        raise _Unauthorized("Unauthorized")
    participations = workflows.list_user_participations(session, user_id)
    return {
        "participating": bool(participations),
        "participations": participations,
        "requirePhotoUsageConsent": any(
            p["giveaway"]["requirePhotoUsageConsent"] for p in participations
        ),
        "requireProfilePublic": any(
            p["giveaway"]["requireProfilePublic"] for p in participations
        ),
    }


@public_router.get("/{giveaway_id}")
def get_giveaway(giveaway_id: int, session: Session = Depends(get_session)):
    giveaway = Giveaway.get(session, giveaway_id)
    if giveaway is None:
        raise NotFound("Giveaway not found")
    return {**giveaway.to_public_json(), "isOpen": is_open(giveaway)}


@public_router.get("/{giveaway_id}/count", response_model=CountOut)
def get_count(giveaway_id: int, session: Session = Depends(get_session)):
    if Giveaway.get(session, giveaway_id) is None:
        raise NotFound("Giveaway not found")
    return CountOut(count=EntryLedger(session).count(giveaway_id))


@public_router.get("/{giveaway_id}/entries/check", response_model=RegisteredOut)
def check_entry(
    giveaway_id: int,
    anonId: Optional[str] = Query(default=None),
    user_id: Optional[int] = Depends(current_user_id),
    session: Session = Depends(get_session),
):
    identity = Identity.resolve(user_id, anonId)
    return RegisteredOut(
        registered=EntryLedger(session).is_registered(giveaway_id, identity)
    )


@public_router.post(
    "/{giveaway_id}/entries",
    status_code=201,
    response_model=CreateEntryOut,
    dependencies=[Depends(verify_csrf)],
)
def create_entry(
    giveaway_id: int,
    body: CreateEntryIn,
    user_id: Optional[int] = Depends(current_user_id),
    session: Session = Depends(get_session),
    notifier: CountNotifier = Depends(_notifier),
):
    entry = workflows.join_giveaway(
        session,
        giveaway_id,
        Identity.resolve(user_id, body.anonId),
        accepted_terms=body.acceptTerms,
        confirmations=body.finalConfirmations,
        device_fingerprint=body.deviceFingerprint,
        notifier=notifier,
    )
    session.commit()
    return CreateEntryOut(ok=True, id=str(entry.id))


@public_router.get("/{giveaway_id}/winners")
def get_winners(giveaway_id: int, session: Session = Depends(get_session)):
    return _winners_payload(session, giveaway_id)


@public_router.post("/{giveaway_id}/winners", dependencies=[Depends(verify_csrf)])
def draw(
    giveaway_id: int,
    session: Session = Depends(get_session),
    locks: GiveawayLocks = Depends(_locks),
):
    workflows.draw_winners(session, giveaway_id, locks=locks)
    return _winners_payload(session, giveaway_id)


@public_router.patch("/{giveaway_id}/winners", dependencies=[Depends(verify_csrf)])
def reroll(
    giveaway_id: int,
    body: RerollIn,
    session: Session = Depends(get_session),
    locks: GiveawayLocks = Depends(_locks),
):
    workflows.reroll_winner(session, giveaway_id, body.position, locks=locks)
    return _winners_payload(session, giveaway_id)


@admin_router.post("/giveaways", status_code=201, dependencies=[Depends(verify_csrf)])
def admin_create(body: GiveawayInput, session: Session = Depends(get_session)):
    giveaway = workflows.create_giveaway(session, body.model_dump(exclude_none=True))
    session.commit()
    return giveaway.to_json()


@admin_router.patch(
    "/giveaways/{giveaway_id}", dependencies=[Depends(verify_csrf)]
)
def admin_update(
    giveaway_id: int,
    body: GiveawayInput,
    request: Request,
    session: Session = Depends(get_session),
):
    giveaway = workflows.update_giveaway(
        session, giveaway_id, body.model_dump(exclude_unset=True)
    )
    session.commit()
    request.app.state.publisher.publish(
        giveaway_room(giveaway_id),
        "status",
        {"id": str(giveaway_id), "status": giveaway.status},
    )
    return giveaway.to_json()


@admin_router.delete(
    "/giveaways/{giveaway_id}", dependencies=[Depends(verify_csrf)]
)
def admin_delete(giveaway_id: int, session: Session = Depends(get_session)):
    workflows.delete_giveaway(session, giveaway_id)
    session.commit()
    return {"success": True}


@admin_router.get("/giveaways/{giveaway_id}/entries")
def admin_entries(giveaway_id: int, session: Session = Depends(get_session)):
    if Giveaway.get(session, giveaway_id) is None:
        raise NotFound("Giveaway not found")
    return {"items": [e.to_json() for e in EntryLedger(session).list_entries(giveaway_id)]}


@admin_router.post(
    "/entries/{entry_id}/disqualify", dependencies=[Depends(verify_csrf)]
)
def admin_disqualify(
    entry_id: int,
    session: Session = Depends(get_session),
    notifier: CountNotifier = Depends(_notifier),
):
    entry = EntryLedger(session, notifier=notifier).disqualify(entry_id)
    session.commit()
    return entry.to_json()


async def giveaway_socket(websocket: WebSocket, giveaway_id: int) -> None:
    app = websocket.app

    def _count() -> int:
        with app.state.session_factory() as session:
            return EntryLedger(session).count(giveaway_id)

    await websocket.accept()
    initial = await run_in_threadpool(_count)
    await stream_room(websocket, app.state.hub, giveaway_room(giveaway_id), initial)


async def _giveaway_error_handler(request: Request, exc: GiveawayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code, content={"error": exc.message, "code": exc.code}
    )


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "code": ValidationError.code},
    )


async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Never echo internals (snapshot contents, SQL) back to the caller.
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500, content={"error": "Internal server error", "code": "internal"}
    )


def create_app(
    session_factory: sessionmaker,
    *,
    hub: Optional[InMemoryHub] = None,
    relay_url: Optional[str] = None,
    identity_resolver: IdentityResolver = request_state_user,
    csrf_verifier: Optional[CsrfVerifier] = None,
    locks: Optional[GiveawayLocks] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the HTTP/WebSocket application.

    Parameters
    ----------
    session_factory : sessionmaker
        Factory producing one SQLAlchemy session per request.
    hub : Optional[InMemoryHub], default: None
        In-process pub/sub feeding WebSocket observers; created when omitted.
    relay_url : Optional[str], default: None
        External realtime relay; defaults to ``REALTIME_RELAY_URL``.
    identity_resolver : IdentityResolver, default: request_state_user
        Maps a request to the authenticated user id, or ``None``.
    csrf_verifier : Optional[CsrfVerifier], default: None
        ``(token, user_id) -> bool`` applied to state-changing routes. When
        ``None`` no CSRF check is performed.
    locks : Optional[GiveawayLocks], default: None
        Lock registry for draws and rerolls.
    settings : Optional[Settings], default: None
        Explicit settings; read from the environment when omitted.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    hub = hub or InMemoryHub()
    relay = relay_url or settings.realtime_relay_url

    publishers: list[Publisher] = [hub]
    if relay:
        publishers.append(HttpRelayPublisher(relay))
    publisher = FanoutPublisher(*publishers)

    notifier = CountNotifier(publisher)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        notifier.shutdown(wait=False)

    app = FastAPI(title="Giveaway Engine", version="1.0.0", lifespan=lifespan)
    app.state.session_factory = session_factory
    app.state.hub = hub
    app.state.publisher = publisher
    app.state.notifier = notifier
    app.state.identity_resolver = identity_resolver
    app.state.csrf_verifier = csrf_verifier
    app.state.locks = locks or GiveawayLocks(timeout=settings.draw_lock_timeout_s)

    app.add_exception_handler(GiveawayError, _giveaway_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unexpected_error_handler)
    app.include_router(public_router)
    app.include_router(admin_router)
    app.add_api_websocket_route("/ws/giveaways/{giveaway_id}", giveaway_socket)
    return app


__all__ = ["create_app", "request_state_user"]
