from __future__ import annotations

import importlib.util
import logging
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import FastAPI, HTTPException, Query, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, ORJSONResponse
from pydantic import ValidationError

from .config import load_environment
from .errors import (
    ActionInProgressError,
    EngineError,
    NetworkError,
    NoActiveSessionError,
    NotConnectedError,
    SessionFlowError,
    TimedOutError,
    TransactionRevertedError,
)
from .models import (
    ActionRequestModel,
    ClaimableWinningsModel,
    ClaimResultModel,
    GameSessionModel,
    JackpotModel,
    JoinSessionRequestModel,
    PlayerStatsRecord,
    SlotsLedgerStatsModel,
    StartSessionRequestModel,
)
from .payout import preview_multiplier, preview_payout
from .session_manager import SessionManager

logger = logging.getLogger(__name__)

DefaultResponseClass = ORJSONResponse if importlib.util.find_spec("orjson") else JSONResponse

_STATUS_BY_ERROR: tuple[tuple[type[EngineError], int], ...] = (
    (NotConnectedError, 401),
    (NoActiveSessionError, 404),
    (ActionInProgressError, 409),
    (SessionFlowError, 409),
    (TransactionRevertedError, 422),
    (TimedOutError, 504),
    (NetworkError, 503),
)


def _status_for(exc: EngineError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def _http_error(exc: EngineError) -> HTTPException:
    detail: dict[str, Any] = {"code": exc.code, "message": str(exc), "retryable": exc.retryable}
    if isinstance(exc, TransactionRevertedError) and exc.reason:
        detail["reason"] = exc.reason
    if getattr(exc, "tx_hash", None):
        detail["txHash"] = exc.tx_hash
    return HTTPException(status_code=_status_for(exc), detail=detail)


def _ws_error_payload(request_id: str, status: int, message: str, extra: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": "error",
        "requestId": request_id,
        "status": status,
        "message": message,
    }
    if extra:
        payload.update(extra)
    return payload


def create_app(manager: SessionManager) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        try:
            account = await manager.connect()
        except EngineError as exc:
            logger.warning("Gateway unavailable at startup: %s", exc)
        else:
            logger.info("Playing as %s", account or "<not connected>")
        try:
            yield
        finally:
            await manager.aclose()

    app = FastAPI(
        title="Ledgerplay Client API",
        version="0.1.0",
        default_response_class=DefaultResponseClass,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/sessions", response_model=GameSessionModel)
    async def start_session(payload: StartSessionRequestModel) -> GameSessionModel:
        try:
            return await manager.start_session(payload)
        except EngineError as exc:
            raise _http_error(exc) from exc

    @app.post("/api/sessions/{session_id}/join", response_model=GameSessionModel)
    async def join_session(session_id: str, payload: JoinSessionRequestModel) -> GameSessionModel:
        try:
            return await manager.join_session(session_id, payload)
        except EngineError as exc:
            raise _http_error(exc) from exc

    @app.get("/api/sessions/{session_id}", response_model=GameSessionModel)
    async def get_session(session_id: str) -> GameSessionModel:
        try:
            return await manager.get_state(session_id)
        except EngineError as exc:
            raise _http_error(exc) from exc

    @app.post("/api/sessions/{session_id}/refresh", response_model=GameSessionModel)
    async def refresh_session(session_id: str) -> GameSessionModel:
        try:
            return await manager.refresh(session_id)
        except EngineError as exc:
            raise _http_error(exc) from exc

    @app.post("/api/sessions/{session_id}/actions", response_model=GameSessionModel)
    async def apply_action(session_id: str, payload: ActionRequestModel) -> GameSessionModel:
        try:
            return await manager.act(session_id, payload.action_type, payload.amount)
        except EngineError as exc:
            raise _http_error(exc) from exc

    @app.delete("/api/sessions/{session_id}", status_code=204)
    async def end_session(session_id: str) -> Response:
        try:
            await manager.end_session(session_id)
        except EngineError as exc:
            raise _http_error(exc) from exc
        return Response(status_code=204)

    @app.post("/api/poker/claim", response_model=ClaimResultModel)
    async def claim_winnings() -> ClaimResultModel:
        try:
            return ClaimResultModel(tx_hash=await manager.claim_winnings())
        except EngineError as exc:
            raise _http_error(exc) from exc

    @app.get("/api/poker/winnings", response_model=ClaimableWinningsModel)
    async def claimable_winnings(account: Optional[str] = None) -> ClaimableWinningsModel:
        try:
            return await manager.get_claimable_winnings(account)
        except EngineError as exc:
            raise _http_error(exc) from exc

    @app.get("/api/slots/jackpot", response_model=JackpotModel)
    async def slots_jackpot() -> JackpotModel:
        try:
            return await manager.get_jackpot()
        except EngineError as exc:
            raise _http_error(exc) from exc

    @app.get("/api/slots/stats", response_model=SlotsLedgerStatsModel)
    async def slots_ledger_stats(account: Optional[str] = None) -> SlotsLedgerStatsModel:
        try:
            return await manager.get_slots_ledger_stats(account)
        except EngineError as exc:
            raise _http_error(exc) from exc

    @app.get("/api/stats/{account}", response_model=PlayerStatsRecord)
    async def get_stats(account: str) -> PlayerStatsRecord:
        return manager.get_stats(account)

    @app.get("/api/slots/preview")
    async def slots_preview(reels: List[int] = Query(...), bet: float = Query(..., gt=0)) -> dict[str, float]:
        try:
            return {"multiplier": preview_multiplier(reels), "payout": preview_payout(reels, bet)}
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    @app.websocket("/api/ws/sessions/{session_id}")
    async def session_socket(websocket: WebSocket, session_id: str) -> None:
        await websocket.accept()
        try:
            initial_state = await manager.get_state(session_id)
        except EngineError as exc:
            await websocket.send_json(_ws_error_payload(request_id="", status=_status_for(exc), message=str(exc)))
            await websocket.close(code=4404)
            return

        await websocket.send_json(
            {
                "type": "session_state",
                "requestId": "",
                "payload": initial_state.model_dump(by_alias=True),
            }
        )

        while True:
            try:
                raw_message = await websocket.receive_json()
            except WebSocketDisconnect:
                return
            except ValueError:
                await websocket.send_json(_ws_error_payload(request_id="", status=400, message="Malformed websocket JSON payload."))
                continue

            if not isinstance(raw_message, dict):
                await websocket.send_json(_ws_error_payload(request_id="", status=400, message="Websocket message must be a JSON object."))
                continue

            request_id = str(raw_message.get("requestId", ""))
            op = str(raw_message.get("op", "")).strip().lower()

            try:
                if op == "ping":
                    await websocket.send_json({"type": "pong", "requestId": request_id})
                    continue

                if op in {"get_state", "refresh"}:
                    if op == "refresh":
                        state = await manager.refresh(session_id)
                    else:
                        state = await manager.get_state(session_id)
                    await websocket.send_json(
                        {
                            "type": "session_state",
                            "requestId": request_id,
                            "payload": state.model_dump(by_alias=True),
                        }
                    )
                    continue

                if op == "action":
                    action_payload = ActionRequestModel.model_validate(
                        {
                            "actionType": raw_message.get("actionType"),
                            "amount": raw_message.get("amount"),
                        }
                    )
                    state = await manager.act(session_id, action_payload.action_type, action_payload.amount)
                    await websocket.send_json(
                        {
                            "type": "session_state",
                            "requestId": request_id,
                            "payload": state.model_dump(by_alias=True),
                        }
                    )
                    continue

                await websocket.send_json(
                    _ws_error_payload(request_id=request_id, status=400, message=f"Unsupported websocket op: {op}")
                )
            except ValidationError as exc:
                await websocket.send_json(
                    _ws_error_payload(request_id=request_id, status=422, message="Invalid action payload.", extra={"detail": exc.errors(include_context=False)})
                )
            except EngineError as exc:
                await websocket.send_json(
                    _ws_error_payload(request_id=request_id, status=_status_for(exc), message=str(exc), extra={"code": exc.code})
                )

    return app


load_environment()
app = create_app(SessionManager.from_env())
