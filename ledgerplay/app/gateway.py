from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from .config import EngineSettings
from .errors import EngineError, NetworkError, NoActiveSessionError, NotConnectedError, TransactionRevertedError
from .models import GameKind, SlotsLedgerStatsModel
from .ports import EventHandler, LedgerAction, LedgerEvent, LedgerSnapshot, PendingReceipt, Receipt

logger = logging.getLogger(__name__)

_REJECTED_STATUSES = {400, 409, 422}
# Event cursor meaning "only what happens from now on".
HEAD_CURSOR = "latest"


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        for key in ("reason", "detail", "message", "error"):
            if body.get(key):
                return str(body[key])
    return response.reason_phrase


class _PollingSubscription:
    def __init__(self, task: asyncio.Task[None]) -> None:
        self._task = task

    async def close(self) -> None:
        if self._task.done():
            if not self._task.cancelled() and self._task.exception() is not None:
                logger.warning("Event subscription had already stopped: %r", self._task.exception())
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class HttpLedgerGateway:
    """Relay gateway client: signs and submits actions, reads ledger state and events.

    Implements both the identity provider (account, submit, confirmation) and the
    game ledger (snapshots, hands, event subscription) over one JSON API.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        confirmation_poll_seconds: float = 1.0,
        event_poll_seconds: float = 2.0,
        account: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.confirmation_poll_seconds = max(0.0, confirmation_poll_seconds)
        self.event_poll_seconds = max(0.0, event_poll_seconds)
        self._account = account
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds),
            limits=httpx.Limits(max_connections=64, max_keepalive_connections=32),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "HttpLedgerGateway":
        return cls(
            base_url=settings.gateway_url,
            timeout_seconds=settings.gateway_timeout_seconds,
            event_poll_seconds=settings.event_poll_seconds,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def connect(self) -> str | None:
        try:
            data = await self._request("GET", "/accounts/current")
        except NotConnectedError:
            self._account = None
            return None
        account = data.get("account") if isinstance(data, dict) else None
        self._account = str(account) if account else None
        return self._account

    def current_account(self) -> str | None:
        return self._account

    async def submit(self, action: LedgerAction) -> PendingReceipt:
        if not self._account:
            raise NotConnectedError("Wallet not connected.")
        payload = {"from": self._account, **action.to_payload()}
        data = await self._request("POST", "/transactions", json=payload)
        tx_hash = data.get("txHash") if isinstance(data, dict) else None
        if not tx_hash:
            raise NetworkError("Gateway accepted the transaction without returning a hash.")
        return PendingReceipt(tx_hash=str(tx_hash))

    async def await_confirmation(self, pending: PendingReceipt) -> Receipt:
        while True:
            data = await self._request_object("GET", f"/transactions/{pending.tx_hash}")
            status = str(data.get("status", "pending")).lower()
            if status == "confirmed":
                events = tuple(LedgerEvent.model_validate(item) for item in data.get("events") or [])
                return Receipt(tx_hash=pending.tx_hash, events=events, block_number=data.get("blockNumber"))
            if status == "reverted":
                raise TransactionRevertedError(data.get("reason"), tx_hash=pending.tx_hash)
            await asyncio.sleep(self.confirmation_poll_seconds)

    async def get_session_state(self, game_kind: GameKind, session_ref: str) -> LedgerSnapshot:
        data = await self._request_object("GET", f"/games/{game_kind}/sessions/{session_ref}")
        return LedgerSnapshot.model_validate({"sessionRef": session_ref, **data, "gameKind": game_kind})

    async def get_hand(self, game_kind: GameKind, session_ref: str, account: str) -> list[str]:
        data = await self._request_object(
            "GET",
            f"/games/{game_kind}/sessions/{session_ref}/hand",
            params={"account": account},
        )
        return [str(token) for token in data.get("cards") or []]

    async def get_jackpot(self) -> float:
        data = await self._request_object("GET", "/games/slots/jackpot")
        return float(data.get("jackpot") or 0.0)

    async def get_slots_player_stats(self, account: str) -> SlotsLedgerStatsModel:
        data = await self._request_object("GET", f"/games/slots/players/{account}/stats")
        try:
            return SlotsLedgerStatsModel.model_validate({"account": account, **data})
        except ValueError as exc:
            raise NetworkError(f"Unreadable slots stats for {account}: {exc}") from exc

    async def get_claimable_winnings(self, account: str) -> float:
        data = await self._request_object("GET", f"/games/poker/players/{account}/winnings")
        return float(data.get("winnings") or 0.0)

    async def subscribe(self, game_kind: GameKind, session_ref: str, handler: EventHandler) -> _PollingSubscription:
        task = asyncio.create_task(
            self._poll_events(game_kind, session_ref, handler),
            name=f"ledger-events-{game_kind}-{session_ref}",
        )
        return _PollingSubscription(task)

    async def _poll_events(self, game_kind: GameKind, session_ref: str, handler: EventHandler) -> None:
        # Start at the ledger head; earlier rounds' events are never replayed.
        cursor = HEAD_CURSOR
        while True:
            params = {"ref": session_ref, "after": cursor}
            try:
                data = await self._request("GET", f"/games/{game_kind}/events", params=params)
            except EngineError as exc:
                logger.warning("Event poll for %s %s failed: %s", game_kind, session_ref, exc)
            else:
                if not isinstance(data, dict):
                    logger.warning("Event poll for %s %s returned %s, expected an object", game_kind, session_ref, type(data).__name__)
                else:
                    for item in data.get("events") or []:
                        if not isinstance(item, dict):
                            logger.debug("Skipping unreadable ledger event %r", item)
                            continue
                        try:
                            event = LedgerEvent.model_validate({"gameKind": game_kind, "sessionRef": session_ref, **item})
                        except ValueError as exc:
                            logger.debug("Skipping unreadable ledger event %s: %s", item, exc)
                            continue
                        await handler(event)
                    cursor = str(data.get("cursor") or cursor)
            await asyncio.sleep(self.event_poll_seconds)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

        if response.status_code in {401, 403}:
            raise NotConnectedError(_error_detail(response))
        if response.status_code == 404:
            raise NoActiveSessionError(_error_detail(response))
        if response.status_code in _REJECTED_STATUSES:
            raise TransactionRevertedError(_error_detail(response))
        if response.is_error:
            raise NetworkError(f"{method} {path} returned {response.status_code}: {_error_detail(response)}")

        try:
            return response.json()
        except ValueError as exc:
            raise NetworkError(f"{method} {path} returned malformed JSON") from exc

    async def _request_object(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        data = await self._request(method, path, **kwargs)
        if not isinstance(data, dict):
            raise NetworkError(f"{method} {path} returned {type(data).__name__}, expected an object")
        return data
