"""FastAPI web server exposing the lottery to players and automation."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from vrf_lottery.blockchain.ledger import LedgerError
from vrf_lottery.lottery.engine import Lottery
from vrf_lottery.lottery.errors import (
    IndexOutOfRange,
    InsufficientPayment,
    LotteryError,
    NotOpen,
    TransferFailed,
    TriggerNotEligible,
)
from vrf_lottery.lottery.operator import RandomnessRelay
from vrf_lottery.lottery.scheduler import UpkeepScheduler
from vrf_lottery.utils.common import normalize_address, wei_to_eth
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)

ERROR_STATUS = {
    InsufficientPayment: 400,
    NotOpen: 409,
    TriggerNotEligible: 409,
    IndexOutOfRange: 404,
    TransferFailed: 502,
}


class EnterRequest(BaseModel):
    player: str = Field(..., min_length=1)
    value: int = Field(..., ge=0, description="Payment in wei")


class PerformUpkeepRequest(BaseModel):
    perform_data: Optional[str] = Field(None, description="Opaque hex payload, ignored")


class LotteryWebServer:
    """HTTP gateway in front of a single :class:`Lottery`."""

    def __init__(
        self,
        config: Dict[str, Any],
        lottery: Lottery,
        scheduler: Optional[UpkeepScheduler] = None,
        relay: Optional[RandomnessRelay] = None,
    ) -> None:
        self.config = config
        self.lottery = lottery
        self.scheduler = scheduler
        self.relay = relay
        self._server = None

        self.app = FastAPI(
            title="VRF Lottery API",
            description="Entry, upkeep and observability endpoints for the automated lottery",
            version="1.0.0",
        )
        self._setup_middleware()
        self._setup_error_handlers()
        self._setup_routes()

    # ------------------------------------------------------------------
    # FastAPI scaffolding
    # ------------------------------------------------------------------
    def _setup_middleware(self) -> None:
        origins = self.config.get("server", {}).get("cors_origins", ["*"])
        if isinstance(origins, str):
            origins = [item.strip() for item in origins.split(",") if item.strip()]
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_error_handlers(self) -> None:
        @self.app.exception_handler(LotteryError)
        async def lottery_error_handler(request: Request, exc: LotteryError) -> JSONResponse:
            status_code = ERROR_STATUS.get(type(exc), 400)
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
            return JSONResponse(
                status_code=status_code,
                content={"detail": {"error": type(exc).__name__, "message": str(exc), **exc.details()}},
            )

        @self.app.exception_handler(LedgerError)
        async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
            logger.info("%s %s ledger failure: %s", request.method, request.url.path, exc)
            return JSONResponse(
                status_code=400,
                content={"detail": {"error": type(exc).__name__, "message": str(exc)}},
            )

    def _setup_routes(self) -> None:
        # ------------------------------------------------------------------
        # Health & status
        # ------------------------------------------------------------------
        @self.app.get("/api/health")
        def health_check() -> Dict[str, Any]:
            return {
                "status": "ok",
                "timestamp": datetime.utcnow().isoformat(),
                "components": {
                    "web": True,
                    "lottery": self.lottery.get_lottery_state().name,
                    "scheduler": self.scheduler.get_status()["status"] if self.scheduler else "disabled",
                    "relay": self.relay.get_status()["status"] if self.relay else "disabled",
                },
            }

        @self.app.get("/api/status")
        def system_status() -> Dict[str, Any]:
            return {
                "timestamp": datetime.utcnow().isoformat(),
                "lottery": self.lottery.snapshot(),
                "scheduler": self.scheduler.get_status() if self.scheduler else None,
                "relay": self.relay.get_status() if self.relay else None,
            }

        @self.app.get("/api/config")
        def get_config() -> Dict[str, Any]:
            config = self.lottery.config
            return {
                "address": self.lottery.address,
                "entrance_fee": config.entrance_fee,
                "entrance_fee_eth": str(wei_to_eth(config.entrance_fee)),
                "interval": config.interval,
                "vrf_coordinator": config.vrf_coordinator,
                "gas_lane": config.gas_lane,
                "subscription_id": config.subscription_id,
                "callback_gas_limit": config.callback_gas_limit,
                "request_confirmations": config.request_confirmations,
                "num_words": config.num_words,
            }

        # ------------------------------------------------------------------
        # Lottery state
        # ------------------------------------------------------------------
        @self.app.get("/api/lottery")
        def get_lottery() -> Dict[str, Any]:
            return self.lottery.snapshot()

        @self.app.get("/api/lottery/players/{index}")
        def get_player(index: int) -> Dict[str, Any]:
            return {"index": index, "player": self.lottery.get_player(index)}

        @self.app.post("/api/lottery/enter")
        def enter_lottery(request: EnterRequest) -> Dict[str, Any]:
            player = normalize_address(request.player)
            slot = self.lottery.enter_lottery(player, request.value)
            return {
                "status": "entered",
                "player": player,
                "slot": slot,
                "num_players": self.lottery.get_number_of_players(),
            }

        # ------------------------------------------------------------------
        # Upkeep (automation network)
        # ------------------------------------------------------------------
        @self.app.get("/api/upkeep")
        def check_upkeep() -> Dict[str, Any]:
            upkeep_needed, perform_data = self.lottery.check_upkeep(b"")
            return {"upkeep_needed": upkeep_needed, "perform_data": "0x" + perform_data.hex()}

        @self.app.post("/api/upkeep")
        def perform_upkeep(request: Optional[PerformUpkeepRequest] = None) -> Dict[str, Any]:
            payload = b""
            if request and request.perform_data:
                try:
                    payload = bytes.fromhex(request.perform_data.removeprefix("0x"))
                except ValueError:
                    raise HTTPException(status_code=422, detail="perform_data must be hex")
            request_id = self.lottery.perform_upkeep(payload)
            return {"status": "requested", "request_id": request_id}

        # ------------------------------------------------------------------
        # Notifications
        # ------------------------------------------------------------------
        @self.app.get("/api/events")
        def get_events(limit: int = 50, name: Optional[str] = None) -> Dict[str, Any]:
            limit = max(1, min(limit, 500))
            events = self.lottery.events.get_events(name=name, limit=limit)
            return {
                "events": [event.to_dict() for event in events],
                "pagination": {"limit": limit, "returned": len(events)},
            }

    # ------------------------------------------------------------------
    # Lifecycle management
    # ------------------------------------------------------------------
    async def start(self, host: str = "0.0.0.0", port: int = 6080) -> None:
        import uvicorn

        logger.info("Starting lottery web server on %s:%s", host, port)
        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=True)
        self._server = uvicorn.Server(config)
        try:
            await self._server.serve()
        finally:
            logger.info("Lottery web server stopped")

    async def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
            await asyncio.sleep(0)
