"""FastAPI surface for scheduled and on-demand plan execution."""

from __future__ import annotations

import hmac
import logging
from typing import Dict, Optional, Union

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from execution_engine.config import ConfigError, configure_logging, load_config
from execution_engine.errors import INPUT, ExecutionError
from execution_engine.services import EngineServices, build_services

logger = logging.getLogger(__name__)

app = FastAPI(title="SIP Executor", description="Recurring spend-authorization execution")

_STATE: Dict[str, Optional[EngineServices]] = {"services": None}


class PlanActionRequest(BaseModel):
    plan_id: Union[int, str]
    owner: str
    action: str
    tx_hash: Optional[str] = None


async def _handle_execution_error(request: Request, exc: ExecutionError):
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def _handle_invalid_request(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {"error": "Malformed request.", "category": INPUT, "retryable": False},
        status_code=400,
    )


async def _handle_config_error(request: Request, exc: ConfigError):
    logger.error("Engine not configured: %s", exc)
    return JSONResponse({"error": "Engine not configured."}, status_code=503)


for _exc_class, _handler in (
    (ExecutionError, _handle_execution_error),
    (RequestValidationError, _handle_invalid_request),
    (ConfigError, _handle_config_error),
):
    app.add_exception_handler(_exc_class, _handler)


@app.get("/api/cron/sip-execute")
def cron_execute_due(authorization: Optional[str] = Header(None)):
    services = _services()
    _require_cron_secret(services, authorization)
    logger.info("Running scheduled SIP execution")
    return services.scheduler.execute_due().to_dict()


@app.get("/api/cron/rebalance")
def cron_rebalance(authorization: Optional[str] = Header(None)):
    services = _services()
    _require_cron_secret(services, authorization)
    logger.info("Running scheduled strategy rebalance")
    return services.strategy.rebalance_all().to_dict()


@app.post("/api/sip/execute/{plan_id}")
def execute_plan(plan_id: str):
    record = _services().orchestrator.execute_plan(plan_id)
    return {"success": True, "record": record.to_dict()}


@app.post("/api/sip/action")
def plan_action(payload: PlanActionRequest):
    decision = _services().controller.set_plan_status(
        payload.plan_id, payload.owner, payload.action
    )
    if payload.tx_hash:
        logger.info(
            "Plan %s %s confirmed on-chain in %s",
            decision.plan_id,
            decision.action.value,
            payload.tx_hash,
        )
    return {"success": True, "plan": decision.to_dict(), "tx_hash": payload.tx_hash}


@app.get("/api/sip/status")
def plan_status(owner: str):
    return _services().controller.plan_status(owner)


def configure(services: EngineServices) -> None:
    _STATE["services"] = services


def _services() -> EngineServices:
    services = _STATE["services"]
    if services is None:
        config = load_config()
        configure_logging(config.log_level)
        services = build_services(config)
        _STATE["services"] = services
    return services


def _require_cron_secret(services: EngineServices, authorization: Optional[str]) -> None:
    secret = services.config.cron_secret
    if not secret:
        return
    expected = f"Bearer {secret}"
    if authorization is None or not hmac.compare_digest(
        authorization.encode("utf-8"), expected.encode("utf-8")
    ):
        logger.warning("Rejected cron trigger with missing or wrong credentials")
        raise HTTPException(status_code=401, detail="Unauthorized")


def _reset_state() -> None:
    _STATE["services"] = None
