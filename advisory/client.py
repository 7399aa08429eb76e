"""HTTP client for the external financial-planner (advisory) service."""

import json
import logging
import socket
import urllib.error
import urllib.request
from typing import Any

from core.models import ALLOCATION_TARGETS
from execution_engine.errors import AdvisoryError
from execution_engine.strategy import StrategyAdvice

logger = logging.getLogger(__name__)


class HttpAdvisor:
    """POSTs the plan's parameters and reads back a percentage triple."""

    def __init__(self, url: str, timeout: float = 30.0) -> None:
        if not url:
            raise AdvisoryError("Advisory URL is required.")
        self._url = url
        self._timeout = timeout

    def advise(self, amount: int, horizon: str, risk_tier: str, goal: str) -> StrategyAdvice:
        body = json.dumps(
            {
                "amount": str(amount),
                "timeHorizon": horizon,
                "riskTolerance": risk_tier,
                "goal": goal,
            }
        ).encode("utf-8")
        request = urllib.request.Request(
            self._url,
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            raise AdvisoryError(f"Advisory service returned HTTP {exc.code}.") from exc
        except (urllib.error.URLError, socket.timeout, TimeoutError) as exc:
            raise AdvisoryError(f"Advisory service unreachable: {exc}") from exc
        except Exception as exc:
            # Dropped connections and undecodable bodies are not wrapped by urllib.
            raise AdvisoryError(f"Advisory request failed: {exc!r}") from exc

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise AdvisoryError("Advisory service returned invalid JSON.") from exc

        logger.debug("Advisory response from %s: %s", self._url, data)
        return _parse_advice(data)


def _parse_advice(data: Any) -> StrategyAdvice:
    if not isinstance(data, dict):
        raise AdvisoryError("Advisory response must be a JSON object.")
    if data.get("success") is False:
        raise AdvisoryError(f"Advisory service declined: {data.get('error', 'unknown error')}")

    strategy = data.get("strategy")
    if not isinstance(strategy, dict):
        raise AdvisoryError("Advisory response is missing a strategy.")
    try:
        percentages = tuple(_percentage(strategy[target]) for target in ALLOCATION_TARGETS)
    except KeyError as exc:
        raise AdvisoryError(f"Advisory strategy is missing {exc.args[0]}.") from exc

    reasoning = data.get("reasoning")
    return StrategyAdvice(
        percentages=percentages,
        reasoning=reasoning if isinstance(reasoning, str) else "",
    )


def _percentage(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise AdvisoryError(f"Advisory percentage {value!r} is not numeric.")
    return value

