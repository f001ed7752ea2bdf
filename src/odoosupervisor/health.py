"""Container health policy read by the orchestrator's health probe."""

import logging
from typing import Callable, Optional, Tuple

import requests

from .models import TRANSITIONAL_STATES, LifecycleState

logger = logging.getLogger("odoosupervisor")

HEALTHY = 0
UNHEALTHY = 1


def http_probe(url: str, timeout: float = 5.0, requests_module=requests) -> bool:
    """True when the endpoint answers with a non-error status."""
    try:
        response = requests_module.get(url, timeout=timeout, allow_redirects=True)
    except requests_module.RequestException as exc:
        logger.debug("HTTP probe of %s failed: %s", url, exc)
        return False
    try:
        return response.status_code < 400
    finally:
        response.close()


class HealthReporter:
    """Maps the lifecycle state plus live probes to a (token, exit code) pair.

    Transitional phases are always healthy so the orchestrator never kills a
    container that is still initializing or upgrading. While RUNNING, a live
    process whose HTTP endpoint is not answering yet is reported as loading.
    """

    def __init__(
        self,
        state_store,
        process_alive: Callable[[], bool],
        endpoint_alive: Callable[[], bool],
    ):
        self.state_store = state_store
        self.process_alive = process_alive
        self.endpoint_alive = endpoint_alive

    def check(self) -> Tuple[str, int]:
        state: Optional[LifecycleState] = self.state_store.get()

        if state in TRANSITIONAL_STATES:
            return state.value, HEALTHY
        if state == LifecycleState.UPGRADE_FAILED:
            return state.value, UNHEALTHY
        if state != LifecycleState.RUNNING:
            return "UNKNOWN", UNHEALTHY

        if not self.process_alive():
            return "RUNNING_NO_PROCESS", UNHEALTHY
        if self.endpoint_alive():
            return "RUNNING", HEALTHY
        return "RUNNING_LOADING", HEALTHY
