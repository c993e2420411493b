"""
Remote-execution transport.

The audit core only ever calls ``invoke(target, credential, payload,
timeout)`` and treats the result as opaque. Payloads are small dicts with an
``action`` key:

    {"action": "command", "argv": [...]}          -> {"rc", "stdout", "stderr"}
    {"action": "measure", "metric": "memory"}     -> metric dict
    {"action": "minimal_probe"}                   -> hostname/os/cpu/drives
    {"action": "service_status"}                  -> {"available": bool, ...}
    {"action": "auth_probe"}                      -> {"authenticated": bool}

Failures are raised as TransportError with one of the kinds unreachable,
auth_failed, timeout, remote_error.
"""
from __future__ import annotations

import abc
import logging
from typing import Any

import psutil

from fleet_auditor.core.errors import TransportError
from fleet_auditor.core.models import Target
from fleet_auditor.helpers.unix import RC_TIMEOUT, run_cmd
from fleet_auditor.shared import hardware, system

logger = logging.getLogger(__name__)


class Transport(abc.ABC):

    @abc.abstractmethod
    def invoke(self, target: Target, credential: Any, payload: dict[str, Any], timeout: float) -> Any:
        """Execute payload on target; raise TransportError on failure."""


class LocalTransport(Transport):
    """
    Executes payloads on the machine running the audit.

    Remote targets raise ``unreachable``: reaching them needs a real remote
    transport (WinRM, SSH, ...) supplied by the caller.
    """

    def invoke(self, target: Target, credential: Any, payload: dict[str, Any], timeout: float) -> Any:
        if not target.is_local:
            raise TransportError("unreachable", f"no remote transport configured for {target.address}")

        action = payload.get("action")
        logger.debug("local %s on %s", action, target.address)
        if action == "command":
            return self._command(payload["argv"], timeout)
        if action == "measure":
            return self._measure(payload.get("metric", ""))
        if action == "minimal_probe":
            return system.get_minimal_probe()
        if action == "service_status":
            # Local execution needs no management listener.
            return {"available": True, "detail": "local execution"}
        if action == "auth_probe":
            return {"authenticated": True}
        raise TransportError("remote_error", f"unsupported action {action!r}")

    def _command(self, argv: list[str], timeout: float) -> dict[str, Any]:
        rc, stdout, stderr = run_cmd(list(argv), timeout_s=timeout)
        if rc == RC_TIMEOUT:
            raise TransportError("timeout", f"{argv[0]} exceeded {timeout}s")
        return {"rc": rc, "stdout": stdout, "stderr": stderr}

    def _measure(self, metric: str) -> dict[str, Any]:
        measure = hardware.MEASUREMENTS.get(metric)
        if measure is None:
            raise TransportError("remote_error", f"unknown metric {metric!r}")
        try:
            return measure()
        except (OSError, RuntimeError, psutil.Error) as e:
            raise TransportError("remote_error", f"measuring {metric} failed: {e}") from e
