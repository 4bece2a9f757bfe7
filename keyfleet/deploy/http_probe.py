"""HTTP readiness probe against each instance's `/health` endpoint."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Final

import httpx

from .errors import InstanceRuntimeError
from .interfaces import InstanceHealthProbe, InstanceProbeResult

logger = logging.getLogger(__name__)


class HttpInstanceHealthProbe(InstanceHealthProbe):
    """Probe that treats HTTP 200 from `/health` as the only ready signal."""

    _USER_AGENT: Final[str] = "keyfleet-deploy/1.0 (Python/httpx)"

    def __init__(
        self,
        address_resolver: Callable[[str], Awaitable[str | None]],
        port: int = 3000,
        path: str = "/health",
        request_timeout_seconds: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the HTTP probe.

        Args:
            address_resolver: Coroutine mapping an instance id to a reachable host.
            port: Port the service listens on inside the instance.
            path: Health endpoint path.
            request_timeout_seconds: Timeout of one probe request.
            transport: Optional httpx transport, used by tests.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when config values are invalid.
        """

        if address_resolver is None:
            raise ValueError("address_resolver must not be None")
        if port < 1 or port > 65535:
            raise ValueError("port must be within 1..65535")
        if not path.startswith("/"):
            raise ValueError("path must start with '/'")
        if request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be > 0")

        self._address_resolver = address_resolver
        self._port = port
        self._path = path
        self._client = httpx.AsyncClient(
            timeout=request_timeout_seconds,
            headers={"User-Agent": self._USER_AGENT},
            transport=transport,
        )

    async def probe_close(self) -> None:
        await self._client.aclose()

    async def probe_check(self, instance_id: str) -> InstanceProbeResult:
        """Resolve the instance address and issue one `GET /health`.

        Args:
            instance_id: Instance to probe.

        Returns:
            InstanceProbeResult: Ready only for HTTP 200; every failure is reported as not ready.

        Raises:
            RuntimeError: This implementation does not raise runtime errors.
        """

        try:
            host = await self._address_resolver(instance_id)
        except InstanceRuntimeError as error:
            return InstanceProbeResult(instance_id=instance_id, ready=False, detail=f"address lookup failed: {error}")
        if not host:
            return InstanceProbeResult(instance_id=instance_id, ready=False, detail="address unavailable")

        url = f"http://{host}:{self._port}{self._path}"
        try:
            response = await self._client.get(url)
        except httpx.TimeoutException:
            return InstanceProbeResult(instance_id=instance_id, ready=False, detail="probe timed out")
        except httpx.TransportError as error:
            return InstanceProbeResult(
                instance_id=instance_id,
                ready=False,
                detail=f"unreachable: {type(error).__name__}",
            )

        reported_status = self._probe_reported_status(response)
        return InstanceProbeResult(
            instance_id=instance_id,
            ready=response.status_code == httpx.codes.OK,
            status_code=response.status_code,
            detail=reported_status,
        )

    def _probe_reported_status(self, response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return ""
        if isinstance(payload, dict):
            return str(payload.get("status", ""))
        return ""
