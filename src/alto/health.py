"""Provider connection health check.

Runs the selected provider's minimal probe before the user commits to a
configuration. HTTP providers send one bounded request; the local kind
performs a full engine load and reports the time to readiness.
"""

import logging
import time
from dataclasses import dataclass

from alto.errors import AltoError
from alto.providers import ProviderAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionTestResult:
    ok: bool
    message: str
    latency_ms: float


class ConnectionTester:
    """Probe a provider; ``test()`` reports failures instead of raising."""

    def __init__(self, provider: ProviderAdapter):
        self.provider = provider

    async def test(self) -> ConnectionTestResult:
        start = time.monotonic()
        try:
            message = await self.provider.probe()
            ok = True
        except AltoError as e:
            message = e.message
            ok = False
        except Exception as e:  # noqa: BLE001
            message = str(e) or type(e).__name__
            ok = False
        latency_ms = (time.monotonic() - start) * 1000

        if ok:
            logger.info(f"Connection test passed for {self.provider.label} in {latency_ms:.0f}ms")
        else:
            logger.warning(f"Connection test failed for {self.provider.label}: {message}")
        return ConnectionTestResult(ok=ok, message=message, latency_ms=round(latency_ms, 1))
