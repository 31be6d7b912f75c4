"""Probe executor — runs one HTTP check and classifies it into an Observation."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from types import TracebackType

import httpx
import structlog

from pulsewatch.core.ids import ObservationIdGenerator
from pulsewatch.core.types import Observation, PulseState, TargetConfiguration
from pulsewatch.probes.evaluators import EVALUATORS, Verdict
from pulsewatch.probes.exceptions import ProbeError, ProbeNetworkFailure, ProbeTimeout

logger = structlog.stdlib.get_logger()

CONNECTION_FAILED = "connection failed"


class ProbeExecutor:
    """Executes probes for any :class:`CheckKind`.

    Never raises for probe-level failures: timeouts, network errors,
    comparison mismatches and malformed payloads all come back as
    ``Unhealthy`` observations with ``error`` populated. Only cancellation
    propagates.

    Usage::

        async with ProbeExecutor() as executor:
            deadline = asyncio.get_running_loop().time() + config.timeout
            observation = await executor.execute(config, deadline)
    """

    def __init__(
        self,
        id_generator: ObservationIdGenerator | None = None,
        clock: Callable[[], float] = time.time,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._ids = id_generator or ObservationIdGenerator(clock)
        self._clock = clock
        self._transport = transport
        # One client per TLS mode; verification is a client-level setting in httpx.
        self._clients: dict[bool, httpx.AsyncClient] = {}

    def _client(self, ignore_tls_errors: bool) -> httpx.AsyncClient:
        client = self._clients.get(ignore_tls_errors)
        if client is None or client.is_closed:
            client = httpx.AsyncClient(
                verify=not ignore_tls_errors,
                transport=self._transport,
                follow_redirects=True,
            )
            self._clients[ignore_tls_errors] = client
        return client

    async def execute(self, config: TargetConfiguration, deadline: float) -> Observation:
        """Probe *config* and return the classified observation.

        Args:
            config: Target to probe.
            deadline: Absolute event-loop time (``loop.time()``) by which the
                probe must complete.
        """
        loop = asyncio.get_running_loop()
        started = time.perf_counter()
        try:
            verdict = await self._check(config, deadline, loop)
        except (ProbeTimeout, ProbeNetworkFailure) as exc:
            logger.warning(
                "probe_transport_failure",
                target_id=config.id,
                reason=exc.message,
                cause=str(exc.__cause__ or ""),
            )
            verdict = Verdict(PulseState.UNHEALTHY, exc.message, exc.detail)
        except ProbeError as exc:
            verdict = Verdict(PulseState.UNHEALTHY, exc.message, exc.detail or exc.message)
        except Exception as exc:
            logger.exception("probe_unexpected_error", target_id=config.id)
            verdict = Verdict(
                PulseState.UNHEALTHY,
                "Pulse check failed due to exception",
                str(exc) or type(exc).__name__,
            )

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        verdict = apply_degradation(config, verdict, elapsed_ms)

        observation = Observation(
            id=self._ids.next_id(),
            target_id=config.id,
            elapsed_ms=elapsed_ms,
            state=verdict.state,
            message=verdict.message,
            error=verdict.error,
            created_at=round(self._clock(), 3),
        )
        logger.debug(
            "probe_completed",
            target_id=config.id,
            state=observation.state,
            elapsed_ms=elapsed_ms,
        )
        return observation

    async def _check(
        self,
        config: TargetConfiguration,
        deadline: float,
        loop: asyncio.AbstractEventLoop,
    ) -> Verdict:
        try:
            async with asyncio.timeout_at(deadline):
                remaining = max(deadline - loop.time(), 0.001)
                response = await self._client(config.ignore_tls_errors).get(
                    config.location,
                    headers=config.headers,
                    timeout=httpx.Timeout(remaining),
                )
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise ProbeTimeout(
                "Pulse check timed out",
                f"Pulse check exceeded its {config.timeout:g}s timeout",
            ) from exc
        except httpx.ConnectError as exc:
            raise ProbeNetworkFailure(
                "Pulse check failed due to network error", CONNECTION_FAILED
            ) from exc
        except httpx.HTTPError as exc:
            raise ProbeNetworkFailure(
                "Pulse check failed due to http request exception",
                f"request failed: {exc}",
            ) from exc

        return EVALUATORS[config.kind](config, response)

    async def close(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()

    async def __aenter__(self) -> ProbeExecutor:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()


def apply_degradation(config: TargetConfiguration, verdict: Verdict, elapsed_ms: int) -> Verdict:
    """Downgrade a healthy verdict that exceeded ``degradation_timeout``.

    The success message is kept; the error records how slow the probe was.
    """
    if verdict.state != PulseState.HEALTHY or config.degradation_timeout is None:
        return verdict
    limit_ms = int(config.degradation_timeout * 1000)
    if elapsed_ms <= limit_ms:
        return verdict
    return Verdict(
        PulseState.DEGRADED,
        verdict.message,
        f"Pulse degraded because it took {elapsed_ms}ms to complete (limit {limit_ms}ms)",
    )
