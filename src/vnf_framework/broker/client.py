"""Broker client: the single path from the engine to an appliance."""
import asyncio
import logging
import time
from typing import Iterable, Mapping, Optional, Union

from ..appliance.models import Appliance, BrokerType, ConnectivityResult
from ..config.settings import EngineSettings
from ..dictionary.schema import DEFAULT_PORTS
from ..errors import CommError
from ..models import Request, Response
from ..utils.logging_config import timed_section
from ..utils.retry import backoff_retrying
from .base import Transport, TransportResult, tcp_probe
from .http import HttpTransport
from .ssh import SshTransport
from .tokens import TokenIssuer

logger = logging.getLogger(__name__)

TARGET_HEADER = "X-VNF-Target"
TOKEN_HEADER = "X-VNF-Token"
APPLIANCE_HEADER = "X-VNF-Appliance"


def split_host_port(address: str, default_port: int) -> tuple[str, int]:
    """Split ``host[:port]``; bracketed IPv6 literals keep their brackets.

    >>> split_host_port("broker.local:8443", 443)
    ('broker.local', 8443)
    >>> split_host_port("[2001:db8::1]", 22)
    ('[2001:db8::1]', 22)
    """
    host, sep, port = address.rpartition(":")
    if sep and port.isdigit() and host and (":" not in host or host.endswith("]")):
        return host, int(port)
    return address, default_port


class BrokerClient:
    """Sends built requests to appliances with scope checks and retries.

    Args:
        settings: Engine settings (timeouts, backoff, broker address)
        transports: Transports keyed by protocol, or an iterable of
            transports that declare their ``protocols``. Defaults to
            HTTP(S) over httpx and SSH over paramiko.
        token_issuer: When set, every token must pass ``validate_token``
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        transports: Union[Mapping[str, Transport], Iterable[Transport], None] = None,
        token_issuer: Optional[TokenIssuer] = None,
    ):
        self.settings = settings or EngineSettings()
        self.token_issuer = token_issuer

        if transports is None:
            transports = [HttpTransport(verify_ssl=self.settings.verify_ssl), SshTransport()]
        if isinstance(transports, Mapping):
            self._transports = {k.lower(): v for k, v in transports.items()}
        else:
            self._transports = {}
            for transport in transports:
                for protocol in transport.protocols:
                    self._transports[protocol] = transport

    def get_transport(self, protocol: str) -> Transport:
        transport = self._transports.get(protocol.lower())
        if transport is None:
            raise CommError(f"No transport for protocol '{protocol}'", retriable=False)
        return transport

    def _check_scope(self, appliance: Appliance, request: Request) -> None:
        """Refuse requests whose token does not authorize this target."""
        token = request.token
        if token is None:
            raise CommError(
                f"Request {request.operation_scope} to {appliance.id} carries no token",
                retriable=False,
            )
        if request.target_address != appliance.management_ip:
            raise CommError(
                f"Request target {request.target_address} is not the management "
                f"address of {appliance.id}",
                retriable=False,
            )
        if token.target_address != request.target_address:
            raise CommError(
                f"Token scoped for {token.target_address}, request targets "
                f"{request.target_address}",
                retriable=False,
            )
        if token.is_expired:
            raise CommError(f"Token for {request.operation_scope} expired", retriable=False)
        if self.token_issuer is not None and not self.token_issuer.validate_token(token.value):
            raise CommError(f"Token for {request.operation_scope} rejected by issuer", retriable=False)

    def _hop(self, appliance: Appliance, request: Request) -> tuple[str, int, dict[str, str]]:
        """Address and port to connect to, and the headers to send there."""
        headers = dict(request.headers)
        if appliance.broker_type == BrokerType.DIRECT:
            return request.target_address, request.port, headers

        if not self.settings.broker_address:
            logger.debug(
                f"No broker address configured; sending {appliance.id} "
                f"({appliance.broker_type.value}) requests directly"
            )
            return request.target_address, request.port, headers

        address, port = split_host_port(self.settings.broker_address, request.port)
        headers[TARGET_HEADER] = request.target_address
        headers[APPLIANCE_HEADER] = appliance.id
        if request.token is not None:
            headers[TOKEN_HEADER] = request.token.value
        return address, port, headers

    def _to_response(self, appliance: Appliance, request: Request, result: TransportResult) -> Response:
        status = result.status
        if request.protocol == "ssh":
            return Response(
                status_code=status,
                body=result.body,
                headers=result.headers,
                duration_ms=result.duration_ms,
                success=status == 0,
                error_message=None if status == 0 else f"Command exited with status {status}",
            )

        if status >= 500:
            raise CommError(
                f"HTTP {status} from {appliance.id} for {request.operation_scope}",
                retriable=True,
                status_code=status,
            )
        if status >= 400:
            snippet = result.body[: self.settings.error_body_limit]
            raise CommError(
                f"HTTP {status} from {appliance.id} for {request.operation_scope}: {snippet}",
                retriable=False,
                status_code=status,
            )
        return Response(
            status_code=status,
            body=result.body,
            headers=result.headers,
            duration_ms=result.duration_ms,
            success=True,
        )

    async def send(self, appliance: Appliance, request: Request) -> Response:
        """One attempt. Raises CommError with ``retriable`` classified."""
        self._check_scope(appliance, request)
        transport = self.get_transport(request.protocol)
        address, port, headers = self._hop(appliance, request)

        logger.debug(
            f"Sending {request.describe()} for {appliance.id} via "
            f"{appliance.broker_type.value}"
        )
        async with timed_section("broker.send", appliance.id, op=request.operation_scope):
            try:
                result = await asyncio.wait_for(
                    transport.send(
                        address=address,
                        protocol=request.protocol,
                        method=request.method,
                        path=request.path,
                        headers=headers,
                        body=request.body,
                        timeout=request.timeout,
                        port=port,
                        credentials=request.credentials,
                    ),
                    timeout=request.timeout,
                )
            except asyncio.TimeoutError as e:
                raise CommError(
                    f"Timeout after {request.timeout}s sending {request.operation_scope} "
                    f"to {appliance.id}",
                    retriable=True,
                ) from e
            except (ConnectionError, OSError) as e:
                raise CommError(
                    f"Connection to {appliance.id} failed: {e}", retriable=True
                ) from e

        return self._to_response(appliance, request, result)

    async def send_with_retry(
        self,
        appliance: Appliance,
        request: Request,
        max_retries: Optional[int] = None,
    ) -> Response:
        """Send with exponential backoff; at most ``max_retries + 1`` attempts.

        Non-retriable failures are raised on the spot. On exhaustion the last
        CommError is raised with ``attempts`` set.
        """
        if max_retries is None:
            max_retries = self.settings.max_retries

        attempts = 0
        retrying = backoff_retrying(
            max_attempts=max_retries + 1,
            initial=self.settings.backoff_initial,
            maximum=self.settings.backoff_max,
            jitter=self.settings.backoff_jitter,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts += 1
                    response = await self.send(appliance, request)
        except CommError as e:
            e.attempts = attempts
            logger.warning(f"{request.operation_scope} to {appliance.id} failed: {e}")
            raise

        if attempts > 1:
            logger.info(f"{request.operation_scope} to {appliance.id} succeeded on attempt {attempts}")
        return response

    def _probe_target(self, appliance: Appliance, protocol: str, port: Optional[int]) -> tuple[str, int]:
        protocol = protocol.lower()
        port = port or DEFAULT_PORTS.get(protocol, 443)
        if appliance.broker_type != BrokerType.DIRECT and self.settings.broker_address:
            return split_host_port(self.settings.broker_address, port)
        return appliance.management_ip, port

    async def is_reachable(
        self,
        appliance: Appliance,
        protocol: str = "https",
        port: Optional[int] = None,
    ) -> bool:
        """Lightweight reachability probe. Never raises."""
        result = await self.test_connectivity(appliance, protocol, port)
        return result.reachable

    async def test_connectivity(
        self,
        appliance: Appliance,
        protocol: str = "https",
        port: Optional[int] = None,
    ) -> ConnectivityResult:
        """Probe the appliance and report latency."""
        address, port = self._probe_target(appliance, protocol, port)
        transport = self._transports.get(protocol.lower())

        start = time.perf_counter()
        try:
            if transport is not None:
                reachable = await transport.probe(address, port, self.settings.probe_timeout)
            else:
                reachable = await tcp_probe(address, port, self.settings.probe_timeout)
        except Exception as e:
            logger.warning(f"Probe of {appliance.id} at {address}:{port} raised: {e}")
            reachable = False
        latency = (time.perf_counter() - start) * 1000

        message = "reachable" if reachable else f"no answer from {address}:{port}"
        logger.debug(f"Probe {appliance.id} ({address}:{port}): {message}")
        return ConnectivityResult(
            reachable=reachable,
            latency_ms=latency,
            method=f"tcp:{port}",
            message=message,
        )

    async def close(self) -> None:
        """Close every transport."""
        for transport in set(self._transports.values()):
            await transport.close()
