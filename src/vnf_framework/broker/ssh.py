"""SSH/CLI transport built on paramiko.

The rendered endpoint is the CLI command; a rendered body, when present, is
written to the command's stdin. The result status is the command's exit
code.
"""
import asyncio
import io
import logging
import socket
import time
from typing import Optional

import paramiko

from ..errors import CommError
from ..models import Credentials
from .base import Transport, TransportResult

logger = logging.getLogger(__name__)


def _load_private_key(key_text: str) -> paramiko.PKey:
    """Parse a private key in any format paramiko understands."""
    for key_class in (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey):
        try:
            return key_class.from_private_key(io.StringIO(key_text))
        except paramiko.SSHException:
            continue
    raise CommError("Unsupported private key format", retriable=False)


class SshTransport(Transport):
    """Runs one CLI command per request on a fresh SSH session."""

    protocols = ("ssh",)

    async def send(
        self,
        address: str,
        protocol: str,
        method: str,
        path: str,
        headers: dict[str, str],
        body: str,
        timeout: float,
        port: int,
        credentials: Optional[Credentials] = None,
    ) -> TransportResult:
        if credentials is None or not credentials.username:
            raise CommError(f"SSH to {address} requires a username", retriable=False)

        pkey = _load_private_key(credentials.private_key) if credentials.private_key else None
        loop = asyncio.get_event_loop()

        def _exec():
            ssh = paramiko.SSHClient()
            ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            try:
                ssh.connect(
                    hostname=address,
                    port=port,
                    username=credentials.username,
                    password=credentials.password,
                    pkey=pkey,
                    timeout=timeout,
                    allow_agent=False,
                    look_for_keys=False,
                )
                stdin, stdout, stderr = ssh.exec_command(path, timeout=timeout)
                if body:
                    stdin.write(body)
                    stdin.channel.shutdown_write()
                out = stdout.read().decode("utf-8", errors="ignore")
                err = stderr.read().decode("utf-8", errors="ignore")
                exit_code = stdout.channel.recv_exit_status()
                return exit_code, out, err
            finally:
                ssh.close()

        start = time.perf_counter()
        try:
            exit_code, out, err = await asyncio.wait_for(
                loop.run_in_executor(None, _exec), timeout=timeout
            )
        except (asyncio.TimeoutError, socket.timeout) as e:
            raise CommError(f"SSH timeout after {timeout}s on {address}", retriable=True) from e
        except paramiko.AuthenticationException as e:
            raise CommError(f"SSH authentication failed on {address}: {e}", retriable=False) from e
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise CommError(f"SSH connection to {address} failed: {e}", retriable=True) from e

        duration = (time.perf_counter() - start) * 1000
        if exit_code != 0:
            logger.debug(f"Command '{path}' on {address} failed (exit {exit_code}): {err.strip()}")

        return TransportResult(
            status=exit_code,
            body=f"{out}\n{err}".strip() if exit_code != 0 else out.strip(),
            duration_ms=duration,
        )
