from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from pathlib import Path

import paramiko

log = logging.getLogger(__name__)

DEFAULT_SSH_TIMEOUT_SECONDS = 60.0


class RemoteCommandError(RuntimeError):
    pass


@dataclass(frozen=True)
class SessionResult:
    stdout: bytes
    stderr: bytes
    exit_status: int


def _get_ssh_client(known_hosts: Path | None) -> paramiko.SSHClient:
    client = paramiko.SSHClient()
    client.load_system_host_keys()
    if known_hosts is not None and known_hosts.exists():
        client.load_host_keys(str(known_hosts))
    # targets are provisioned devices whose host keys are not distributed
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())  # nosec B507
    return client


def run_ssh_command(
    *,
    host: str,
    port: int,
    user: str,
    key_path: Path,
    command: str,
    timeout: float = DEFAULT_SSH_TIMEOUT_SECONDS,
    known_hosts: Path | None = None,
) -> SessionResult:
    """
    Run `command` on the target with public key authentication and return
    its output. Connection problems and a non-zero exit status raise
    RemoteCommandError.
    """
    key_path = Path(key_path)
    log.info("connecting via SSH to %s@%s:%d (key %s)", user, host, port, key_path)
    log.debug("cmd:\n%s", command)
    if not key_path.exists():
        raise RemoteCommandError(f"ssh key not found: {key_path}")

    client = _get_ssh_client(known_hosts)
    try:
        try:
            client.connect(
                hostname=host,
                port=int(port),
                username=user,
                key_filename=str(key_path),
                timeout=timeout,
                banner_timeout=timeout,
                auth_timeout=timeout,
                allow_agent=False,
                look_for_keys=False,
            )
            _stdin, stdout, stderr = client.exec_command(command, timeout=timeout)
            out = stdout.read()
            err = stderr.read()
            status = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, socket.error) as e:
            raise RemoteCommandError(f"ssh {user}@{host}:{port}: {e}") from e
    finally:
        client.close()

    log.debug("stdout:\n%s", out.decode("utf-8", "replace"))
    if err:
        log.debug("stderr:\n%s", err.decode("utf-8", "replace"))
    if status != 0:
        raise RemoteCommandError(f"ssh {user}@{host}:{port}: command exited with status {status}")
    return SessionResult(stdout=out, stderr=err, exit_status=status)
