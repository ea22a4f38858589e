from __future__ import annotations

import re
import shlex
from collections.abc import Callable

from ecm.common.models import Job

_VAR_RE = re.compile(r"\$\{([^}]+)\}")

# every name a target command may reference; anything else is rejected at load time
SHELL_VARIABLES: dict[str, Callable[[Job], str]] = {
    "job_host": lambda j: j.name,
    "ca_host": lambda j: j.ca.host,
    "ca_ejbca_api_url": lambda j: j.ca.api_url,
    "ca_cacert": lambda j: j.ca.ca_cert_pem,
    "target_ssh_user": lambda j: j.target.ssh_user,
    "target_ssh_port": lambda j: str(j.target.ssh_port),
    "target_change_before": lambda j: j.target.change_before_raw,
    "target_change_after": lambda j: j.target.change_after_raw,
    "target_certificate": lambda j: j.target.certificate,
}


def referenced_variables(command: str) -> list[str]:
    """
    Names referenced as ${section_key} in `command`, deduplicated in order.
    Raises ValueError for names outside SHELL_VARIABLES.
    """
    seen: list[str] = []
    for m in _VAR_RE.finditer(command or ""):
        name = m.group(1)
        if name in seen:
            continue
        if name.lower() not in SHELL_VARIABLES:
            known = ", ".join(sorted(SHELL_VARIABLES))
            raise ValueError(f"unknown variable ${{{name}}} (known: {known})")
        seen.append(name)
    return seen


def render_command(job: Job, command: str) -> str:
    """Prefix `command` with shell assignments for the variables it uses."""
    lines = [f"{name}={shlex.quote(SHELL_VARIABLES[name.lower()](job))}" for name in referenced_variables(command)]
    return "".join(line + "\n" for line in lines) + command
