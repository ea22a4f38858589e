from __future__ import annotations

import configparser
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from ecm.common.models import CaSettings, Job, TargetSettings
from ecm.common.validity import ValidityError, parse_validity_strict
from ecm.target.shell import referenced_variables

log = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = "/etc/embed-cert-manager.d"


@dataclass(frozen=True)
class Settings:
    config_dir: Path
    deadline_seconds: float
    http_timeout_seconds: float
    ssh_timeout_seconds: float
    known_hosts: Path | None

    @staticmethod
    def load() -> "Settings":
        config_dir = Path(os.getenv("ECM_CONFIG_DIR", DEFAULT_CONFIG_DIR))
        deadline_seconds = float(os.getenv("ECM_DEADLINE_SECONDS", "120"))
        http_timeout_seconds = float(os.getenv("ECM_HTTP_TIMEOUT_SECONDS", "30"))
        ssh_timeout_seconds = float(os.getenv("ECM_SSH_TIMEOUT_SECONDS", "60"))
        known_hosts = os.getenv("ECM_SSH_KNOWN_HOSTS")
        return Settings(
            config_dir=config_dir,
            deadline_seconds=deadline_seconds,
            http_timeout_seconds=http_timeout_seconds,
            ssh_timeout_seconds=ssh_timeout_seconds,
            known_hosts=Path(known_hosts) if known_hosts else None,
        )


def _norm(key: str) -> str:
    # "clientCert", "client_cert" and "ClientCert" are the same key
    return key.replace("_", "").replace("-", "").lower()


def _section(parser: configparser.ConfigParser, name: str) -> dict[str, str]:
    for s in parser.sections():
        if s.strip().lower() == name:
            return {_norm(k): v.strip() for k, v in parser.items(s)}
    return {}


def _opt(values: dict[str, str], key: str, default: str | None = None) -> str | None:
    v = values.get(_norm(key))
    return v if v else default


def job_files(jobs_dir: Path) -> list[Path] | None:
    """*.conf files in `jobs_dir` (not recursive). None if unreadable or empty."""
    try:
        entries = sorted(jobs_dir.iterdir())
    except OSError as e:
        log.error("read dir %s: %s", jobs_dir, e)
        return None
    files = [p for p in entries if p.is_file() and p.name.lower().endswith(".conf")]
    for p in files:
        log.info("adding .conf file to queue: %s", p)
    if not files:
        log.error("no .conf files found in %s", jobs_dir)
        return None
    return files


def load_job_file(path: Path) -> Job | None:
    parser = configparser.ConfigParser(interpolation=None, strict=False)
    try:
        parser.read(path, encoding="utf-8")
    except (configparser.Error, OSError, UnicodeDecodeError) as e:
        log.error("parse ini %s: %s", path, e)
        return None

    job_sec = _section(parser, "job")
    name = (_opt(job_sec, "host") or "").strip()
    if not name:
        name = path.stem
        log.warning("<%s> has no 'host' parameter in '[job]' section, assuming <%s>", path, name)

    raw_enabled = (_opt(job_sec, "enabled") or "").strip().lower()
    if raw_enabled not in configparser.ConfigParser.BOOLEAN_STATES:
        log.error("job <%s>: invalid boolean %r for 'enabled', job disabled", name, raw_enabled)
        return None
    if not configparser.ConfigParser.BOOLEAN_STATES[raw_enabled]:
        log.info("job <%s> not enabled - skipping", name)
        return None

    ca_sec = _section(parser, "ca")
    tgt_sec = _section(parser, "target")
    try:
        ca = CaSettings(
            host=_opt(ca_sec, "host"),
            ejbca_api_url=_opt(ca_sec, "ejbca_api_url", ""),
            client_cert=_opt(ca_sec, "client_cert"),
            client_key=_opt(ca_sec, "client_key"),
            server_cert_chain=_opt(ca_sec, "server_cert_chain"),
            password=_opt(ca_sec, "password", ""),
            ca_cert=_opt(ca_sec, "ca_cert"),
        )
        target = TargetSettings(
            ssh_port=_opt(tgt_sec, "ssh_port", "22"),
            ssh_user=_opt(tgt_sec, "ssh_user", "root"),
            ssh_key=_opt(tgt_sec, "ssh_key"),
            csr_command=_opt(tgt_sec, "csr_command"),
            set_cert_command=_opt(tgt_sec, "set_cert_command"),
            change_before_raw=_opt(tgt_sec, "change_before", "14d"),
            change_after_raw=_opt(tgt_sec, "change_after", "0s"),
        )
    except ValidationError as e:
        log.error("%s: %s", path, e)
        return None

    try:
        target.change_before = parse_validity_strict(target.change_before_raw)
        target.change_after = parse_validity_strict(target.change_after_raw)
    except ValidityError as e:
        log.error("job <%s>: %s, job disabled", name, e)
        return None

    try:
        referenced_variables(target.csr_command)
        referenced_variables(target.set_cert_command)
    except ValueError as e:
        log.error("job <%s>: %s, job disabled", name, e)
        return None

    if ca.ca_cert is not None:
        try:
            ca.ca_cert_pem = ca.ca_cert.read_text(encoding="utf-8")
            log.info("job <%s>: loaded CA certificate %s", name, ca.ca_cert)
        except OSError as e:
            log.warning("job <%s>: CA certificate %s not loaded (%s) - skipping", name, ca.ca_cert, e)

    return Job(name=name, enabled=True, ca=ca, target=target, source=path)


def load_jobs(jobs_dir: Path) -> list[Job] | None:
    log.info("loading *.conf files from folder: %s", jobs_dir)
    files = job_files(jobs_dir)
    if files is None:
        return None
    return [job for job in (load_job_file(p) for p in files) if job is not None]
