from __future__ import annotations

import argparse
import logging
from pathlib import Path

from ecm.common.models import EnrollmentRequest, Job
from ecm.ejbca.certdata import cert_to_pem, describe
from ecm.ejbca.client import EjbcaClient
from ecm.ejbca.deadline import DeadlineManager
from ecm.ejbca.errors import EcmError, ProtocolFailure
from ecm.ejbca.transport import build_mtls_channel
from ecm.manager.config import Settings, load_jobs
from ecm.target.csr import extract_csr
from ecm.target.shell import render_command
from ecm.target.ssh import RemoteCommandError, run_ssh_command

log = logging.getLogger("ecm")


def _ssh(job: Job, settings: Settings, command: str) -> bytes:
    result = run_ssh_command(
        host=job.name,
        port=job.target.ssh_port,
        user=job.target.ssh_user,
        key_path=job.target.ssh_key,
        command=render_command(job, command),
        timeout=settings.ssh_timeout_seconds,
        known_hosts=settings.known_hosts,
    )
    return result.stdout


def run_job(job: Job, settings: Settings, *, force: bool = False) -> bool:
    """
    Check and, if due, renew the certificate of one target.
    Returns True when a new certificate was installed. Failures raise.
    """
    deadlines = DeadlineManager(settings.deadline_seconds)
    channel = build_mtls_channel(
        client_cert=job.ca.client_cert,
        client_key=job.ca.client_key,
        ca_bundle=job.ca.server_cert_chain,
        server_name=job.ca.host,
        timeout=settings.http_timeout_seconds,
    )
    try:
        channel.probe(job.ca.host, deadline=deadlines.get())
        client = EjbcaClient(channel=channel, api_url=job.ca.api_url, deadlines=deadlines)

        log.info("job <%s>: checking existing certificate", job.name)
        if not client.should_renew(job.name, change_before=job.target.change_before, change_after=job.target.change_after):
            if not force:
                log.info("job <%s>: skipping, certificate exists and is valid", job.name)
                return False
            log.info("job <%s>: certificate is valid, renewing anyway (--force)", job.name)

        log.info("job <%s>: requesting CSR from target", job.name)
        csr = extract_csr(_ssh(job, settings, job.target.csr_command))
        if csr is None:
            raise ProtocolFailure("no valid CSR in output of csr_command")

        # the CSR round trip over SSH may have eaten most of the first deadline
        deadlines.renew()
        cert = client.enroll(EnrollmentRequest(username=job.name, password=job.ca.password, csr_pem=csr))

        job.target.certificate = describe(cert) + cert_to_pem(cert).decode("ascii")
        log.info("job <%s>: installing certificate on target", job.name)
        _ssh(job, settings, job.target.set_cert_command)
        return True
    finally:
        deadlines.cancel()
        channel.close()


def main() -> int:
    ap = argparse.ArgumentParser(description="Check and renew certificates of embedded targets via EJBCA.")
    ap.add_argument("-c", "--config", default=None, help="Configuration directory holding jobs.d/*.conf")
    ap.add_argument("-f", "--force", action="store_true", help="Request a new certificate even if the current one is valid")
    ap.add_argument("-v", "--verbose", action="store_true")
    ap.add_argument("--debug", action="store_true")
    ap.add_argument("--log", default="", help="Optional log file")
    args = ap.parse_args()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if args.log:
        Path(args.log).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(args.log, encoding="utf-8"))
    level = logging.DEBUG if args.debug else logging.INFO if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s", handlers=handlers)

    settings = Settings.load()
    config_dir = Path(args.config) if args.config else settings.config_dir
    jobs = load_jobs(config_dir / "jobs.d")
    if jobs is None:
        return 1
    if not jobs:
        log.warning("no jobs to do - exiting")
        return 0

    renewed = 0
    for job in jobs:
        try:
            if run_job(job, settings, force=args.force):
                renewed += 1
        except (EcmError, RemoteCommandError) as e:
            log.error("job <%s> failed: %s: %s", job.name, type(e).__name__, e)
            continue
    log.info("done: jobs=%d renewed=%d", len(jobs), renewed)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
