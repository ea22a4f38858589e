from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from cryptography import x509

from ecm.common.validity import human_duration

log = logging.getLogger(__name__)


def is_valid_at(cert: x509.Certificate, now: datetime) -> bool:
    return cert.not_valid_before_utc <= now < cert.not_valid_after_utc


def pick_best_valid_cert(now: datetime, certs: Iterable[x509.Certificate]) -> x509.Certificate | None:
    """
    Among the certificates valid at `now`, return the one expiring last.
    Ties keep the first one seen. None if nothing is valid.
    """
    best: x509.Certificate | None = None
    for c in certs:
        if not is_valid_at(c, now):
            continue
        if best is None or c.not_valid_after_utc > best.not_valid_after_utc:
            best = c
    return best


def needs_renew(now: datetime, cert: x509.Certificate | None, change_before: int | timedelta) -> bool:
    """
    Renewal is due when there is no certificate, or when its remaining
    lifetime is less than or equal to the change_before window.
    """
    if cert is None:
        log.info("no certificate -> renew needed")
        return True

    window = change_before if isinstance(change_before, timedelta) else timedelta(seconds=int(change_before))
    remaining = cert.not_valid_after_utc - now
    needs = remaining <= window
    log.info(
        "cert remaining=%s renewBefore=%s delta=%s needsRenew=%s NotAfter=%s",
        human_duration(remaining.total_seconds()),
        human_duration(window.total_seconds()),
        human_duration((remaining - window).total_seconds()),
        needs,
        cert.not_valid_after_utc.isoformat(),
    )
    return needs


def is_recently_issued(now: datetime, cert: x509.Certificate | None, change_after: int | timedelta) -> bool:
    """True while the certificate is younger than change_after (0 disables)."""
    if cert is None:
        return False
    min_age = change_after if isinstance(change_after, timedelta) else timedelta(seconds=int(change_after))
    if min_age <= timedelta(0):
        return False
    return now - cert.not_valid_before_utc < min_age
