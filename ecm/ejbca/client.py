from __future__ import annotations

import base64
import ipaddress
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from cryptography import x509
from cryptography.x509.oid import NameOID

from ecm.common.models import EnrollmentRequest
from ecm.common.pem import iter_pem_blocks
from ecm.ejbca.certdata import decode_cert_data
from ecm.ejbca.deadline import DeadlineManager
from ecm.ejbca.errors import DecodeFailure, ProtocolFailure, SignatureInvalid
from ecm.ejbca.renewal import is_recently_issued, needs_renew, pick_best_valid_cert
from ecm.ejbca.soap import (
    SOAP_HEADERS,
    Pkcs10Request,
    find_certs_envelope,
    parse_find_certs_response,
    parse_pkcs10_response,
    pkcs10_request_envelope,
)
from ecm.ejbca.transport import CAChannel

log = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def csr_to_wire_format(csr_pem: bytes | str) -> str:
    """
    Base64 DER of the first PEM block, after checking that it is a CSR
    carrying a valid self-signature.
    """
    raw = csr_pem.encode("utf-8") if isinstance(csr_pem, str) else csr_pem
    if not raw.strip():
        raise ProtocolFailure("empty CSR PEM")
    block = next(iter_pem_blocks(raw), None)
    if block is None:
        raise ProtocolFailure("CSR PEM decode: no PEM block found")

    try:
        csr = x509.load_der_x509_csr(block.der)
    except ValueError as e:
        raise DecodeFailure(f"CSR parse: {e}") from e
    if not csr.is_signature_valid:
        raise SignatureInvalid("CSR signature invalid")

    log.info(
        "CSR OK: Subject=%s Hash=%s",
        csr.subject.rfc4514_string(),
        getattr(csr.signature_hash_algorithm, "name", "none"),
    )
    return base64.b64encode(block.der).decode("ascii")


def hostname_matches(cert: x509.Certificate, name: str) -> bool:
    """SAN based check: DNS names (single left-most wildcard) or IP addresses."""
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return False

    try:
        ip = ipaddress.ip_address(name)
    except ValueError:
        ip = None
    if ip is not None:
        return ip in san.get_values_for_type(x509.IPAddress)

    host = name.lower().rstrip(".")
    for dns in san.get_values_for_type(x509.DNSName):
        pattern = dns.lower().rstrip(".")
        if pattern == host:
            return True
        if pattern.startswith("*.") and "." in host and host.split(".", 1)[1] == pattern[2:]:
            return True
    return False


class EjbcaClient:
    """
    EJBCA web service client: certificate lookup and PKCS#10 enrollment.
    Every call is bound to the deadline held by `deadlines`.
    """

    def __init__(
        self,
        *,
        channel: CAChannel,
        api_url: str,
        deadlines: DeadlineManager,
        now: Callable[[], datetime] = _utc_now,
    ):
        self.channel = channel
        self.api_url = api_url
        self.deadlines = deadlines
        self.now = now

    def _call(self, envelope: bytes):
        return self.channel.post(
            self.api_url,
            data=envelope,
            headers=dict(SOAP_HEADERS),
            deadline=self.deadlines.get(),
        )

    def lookup_existing(self, identity: str, *, only_valid: bool = False) -> list[x509.Certificate]:
        r = self._call(find_certs_envelope(identity, only_valid))
        payloads = parse_find_certs_response(r.content, status_code=r.status_code)
        # one bad entry fails the whole lookup
        return [decode_cert_data(p, caller="findCerts") for p in payloads]

    def enroll(self, request: EnrollmentRequest) -> x509.Certificate:
        username = request.username
        req = Pkcs10Request(
            username=username,
            password=request.password or "",
            csr_b64=csr_to_wire_format(request.csr_pem),
            hard_token_sn=request.profile,
            response_type=request.response_type,
        )
        r = self._call(pkcs10_request_envelope(req))
        payload = parse_pkcs10_response(r.content, status_code=r.status_code)
        cert = decode_cert_data(payload, caller="pkcs10Request")

        if self.now() >= cert.not_valid_after_utc:
            raise ProtocolFailure(f"received certificate already expired ({cert.not_valid_after_utc.isoformat()})")

        if not hostname_matches(cert, username):
            log.warning("hostname verification failed: certificate is not valid for %r", username)

        cn = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        log.info(
            "received certificate: CN=%r Serial=%s NotAfter=%s",
            cn[0].value if cn else "",
            format(cert.serial_number, "x"),
            cert.not_valid_after_utc.isoformat(),
        )
        return cert

    def should_renew(self, identity: str, *, change_before: int, change_after: int = 0) -> bool:
        """
        Decide from the CA's records whether `identity` needs a new certificate.
        Lookup failures propagate.
        """
        certs = self.lookup_existing(identity, only_valid=False)
        if not certs:
            log.info("no certificate found for %s -> must enroll/renew", identity)
            return True

        now = self.now()
        best = pick_best_valid_cert(now, certs)
        if best is None:
            log.info("no valid certificate found for %s (all expired/not yet valid) -> must enroll/renew", identity)
            return True

        if is_recently_issued(now, best, change_after):
            log.info("certificate for %s was issued recently -> no renew", identity)
            return False

        if needs_renew(now, best, change_before):
            log.info("certificate for %s is within renewal window -> renew", identity)
            return True

        log.info("certificate for %s exists and is still valid -> no renew", identity)
        return False
