from __future__ import annotations

import base64
import binascii
import logging

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from ecm.ejbca.errors import DecodeFailure

log = logging.getLogger(__name__)

ASN1_SEQUENCE = 0x30
MAX_BASE64_ROUNDS = 2


def asn1_object(b: bytes) -> bytes:
    """
    Cut `b` down to the first definite-length ASN.1 object. Returned unchanged
    when the header cannot be read (the DER parser will then complain).
    """
    if len(b) < 2:
        return b
    lb = b[1]
    if lb & 0x80 == 0:
        total = 2 + lb
    else:
        n = lb & 0x7F
        # 0x80 is indefinite-length BER
        if n == 0 or n > 4 or len(b) < 2 + n:
            return b
        total = 2 + n + int.from_bytes(b[2 : 2 + n], "big")
    return b[:total] if total <= len(b) else b


def _parse_der(der: bytes) -> x509.Certificate:
    return x509.load_der_x509_certificate(asn1_object(der))


def decode_cert_data(data: bytes | str, *, caller: str = "") -> x509.Certificate:
    """
    Turn certificate data from an EJBCA response into a certificate.

    EJBCA hands out raw DER, base64(DER) and sometimes base64(base64(DER))
    without saying which. Raw DER is tried first, then at most two base64
    rounds. Anything deeper (or PKCS#7) is a DecodeFailure.
    """
    raw = data.encode("ascii", "replace") if isinstance(data, str) else bytes(data)
    label = caller or "certificateData"
    text = raw.strip()
    if not text:
        raise DecodeFailure(f"{label}: empty certificate data")

    last_err: Exception | None = None
    # only leading whitespace is dropped here: DER may end in a byte that looks like one
    lead = raw.lstrip()
    if lead[0] == ASN1_SEQUENCE:
        try:
            return _parse_der(lead)
        except ValueError as e:
            last_err = e

    decoded = text
    for round_no in range(1, MAX_BASE64_ROUNDS + 1):
        compact = b"".join(decoded.split())
        try:
            decoded = base64.b64decode(compact, validate=True)
        except (binascii.Error, ValueError) as e:
            last_err = e
            break
        if decoded and decoded[0] == ASN1_SEQUENCE:
            try:
                cert = _parse_der(decoded)
            except ValueError as e:
                last_err = e
                continue
            log.debug("%s: certificate decoded after %d base64 round(s)", label, round_no)
            return cert

    detail = f": {last_err}" if last_err is not None else ""
    raise DecodeFailure(f"{label}: could not obtain DER certificate{detail}")


def cert_to_pem(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


def describe(cert: x509.Certificate) -> str:
    return (
        f"Subject: {cert.subject.rfc4514_string()}\n"
        f"Issuer: {cert.issuer.rfc4514_string()}\n"
        f"NotAfter: {cert.not_valid_after_utc.isoformat()}\n"
    )
