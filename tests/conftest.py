from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from ecm.ejbca.soap import EJBCA_WS_NS, SOAP_ENV_NS


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def key_pem(key) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def make_csr(cn: str, *, dns: list[str] | None = None) -> tuple[bytes, x509.CertificateSigningRequest]:
    key = ec.generate_private_key(ec.SECP256R1())
    builder = x509.CertificateSigningRequestBuilder().subject_name(
        x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])
    )
    if dns:
        builder = builder.add_extension(x509.SubjectAlternativeName([x509.DNSName(d) for d in dns]), critical=False)
    csr = builder.sign(key, hashes.SHA256())
    return csr.public_bytes(serialization.Encoding.PEM), csr


def tamper_csr(csr: x509.CertificateSigningRequest) -> bytes:
    """DER of `csr` with the last signature byte flipped; structure stays intact."""
    der = csr.public_bytes(serialization.Encoding.DER)
    return der[:-1] + bytes([der[-1] ^ 0x01])


@dataclass
class TestCA:
    key: ec.EllipticCurvePrivateKey
    cert: x509.Certificate

    __test__ = False

    @staticmethod
    def create(cn: str = "ECM Test CA") -> "TestCA":
        key = ec.generate_private_key(ec.SECP256R1())
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])
        now = utc_now()
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(minutes=5))
            .not_valid_after(now + timedelta(days=3650))
            .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
            .sign(private_key=key, algorithm=hashes.SHA256())
        )
        return TestCA(key=key, cert=cert)

    def issue(
        self,
        cn: str,
        *,
        not_before: datetime | None = None,
        not_after: datetime | None = None,
        dns: list[str] | None = None,
        ips: list[str] | None = None,
        key=None,
    ) -> x509.Certificate:
        now = utc_now()
        key = key or ec.generate_private_key(ec.SECP256R1())
        builder = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)]))
            .issuer_name(self.cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before or now - timedelta(minutes=5))
            .not_valid_after(not_after or now + timedelta(days=90))
            .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CLIENT_AUTH]), critical=False)
        )
        sans: list[x509.GeneralName] = [x509.DNSName(d) for d in (dns or [])]
        sans += [x509.IPAddress(ipaddress.ip_address(ip)) for ip in (ips or [])]
        if sans:
            builder = builder.add_extension(x509.SubjectAlternativeName(sans), critical=False)
        return builder.sign(private_key=self.key, algorithm=hashes.SHA256())


@pytest.fixture(scope="session")
def ca() -> TestCA:
    return TestCA.create()


@dataclass
class TLSFiles:
    client_cert: Path
    client_key: Path
    ca_bundle: Path


@pytest.fixture
def tls_files(tmp_path: Path, ca: TestCA) -> TLSFiles:
    key = ec.generate_private_key(ec.SECP256R1())
    cert = ca.issue("ecm-client", key=key)
    files = TLSFiles(
        client_cert=tmp_path / "client.crt.pem",
        client_key=tmp_path / "client.key.pem",
        ca_bundle=tmp_path / "ca.crt.pem",
    )
    files.client_cert.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    files.client_key.write_bytes(key_pem(key))
    files.ca_bundle.write_bytes(ca.cert.public_bytes(serialization.Encoding.PEM))
    return files


def soap_response(inner: str) -> bytes:
    return (
        f'<?xml version="1.0" encoding="UTF-8"?>'
        f'<soap:Envelope xmlns:soap="{SOAP_ENV_NS}"><soap:Body>{inner}</soap:Body></soap:Envelope>'
    ).encode("utf-8")


def pkcs10_response(data: str) -> bytes:
    return soap_response(
        f'<ns2:pkcs10RequestResponse xmlns:ns2="{EJBCA_WS_NS}">'
        f"<return><data>{data}</data><responseType>CERTIFICATE</responseType></return>"
        f"</ns2:pkcs10RequestResponse>"
    )


def find_certs_response(*payloads: str) -> bytes:
    items = "".join(f"<return><certificateData>{p}</certificateData><type>CERTIFICATE</type></return>" for p in payloads)
    return soap_response(f'<ns2:findCertsResponse xmlns:ns2="{EJBCA_WS_NS}">{items}</ns2:findCertsResponse>')


def fault_response(msg: str) -> bytes:
    return soap_response(f"<soap:Fault><faultcode>soap:Server</faultcode><faultstring>{msg}</faultstring></soap:Fault>")
