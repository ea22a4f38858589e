from __future__ import annotations

import logging
import ssl
from pathlib import Path

import requests
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from requests.adapters import HTTPAdapter

from ecm.ejbca.deadline import Deadline
from ecm.ejbca.errors import ConnectivityFailure, CredentialLoadFailure

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class MTLSAdapter(HTTPAdapter):
    """
    Mounts a prepared SSLContext and pins SNI / hostname checks to the
    expected server name, so dialing an IP literal still validates the name.
    """

    def __init__(self, *, ssl_context: ssl.SSLContext, server_name: str, **kwargs):
        self.ssl_context = ssl_context
        self.server_name = server_name
        super().__init__(**kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        pool_kwargs["ssl_context"] = self.ssl_context
        pool_kwargs["server_hostname"] = self.server_name
        pool_kwargs["assert_hostname"] = self.server_name
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)


def _spki(public_key) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def load_client_keypair(cert_path: Path, key_path: Path) -> tuple[x509.Certificate, object]:
    try:
        cert = x509.load_pem_x509_certificate(Path(cert_path).read_bytes())
        key = serialization.load_pem_private_key(Path(key_path).read_bytes(), password=None)
    except (OSError, ValueError, TypeError) as e:
        raise CredentialLoadFailure(f"load client cert/key: {e}") from e
    if _spki(cert.public_key()) != _spki(key.public_key()):
        raise CredentialLoadFailure("client key does not match client certificate")
    return cert, key


def load_ca_bundle(path: Path) -> list[x509.Certificate]:
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise CredentialLoadFailure(f"read server CA file: {e}") from e
    try:
        certs = x509.load_pem_x509_certificates(data)
    except ValueError as e:
        raise CredentialLoadFailure(f"server CA bundle {path}: no certs found ({e})") from e
    if not certs:
        raise CredentialLoadFailure(f"server CA bundle {path}: no certs found")
    return certs


def build_ssl_context(*, client_cert: Path, client_key: Path, ca_bundle: Path) -> ssl.SSLContext:
    load_client_keypair(client_cert, client_key)
    roots = load_ca_bundle(ca_bundle)
    cadata = "".join(c.public_bytes(serialization.Encoding.PEM).decode("ascii") for c in roots)

    try:
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        ctx.minimum_version = ssl.TLSVersion.TLSv1_2
        ctx.check_hostname = True
        ctx.verify_mode = ssl.CERT_REQUIRED
        # only the configured bundle, never the system store
        ctx.load_verify_locations(cadata=cadata)
        ctx.load_cert_chain(certfile=str(client_cert), keyfile=str(client_key))
    except (ssl.SSLError, OSError, ValueError) as e:
        raise CredentialLoadFailure(f"build TLS context: {e}") from e
    return ctx


class CAChannel:
    """Authenticated HTTPS channel to one CA endpoint."""

    def __init__(
        self,
        *,
        session: requests.Session,
        server_name: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.session = session
        self.server_name = server_name
        self.timeout = timeout

    def probe(self, host: str | None = None, *, deadline: Deadline | None = None) -> None:
        url = f"https://{host or self.server_name}/"
        log.info("EJBCA test connect to %s ...", url)
        timeout = deadline.timeout(self.timeout) if deadline is not None else self.timeout
        try:
            r = self.session.get(url, timeout=timeout)
        except requests.RequestException as e:
            raise ConnectivityFailure(f"connect {url}: {e}") from e
        if r.status_code < 200 or r.status_code > 299:
            raise ConnectivityFailure(f"connect {url}: status {r.status_code}")
        log.debug("probe %s -> %s", url, r.status_code)

    def post(self, url: str, *, data: bytes, headers: dict[str, str], deadline: Deadline) -> requests.Response:
        timeout = deadline.timeout(self.timeout)
        try:
            return self.session.post(url, data=data, headers=headers, timeout=timeout)
        except requests.RequestException as e:
            raise ConnectivityFailure(f"POST {url}: {e}") from e

    def close(self) -> None:
        self.session.close()


def build_mtls_channel(
    *,
    client_cert: Path,
    client_key: Path,
    ca_bundle: Path,
    server_name: str,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> CAChannel:
    """
    Build the mutually authenticated channel used for every CA call.
    Raises CredentialLoadFailure; there is no unauthenticated fallback.
    """
    ctx = build_ssl_context(client_cert=Path(client_cert), client_key=Path(client_key), ca_bundle=Path(ca_bundle))

    session = requests.Session()
    # urllib3 loads `verify` into the context as well; keep it on the same bundle
    session.verify = str(ca_bundle)
    session.mount("https://", MTLSAdapter(ssl_context=ctx, server_name=server_name))
    return CAChannel(session=session, server_name=server_name, timeout=timeout)
