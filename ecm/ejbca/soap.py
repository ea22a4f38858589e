from __future__ import annotations

from dataclasses import dataclass

from lxml import etree

from ecm.common.models import RESPONSE_TYPE_CERTIFICATE
from ecm.ejbca.errors import ProtocolFailure

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
EJBCA_WS_NS = "http://ws.protocol.core.ejbca.org/"

SOAP_HEADERS = {
    "Content-Type": "text/xml; charset=utf-8",
    "SOAPAction": '""',
}

_parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)


@dataclass(frozen=True)
class Pkcs10Request:
    username: str
    password: str
    csr_b64: str
    hard_token_sn: str = ""
    response_type: str = RESPONSE_TYPE_CERTIFICATE


def _envelope(operation: str, args: list[tuple[str, str]]) -> bytes:
    # EJBCA's WSDL is elementFormDefault="unqualified": prefixed wrapper, bare children
    env = etree.Element(f"{{{SOAP_ENV_NS}}}Envelope", nsmap={"soapenv": SOAP_ENV_NS})
    etree.SubElement(env, f"{{{SOAP_ENV_NS}}}Header")
    body = etree.SubElement(env, f"{{{SOAP_ENV_NS}}}Body")
    op = etree.SubElement(body, f"{{{EJBCA_WS_NS}}}{operation}", nsmap={"tns": EJBCA_WS_NS})
    for name, value in args:
        etree.SubElement(op, name).text = value
    return etree.tostring(env, xml_declaration=True, encoding="utf-8")


def pkcs10_request_envelope(req: Pkcs10Request) -> bytes:
    return _envelope(
        "pkcs10Request",
        [
            ("arg0", req.username),
            ("arg1", req.password),
            ("arg2", req.csr_b64),
            ("arg3", req.hard_token_sn),
            ("arg4", req.response_type),
        ],
    )


def find_certs_envelope(username: str, only_valid: bool) -> bytes:
    # EJBCA expects arg1 before arg0 here
    return _envelope(
        "findCerts",
        [
            ("arg1", "true" if only_valid else "false"),
            ("arg0", username),
        ],
    )


def _local(root: etree._Element, name: str) -> list[etree._Element]:
    return root.xpath(f".//*[local-name()='{name}']")


def _body_payload(content: bytes, *, operation: str, status_code: int) -> etree._Element:
    if not content or not content.strip():
        raise ProtocolFailure(f"{operation}: empty response (HTTP {status_code})")
    try:
        root = etree.fromstring(content, parser=_parser)
    except etree.XMLSyntaxError as e:
        raise ProtocolFailure(f"{operation}: malformed response (HTTP {status_code}): {e}") from e

    faults = root.findall(f".//{{{SOAP_ENV_NS}}}Fault")
    if faults:
        fault = faults[0]
        code = (fault.findtext("faultcode") or "").strip()
        msg = (fault.findtext("faultstring") or "").strip()
        raise ProtocolFailure(f"{operation}: SOAP fault {code}: {msg}")
    if status_code < 200 or status_code > 299:
        raise ProtocolFailure(f"{operation}: HTTP {status_code}")

    body = root.find(f"{{{SOAP_ENV_NS}}}Body")
    if body is None or len(body) == 0:
        raise ProtocolFailure(f"{operation}: response has no SOAP body")
    return body[0]


def parse_pkcs10_response(content: bytes, *, status_code: int = 200) -> bytes:
    """Return the raw certificate payload of a pkcs10RequestResponse."""
    payload = _body_payload(content, operation="pkcs10Request", status_code=status_code)
    returns = _local(payload, "return")
    if not returns:
        raise ProtocolFailure("pkcs10Request: empty response")
    data = _local(returns[0], "data")
    text = (data[0].text or "").strip() if data else ""
    if not text:
        raise ProtocolFailure("pkcs10Request: empty certificate response data")
    return text.encode("ascii", "replace")


def parse_find_certs_response(content: bytes, *, status_code: int = 200) -> list[bytes]:
    """Return the certificateData payload of every non-empty <return> entry."""
    payload = _body_payload(content, operation="findCerts", status_code=status_code)
    out: list[bytes] = []
    for item in _local(payload, "return"):
        data = _local(item, "certificateData")
        text = (data[0].text or "").strip() if data else ""
        if text:
            out.append(text.encode("ascii", "replace"))
    return out
