from __future__ import annotations

import logging

from cryptography import x509

from ecm.common.pem import iter_pem_blocks

log = logging.getLogger(__name__)

CSR_LABELS = frozenset({"CERTIFICATE REQUEST", "NEW CERTIFICATE REQUEST"})


def extract_csr(output: bytes | str) -> str | None:
    """
    First PEM CSR in `output` that parses and carries a valid self-signature.
    Other blocks, broken CSRs and badly signed CSRs are logged and skipped.
    """
    for block in iter_pem_blocks(output):
        if block.label not in CSR_LABELS:
            log.warning("ignoring PEM block type %r", block.label)
            continue
        try:
            csr = x509.load_der_x509_csr(block.der)
        except ValueError as e:
            log.error("invalid CSR in PEM block %r: %s", block.label, e)
            continue
        if not csr.is_signature_valid:
            log.error("CSR signature invalid, skipping block")
            continue
        return block.encode()

    log.error("no valid CSR found in output")
    return None
