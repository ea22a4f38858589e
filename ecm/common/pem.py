from __future__ import annotations

import base64
import binascii
import re
from collections.abc import Iterator
from dataclasses import dataclass

_PEM_RE = re.compile(
    rb"-----BEGIN ([A-Z0-9 ]+)-----\s*(.*?)\s*-----END \1-----",
    re.DOTALL,
)


@dataclass(frozen=True)
class PemBlock:
    label: str
    der: bytes

    def encode(self) -> str:
        b64 = base64.b64encode(self.der).decode("ascii")
        lines = [b64[i : i + 64] for i in range(0, len(b64), 64)]
        return f"-----BEGIN {self.label}-----\n" + "\n".join(lines) + f"\n-----END {self.label}-----\n"


def iter_pem_blocks(data: bytes | str) -> Iterator[PemBlock]:
    """Yield decodable PEM blocks in order; armour with a broken body is skipped."""
    raw = data.encode("utf-8") if isinstance(data, str) else data
    for m in _PEM_RE.finditer(raw):
        body = b"".join(m.group(2).split())
        try:
            der = base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError):
            continue
        yield PemBlock(label=m.group(1).decode("ascii"), der=der)
