from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

RESPONSE_TYPE_CERTIFICATE = "CERTIFICATE"


class CaSettings(BaseModel):
    host: str = Field(..., description="CA host name; also the TLS server name / SNI")
    ejbca_api_url: str = ""
    client_cert: Path
    client_key: Path
    server_cert_chain: Path = Field(..., description="PEM bundle used to validate the CA server")
    password: str = ""
    ca_cert: Path | None = None
    ca_cert_pem: str = ""

    @property
    def api_url(self) -> str:
        return self.ejbca_api_url or f"https://{self.host}/ejbca/ejbcaws/ejbcaws"


class TargetSettings(BaseModel):
    ssh_port: int = 22
    ssh_user: str = "root"
    ssh_key: Path
    csr_command: str
    set_cert_command: str
    change_before_raw: str = "14d"
    change_after_raw: str = "0s"
    change_before: int = 0
    change_after: int = 0
    # filled in once a certificate has been issued
    certificate: str = ""


class Job(BaseModel):
    name: str
    enabled: bool = True
    ca: CaSettings
    target: TargetSettings
    source: Path | None = None


class EnrollmentRequest(BaseModel):
    username: str
    password: str = ""
    csr_pem: str
    profile: str = ""
    response_type: str = RESPONSE_TYPE_CERTIFICATE
