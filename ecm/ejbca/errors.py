from __future__ import annotations


class EcmError(RuntimeError):
    """Base for every failure that ends a single job."""


class ConnectivityFailure(EcmError):
    pass


class CredentialLoadFailure(EcmError):
    pass


class ProtocolFailure(EcmError):
    pass


class DecodeFailure(EcmError):
    pass


class SignatureInvalid(EcmError):
    pass


class DeadlineExceeded(EcmError):
    pass
