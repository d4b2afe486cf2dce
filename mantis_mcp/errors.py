"""Error type shared by every layer that talks to Mantis."""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Which side of the wire an error came from."""

    TRANSPORT = "transport"    # no response received
    API = "api"                # non-2xx response, carries status code and body
    VALIDATION = "validation"  # rejected locally, never reached the network
    FAULT = "fault"            # SOAP fault inside the envelope


class MantisApiError(Exception):
    """
    Raised for any failure talking to the Mantis REST or SOAP API.

    Callers branch on ``kind`` (or on ``status_code``: ``None`` for local
    errors, ``0`` when no response arrived, the HTTP status otherwise).
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.VALIDATION,
        status_code: Optional[int] = None,
        response: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status_code = status_code
        self.response = response

    @classmethod
    def transport(cls, message: str) -> "MantisApiError":
        return cls(message, ErrorKind.TRANSPORT, status_code=0)

    @classmethod
    def api(cls, message: str, status_code: Optional[int], response: Any = None) -> "MantisApiError":
        return cls(message, ErrorKind.API, status_code=status_code, response=response)

    @classmethod
    def validation(cls, message: str) -> "MantisApiError":
        return cls(message, ErrorKind.VALIDATION)

    @classmethod
    def fault(cls, fault_string: str, response: Any = None) -> "MantisApiError":
        return cls(f"SOAP fault: {fault_string}", ErrorKind.FAULT, response=response)

    @property
    def is_not_found(self) -> bool:
        return self.kind is ErrorKind.API and self.status_code == 404

    def to_dict(self) -> dict:
        """Structured form used in tool failure payloads."""
        result = {
            "error": f"Mantis API error: {self.message}",
            "error_type": self.kind.value,
        }
        if self.status_code:
            result["error"] += f" (HTTP {self.status_code})"
            result["status_code"] = self.status_code
        return result

    def __repr__(self) -> str:
        return f"MantisApiError({self.message!r}, kind={self.kind.value}, status_code={self.status_code})"
