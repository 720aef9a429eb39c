"""Errores del flujo de códigos QR (generación, lectura y resolución).

Every error carries:
- code: machine code, used in logs
- message: text shown to the user
- context: diagnostic data, never shown to the user
"""

from __future__ import annotations

# Shared by NotFound and CrossTenantAccess so a foreign record is indistinguishable
# from a missing one.
NOT_AVAILABLE_MESSAGE = "No se encontró ningún registro para este código."


class ScanError(Exception):
    """Base de los errores de lectura/resolución. Todos se recuperan re-escaneando."""

    code = "scan_error"
    default_message = "Hubo un problema al procesar el código QR."
    retryable = True

    def __init__(self, message: str | None = None, context: dict | None = None):
        self.message = message or self.default_message
        self.context = context or {}
        super().__init__(self.message)

    @property
    def public_code(self) -> str:
        """Code exposed to clients."""
        return self.code

    def to_detail(self) -> dict:
        return {"code": self.public_code, "message": self.message, "retry": self.retryable}


class BarcodeError(ScanError):
    """Errores relacionados con el formato del código."""


class InvalidKind(BarcodeError):
    code = "invalid_kind"
    default_message = "Tipo de elemento no soportado."
    retryable = False


class InvalidId(BarcodeError):
    code = "invalid_id"
    default_message = "Identificador inválido para un código QR."
    retryable = False


class MalformedCode(BarcodeError):
    code = "malformed_code"
    default_message = "El código QR no tiene el formato correcto."


class UnknownKind(BarcodeError):
    code = "unknown_kind"
    default_message = "Este código QR no corresponde a una reparación, pieza o equipo válido."


class NotFound(ScanError):
    code = "not_found"
    default_message = NOT_AVAILABLE_MESSAGE

    @property
    def public_code(self) -> str:
        return "not_found"


class CrossTenantAccess(NotFound):
    code = "cross_tenant"


class TransientError(ScanError):
    code = "transient"
    default_message = "El servicio no está disponible en este momento. Intenta escanear de nuevo."


class InvalidTransition(Exception):
    """Operación no permitida en el estado actual de la sesión de escaneo."""

    def __init__(self, current: str, action: str):
        self.current = current
        self.action = action
        super().__init__(f"Cannot {action} while session is {current}")
