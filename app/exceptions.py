"""
Payment flow errors.

User-facing flows (OAuth, preference creation) raise these and the API layer
renders them as {"error": message}. The webhook route swallows everything
except SignatureInvalid.
"""

from typing import Optional


class PaymentFlowError(Exception):
    """Base class for errors surfaced to the caller with a message."""

    status_code: int = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class Unauthenticated(PaymentFlowError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class InvalidState(PaymentFlowError):
    def __init__(self, message: str = "State inválido ou expirado"):
        super().__init__(message)


class InvalidRequest(PaymentFlowError):
    pass


class ProcessorRequestFailed(PaymentFlowError):
    """Non-2xx answer (or transport failure) from the payment processor."""

    def __init__(self, status: int, body: str, action: str = "request"):
        super().__init__(f"Erro ao {action}: {status} - {body}")
        self.status = status
        self.body = body


class ServiceUnavailable(PaymentFlowError):
    def __init__(self, message: str = "Serviços não encontrados ou inativos"):
        super().__init__(message)


class ProductUnavailable(PaymentFlowError):
    def __init__(self, message: str = "Produtos não encontrados ou inativos"):
        super().__init__(message)


class MultiSellerNotSupported(PaymentFlowError):
    def __init__(self, message: str = "Selecione itens de um único vendedor por transação."):
        super().__init__(message)


class SellerNotConnected(PaymentFlowError):
    def __init__(self, message: str = "Vendedor não conectado ao Mercado Pago."):
        super().__init__(message)


class SlotFull(PaymentFlowError):
    def __init__(self, message: str = "Turno lotado. Escolha outro horário."):
        super().__init__(message)


class CredentialDecryptionError(PaymentFlowError):
    def __init__(self, message: str = "Credenciais do vendedor ilegíveis; reconecte o Mercado Pago."):
        super().__init__(message)


class AppointmentNotFound(PaymentFlowError):
    status_code = 404

    def __init__(self, message: str = "Agendamento não encontrado"):
        super().__init__(message)


class AppointmentNotDeletable(PaymentFlowError):
    def __init__(self, message: str = "Agendamento não pode ser removido neste estado"):
        super().__init__(message)


class MalformedWebhookPayload(Exception):
    """Unparseable notification. Logged and acknowledged, never surfaced."""


class SignatureInvalid(Exception):
    """x-signature present and verifiably wrong."""
