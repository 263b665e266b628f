"""Domain-specific exceptions"""

from typing import List, Optional


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class AuthError(DomainException):
    """Credential exchange with the payment gateway failed"""

    pass


class GatewayError(DomainException):
    """Payment gateway returned a non-2xx response or could not be reached"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TransactionNotFoundError(DomainException):
    """No ledger row matches the given reference or transaction id"""

    pass


class DeliveryError(DomainException):
    """A notification provider failed to deliver on one channel"""

    def __init__(self, channel: str, message: str):
        super().__init__(f"{channel}: {message}")
        self.channel = channel


class TaskNotFoundError(DomainException):
    """Scheduler has no task registered under the given id"""

    pass


class SweepError(DomainException):
    """One or more installments could not be processed during a sweep"""

    def __init__(self, errors: List[str]):
        super().__init__(f"{len(errors)} installment(s) failed: " + "; ".join(errors))
        self.errors = errors


class CollaboratorNotificationError(DomainException):
    """Loan event could not be delivered to the collaborator webhook"""

    pass
