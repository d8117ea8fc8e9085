class PaymentError(Exception):
    """Base class for payment flow failures."""


class ValidationError(PaymentError):
    """Bad phone number, amount or identifiers. Raised before any network call."""


class CredentialError(PaymentError):
    """The gateway refused or failed to issue an access token."""


class PaymentInitiationError(PaymentError):
    """The gateway rejected the STK push or could not be reached."""

    def __init__(self, message, response=None):
        super().__init__(message)
        self.response = response


class PersistenceError(PaymentError):
    """The database failed while reading or writing a transaction."""

    def __init__(self, message, checkout_request_id=None):
        super().__init__(message)
        self.checkout_request_id = checkout_request_id


class CallbackMalformed(PaymentError):
    """The gateway callback envelope is structurally invalid."""
