from abc import ABC, abstractmethod


class PaymentGateway(ABC):
    @abstractmethod
    def stk_push(self, phone, amount, account_reference, transaction_desc):
        """Send a push prompt and return the gateway's acceptance body."""
        raise NotImplementedError

    @abstractmethod
    def stk_query(self, checkout_request_id):
        """Ask the gateway for the current outcome of a push."""
        raise NotImplementedError
