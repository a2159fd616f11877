"""
VeilFund Exception Hierarchy

All exceptions inherit from VeilFundError for easy catching.
"""


class VeilFundError(Exception):
    """Base exception for all VeilFund errors"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ValidationError(VeilFundError):
    """Raised when data validation fails"""
    pass


class ConfigurationError(VeilFundError):
    """Raised when fund or factory configuration is invalid"""
    pass


class LedgerError(VeilFundError):
    """Raised when event ledger operations fail"""
    pass


class SettlementError(VeilFundError):
    """Base for errors raised while settling a mint or burn"""
    pass


class TransferValidationFailed(SettlementError):
    """Raised when the error-code channel reports a failed transfer"""
    pass


class AmountExceedsBound(SettlementError):
    """Raised when a mint, burn or swap amount is over its configured ceiling"""
    pass


class InsufficientBalance(SettlementError):
    """Raised when a burn asks for more shares than the user holds"""
    pass


class BatchNotReady(SettlementError):
    """Raised when a claim is attempted before its batch was flushed"""
    pass


class NoPendingAction(SettlementError):
    """Raised when a claim is attempted with nothing pending"""
    pass


class PriceFeedUnavailable(SettlementError):
    """Raised when the market-data provider has no usable price or cap"""
    pass


class ZeroSharePrice(SettlementError):
    """Raised when the recomputed share price is not strictly positive"""
    pass


class SlippageExceeded(SettlementError):
    """Raised by a swap venue when output falls below the minimum"""
    pass


class AuthorizationError(VeilFundError):
    """Raised when a caller is not allowed to invoke an entry point"""
    pass


class UnauthorizedCaller(AuthorizationError):
    """Raised when an oracle-only or owner-only entry point is called by someone else"""
    pass


class PoolNotWhitelisted(AuthorizationError):
    """Raised when a fund is created with a pool the factory has not approved"""
    pass


class RequestError(VeilFundError):
    """Base for decryption request bookkeeping errors"""
    pass


class RequestNotFound(RequestError):
    """Raised when a request id has no pending context (unknown or already consumed)"""
    pass


class RequestNotExpired(RequestError):
    """Raised when cancelling a request whose deadline has not passed"""
    pass


class ReentrancyError(VeilFundError):
    """Raised when a guarded entry point is re-entered during its own execution"""
    pass
