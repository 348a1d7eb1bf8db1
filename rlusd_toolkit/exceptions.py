# LEDGER EXCEPTIONS

class RLUSDError(Exception):
    """ Base class for every error raised by the toolkit """


class LedgerConnectionError(RLUSDError, ConnectionError):
    """ This exception is raised when no ledger endpoint could be reached """
    def __init__(self, endpoints, last_error=None):
        self.endpoints = list(endpoints)
        self.last_error = last_error
        message = "Failed to connect to any XRPL server"
        if last_error is not None:
            message += f". Last error: {last_error}"
        super().__init__(message)


class LedgerQueryError(RLUSDError):
    """ This exception is raised when a ledger query fails for a reason other than a missing account """
    def __init__(self, command, error, message=None):
        self.command = command
        self.error = error
        super().__init__(f"{command} failed: {message or error}")


# VALIDATION / STATE EXCEPTIONS

class ValidationError(RLUSDError, ValueError):
    """ This exception is raised when an input is malformed or missing """


class AccountStateError(RLUSDError):
    """ This exception is raised when a required account or trustline is absent, or the balance is too low """
    def __init__(self, message, address=None, available=None):
        self.address = address
        self.available = available
        super().__init__(message)


# SUBMISSION EXCEPTIONS

class LedgerRejection(RLUSDError):
    """ This exception is raised when a submitted transaction did not end in tesSUCCESS """
    def __init__(self, result_code, tx_hash=None):
        self.result_code = result_code
        self.tx_hash = tx_hash
        super().__init__(f"Transaction failed: {result_code}")


class FundingTimeoutError(RLUSDError, TimeoutError):
    """ This exception is raised when an account is not funded before the caller's deadline """
    def __init__(self, address, timeout):
        self.address = address
        self.timeout = timeout
        super().__init__(f"Account {address} was not funded within {timeout} seconds")
