"""
Solmock Exceptions
==================

Exceptions raised while intercepting calls, programming responses and
manipulating contract storage.
"""


class SolmockException(Exception):
    """
    Base class for errors raised by solmock itself, as opposed to errors
    raised by contract execution.
    """

    pass


class InterfaceResolutionError(SolmockException):
    """
    Raised when no strategy could turn a spec into a contract interface.

    The message lists the error of every strategy that was attempted.
    """

    def __init__(self, what: str, errors: list[tuple[str, Exception]]):
        self.errors = errors
        details = "\n".join(f"  - {strategy}: {err}" for strategy, err in errors)
        super().__init__(f"unable to generate solmock spec from {what}.\n{details}")


class DecodingError(SolmockException):
    """
    Raised when the arguments of an intercepted call cannot be decoded with
    the function's input signature.
    """

    pass


class EncodingError(SolmockException):
    """
    Raised when a programmed value cannot be encoded with the function's
    output signature, after every fallback shape has been tried.
    """

    pass


class CallCountError(AssertionError):
    """
    Raised when accessing a call that never happened.
    """

    pass


class UnsupportedAlwaysModifier(SolmockException):
    """
    Raised when the `always` modifier is used with a predicate that has no
    "always" variant.
    """

    def __init__(self, predicate: str):
        self.predicate = predicate
        super().__init__(f"always flag is not supported for method {predicate}")


class StorageLookupError(SolmockException, LookupError):
    """
    Raised for unknown variable labels, out-of-range array indices and
    incomplete mapping key paths.
    """

    pass


class StorageEncodingError(SolmockException, ValueError):
    """
    Raised when a value does not fit the storage type it is written to.
    """

    pass


class ConfigError(SolmockException, TypeError):
    """
    Raised for unknown options passed to a sandbox in code. The command line
    and config files report them the argparse way instead.
    """

    pass


class StorageDecodingError(SolmockException, ValueError):
    """
    Raised when the words read from storage are not a valid value of the
    variable's type, such as a string that is not utf-8.
    """

    pass


class ArtifactNotFound(SolmockException, FileNotFoundError):
    pass


class EvmException(Exception):
    """
    Base class for all exceptions raised by contract execution in the
    reference chain.
    """

    pass


class Revert(EvmException):
    """
    Raised by native contract code to revert the current call frame.
    """

    def __init__(self, reason: str | None = None, data: bytes | None = None):
        self.reason = reason
        self.data = data
        super().__init__(reason or "")


class TransactionRevert(EvmException):
    """
    Raised to the test author when a top-level call reverts, whether the
    revert was programmed on a fake or raised by real contract code.
    """

    def __init__(self, reason: str | None, data: bytes = b""):
        self.reason = reason
        self.data = data
        message = "VM Exception while processing transaction: revert"
        if reason:
            message += f" {reason}"
        super().__init__(message)
