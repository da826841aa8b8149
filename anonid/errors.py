"""Exceptions raised by the anonid library.

Malformed input, cryptographic rejection and configuration mistakes are kept
apart so that callers (and logs) can tell them apart, even though the credential
verifier reports all of the first two as a plain ``False``.
"""


class AnonIdError(Exception):
    """Base class of all anonid errors."""


class MalformedInputError(AnonIdError):
    """A value violates a structural constraint: a length, a count, a range
    or a group membership requirement."""


class DeserializationError(MalformedInputError):
    """A byte string could not be decoded into the expected structure."""


class VerificationError(AnonIdError):
    """A well formed value failed a cryptographic check."""


class ConfigurationError(AnonIdError):
    """A precondition on the long-lived parameters does not hold, for example
    a commitment key that does not match the number of attributes."""


class InsufficientSharesError(AnonIdError):
    """Fewer shares than the revocation threshold were supplied."""


class ProofError(AnonIdError):
    """A prover was asked to prove a statement that does not hold."""


def test_hierarchy():
    assert issubclass(DeserializationError, MalformedInputError)
    assert issubclass(MalformedInputError, AnonIdError)
    for cls in [VerificationError, ConfigurationError, InsufficientSharesError, ProofError]:
        assert issubclass(cls, AnonIdError)
        assert not issubclass(cls, MalformedInputError)
