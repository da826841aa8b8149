"""Explicit wiping of secret scalars.

petlib frees big numbers with ``BN_clear_free`` when they are garbage collected,
but a secret may survive for an unbounded time before that happens.
``SecretScope`` wipes the secrets it tracks as soon as the scope is left, on
normal return and on every exception path alike.

Example:
    >>> from petlib.bn import Bn
    >>> with SecretScope() as scope:
    ...     x = scope.track(Bn(42))
    >>> x == 0
    True

"""

from petlib.bindings import _C
from petlib.bn import Bn


def wipe_bn(num):
    """Clears the memory backing a Bn and leaves it holding zero."""
    if num is None:
        return
    _C.BN_clear_free(num.bn)
    num.bn = _C.BN_new()


def wipe_bytes(buf):
    """Overwrites a bytearray in place."""
    for i in range(len(buf)):
        buf[i] = 0


class SecretScope(object):
    """A context manager collecting secret values to wipe on exit."""

    def __init__(self):
        self._secrets = []

    def track(self, value):
        """Tracks a Bn (or a list of Bn) and returns it unchanged."""
        if isinstance(value, (list, tuple)):
            for v in value:
                self.track(v)
        elif isinstance(value, bytearray) or isinstance(value, Bn):
            self._secrets.append(value)
        elif value is not None:
            raise TypeError("Cannot wipe values of type %r" % (type(value),))
        return value

    def random(self, order):
        """Returns a fresh tracked random scalar modulo order."""
        return self.track(order.random())

    def wipe(self):
        while self._secrets:
            value = self._secrets.pop()
            if isinstance(value, bytearray):
                wipe_bytes(value)
            else:
                wipe_bn(value)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.wipe()
        return False


# --- TESTS ---

import pytest


def test_wipe_bn():
    x = Bn(123456)
    wipe_bn(x)
    assert x == 0
    # Still usable after a wipe
    assert x + 1 == 1


def test_scope_wipes_on_error():
    kept = []
    with pytest.raises(ValueError):
        with SecretScope() as scope:
            kept.append(scope.random(Bn(2) ** 128))
            kept.append(scope.track(bytearray(b"secret")))
            raise ValueError("abort")
    assert kept[0] == 0
    assert kept[1] == bytearray(6)


def test_scope_lists():
    with SecretScope() as scope:
        xs = scope.track([Bn(1), Bn(2)])
    assert xs == [Bn(0), Bn(0)]


def test_scope_rejects_ints():
    with pytest.raises(TypeError):
        SecretScope().track(5)
