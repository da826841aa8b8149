"""Shamir secret sharing over the scalar field of the pairing group.

The identity secret is shared with a random polynomial ``f`` of degree
``t - 1`` with ``f(0) = IdCredSec``; anonymity revoker ``i`` gets ``f(i)``,
encrypted in the exponent. Reconstruction works on the group elements
``f(i) g`` and returns ``IdCredSec g = IdCredPub`` without ever recovering the
scalar.
"""

import logging

from petlib.bn import Bn

from .errors import ConfigurationError, InsufficientSharesError, MalformedInputError

log = logging.getLogger(__name__)


def evaluate(coeffs, x, order):
    """Evaluates the polynomial with the given coefficients at x (Horner)."""
    x = Bn(x)
    acc = Bn(0)
    for a in reversed(coeffs):
        acc = (acc * x + a) % order
    return acc


def _check_ids(ids):
    if len(set(ids)) != len(ids):
        raise MalformedInputError("Duplicate share identities.")
    for i in ids:
        if not 0 < i < 2 ** 32:
            raise MalformedInputError("Share identity %r out of range." % (i,))


def share_secret(secret, threshold, ids, order):
    """Shares secret among ids so that any threshold of them can reconstruct it.

    Returns the polynomial coefficients (the first being the secret) and a dict
    from identity to share. The caller owns, and should wipe, the coefficients.
    """
    if threshold < 1:
        raise ConfigurationError("The threshold must be at least 1.")
    _check_ids(ids)
    if len(ids) < threshold:
        raise ConfigurationError("%d shares cannot meet a threshold of %d." % (len(ids), threshold))

    coeffs = [secret] + [order.random() for _ in range(threshold - 1)]
    shares = dict((i, evaluate(coeffs, i, order)) for i in ids)
    return coeffs, shares


def lagrange_at_zero(ids, order):
    """The Lagrange coefficients at 0 for the interpolation points ids."""
    _check_ids(ids)
    coeffs = {}
    for i in ids:
        num, den = Bn(1), Bn(1)
        for j in ids:
            if j == i:
                continue
            num = (num * j) % order
            den = (den * (j - i)) % order
        coeffs[i] = (num * den.mod_inverse(order)) % order
    return coeffs


def _distinct(shares, threshold):
    if threshold < 1:
        raise ConfigurationError("The threshold must be at least 1.")
    ids = [i for i, _ in shares]
    _check_ids(ids)
    if len(ids) < threshold:
        raise InsufficientSharesError("Got %d shares, need %d." % (len(ids), threshold))
    return ids


def reconstruct_in_exponent(shares, threshold, order):
    """Combines shares [(id, f(id) g)] into f(0) g.

    Raises InsufficientSharesError with fewer than threshold shares, and
    MalformedInputError if an identity appears twice."""
    ids = _distinct(shares, threshold)
    lambdas = lagrange_at_zero(ids, order)
    acc = None
    for i, S in shares:
        term = lambdas[i] * S
        acc = term if acc is None else acc + term
    log.debug("Reconstructed from %d shares (threshold %d)", len(ids), threshold)
    return acc


def reconstruct_secret(shares, threshold, order):
    """Combines scalar shares [(id, f(id))] into f(0)."""
    ids = _distinct(shares, threshold)
    lambdas = lagrange_at_zero(ids, order)
    acc = Bn(0)
    for i, s in shares:
        acc = (acc + lambdas[i] * s) % order
    return acc


# --- TESTS ---

import pytest
from itertools import combinations


def test_evaluate():
    o = Bn(101)
    # 3 + 2x + x^2 at 5
    assert evaluate([Bn(3), Bn(2), Bn(1)], 5, o) == 38
    assert evaluate([Bn(3)], 5, o) == 3


def test_share_and_reconstruct():
    from .groups import bp_group
    G = bp_group()
    o, g = G.order(), G.gen1()
    secret = o.random()
    coeffs, shares = share_secret(secret, 3, [1, 2, 5, 9], o)
    assert coeffs[0] == secret

    for subset in combinations(sorted(shares), 3):
        points = [(i, shares[i] * g) for i in subset]
        assert reconstruct_in_exponent(points, 3, o) == secret * g
        assert reconstruct_secret([(i, shares[i]) for i in subset], 3, o) == secret

    # All four work too
    points = [(i, shares[i] * g) for i in shares]
    assert reconstruct_in_exponent(points, 3, o) == secret * g


def test_insufficient():
    o = Bn(1000003)
    _, shares = share_secret(Bn(42), 3, [1, 2, 3], o)
    with pytest.raises(InsufficientSharesError):
        reconstruct_secret([(1, shares[1]), (2, shares[2])], 3, o)


def test_duplicates():
    o = Bn(1000003)
    _, shares = share_secret(Bn(42), 2, [1, 2], o)
    with pytest.raises(MalformedInputError):
        reconstruct_secret([(1, shares[1]), (1, shares[1])], 2, o)
    with pytest.raises(MalformedInputError):
        share_secret(Bn(1), 1, [3, 3], o)
    with pytest.raises(MalformedInputError):
        share_secret(Bn(1), 1, [0], o)


def test_bad_threshold():
    o = Bn(1000003)
    with pytest.raises(ConfigurationError):
        share_secret(Bn(1), 0, [1], o)
    with pytest.raises(ConfigurationError):
        share_secret(Bn(1), 3, [1, 2], o)
