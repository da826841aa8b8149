"""Pedersen vector commitments over G1.

A commitment to ``values = [m_1 .. m_n]`` with randomness ``r`` under a key
``([B_1 .. B_n], h)`` is ``m_1 B_1 + .. + m_n B_n + r h``. It is perfectly
hiding and binding under the discrete logarithm assumption, as long as nobody
knows the logarithms between the bases.

Example:
    >>> from anonid.groups import bp_group
    >>> G = bp_group()
    >>> ck = CommitmentKey([G.hashG1(b"B")], G.hashG1(b"h"))
    >>> r = ck.order.random()
    >>> C = ck.commit([G.order().random()], r)
    >>> ck.slot(0) == ck
    True

"""

from bplib.bp import G1Elem
from petlib.bn import Bn

from .errors import ConfigurationError
from .groups import bp_group
from .zkp import ZKProof, ConstGen, Gen, Sec

EQUALITY_TAG = b"anonid/commitment-equality"


class CommitmentKey(object):
    """A list of bases, one per committed value, and a blinding base h."""

    def __init__(self, bases, h):
        self.bases = list(bases)
        self.h = h
        self.order = bp_group().order()

    def __len__(self):
        return len(self.bases)

    def __eq__(self, other):
        return isinstance(other, CommitmentKey) and self.h == other.h \
            and len(self.bases) == len(other.bases) \
            and all(a == b for a, b in zip(self.bases, other.bases))

    def __ne__(self, other):
        return not self.__eq__(other)

    def slot(self, i):
        """The key committing to a single value at position i."""
        return CommitmentKey([self.bases[i]], self.h)

    def commit(self, values, randomness):
        """Commits to values with the given blinding scalar."""
        if len(values) != len(self.bases):
            raise ConfigurationError("Committing to %d values under a key of length %d."
                                     % (len(values), len(self.bases)))
        C = randomness * self.h
        for m, B in zip(values, self.bases):
            C = C + m * B
        return C

    def open(self, commitment, values, randomness):
        """True if commitment opens to values with randomness."""
        return self.commit(values, randomness) == commitment

    def rerandomize(self, commitment, randomness):
        """Returns the commitment to the same values with randomness shifted."""
        return commitment + randomness * self.h


def add_opening(zk, ck, name, secrets, blinding):
    """Adds to zk the knowledge of an opening of the commitment called name.

    ``secrets`` are proof variables (Sec, or ConstPub for disclosed values), one
    per base of ``ck``, and ``blinding`` is the secret randomness. The bases are
    added as constants, named after the commitment. Returns the commitment Gen
    and the environment entries for the bases."""
    assert len(secrets) == len(ck)
    bases = zk.get_array(ConstGen, name + "_base", len(ck))
    h = zk.get(ConstGen, name + "_h")
    C = zk.get(Gen, name)

    expr = blinding * h
    for s, B in zip(secrets, bases):
        expr = s * B + expr
    zk.add_proof(C, expr)

    env = {name + "_h": ck.h}
    for i, B in enumerate(ck.bases):
        env["%s_base[%i]" % (name, i)] = B
    return C, env


def add_equality(zk, value, name1, ck1, blinding1, name2, ck2, blinding2):
    """Adds to zk that the single value commitments called name1 (under ck1)
    and name2 (under ck2) open to the same secret value."""
    env = {}
    _, e1 = add_opening(zk, ck1, name1, [value], blinding1)
    _, e2 = add_opening(zk, ck2, name2, [value], blinding2)
    env.update(e1)
    env.update(e2)
    return env


def _equality_statement(ck1, ck2):
    zk = ZKProof(ck1.order, EQUALITY_TAG)
    m, r1, r2 = zk.get(Sec, ["m", "r1", "r2"])
    env = add_equality(zk, m, "C1", ck1, r1, "C2", ck2, r2)
    return zk, env


def prove_equality(ck1, C1, r1, ck2, C2, r2, value, message=b""):
    """Proves that C1 = value B1 + r1 h1 and C2 = value B2 + r2 h2 commit to
    the same value. Returns the transcript."""
    zk, env = _equality_statement(ck1, ck2)
    env.update({"C1": C1, "C2": C2, "m": value, "r1": r1, "r2": r2})
    return zk.build_proof(env, message)


def verify_equality(ck1, C1, ck2, C2, proof, message=b""):
    """Checks a transcript of prove_equality for the commitments C1 and C2."""
    zk, env = _equality_statement(ck1, ck2)
    try:
        c, responses = proof
    except (TypeError, ValueError):
        return False
    if not isinstance(responses, dict):
        return False
    for name, C in [("C1", C1), ("C2", C2)]:
        if not isinstance(responses.get(name), G1Elem) or not responses[name] == C:
            return False
    return zk.verify_proof(env, proof, message)


# --- TESTS ---

import pytest


def _key(n, label=b"test"):
    G = bp_group()
    bases = [G.hashG1(label + b"/base/%d" % i) for i in range(n)]
    return CommitmentKey(bases, G.hashG1(label + b"/h"))


def test_commit_open():
    ck = _key(3)
    o = ck.order
    values = [o.random() for _ in range(3)]
    r = o.random()
    C = ck.commit(values, r)
    assert ck.open(C, values, r)
    assert not ck.open(C, values, r + 1)
    assert not ck.open(C, [values[0] + 1] + values[1:], r)

    C2 = ck.rerandomize(C, Bn(5))
    assert ck.open(C2, values, r + 5)


def test_length_mismatch():
    ck = _key(2)
    with pytest.raises(ConfigurationError):
        ck.commit([Bn(1)], Bn(1))


def test_slot():
    ck = _key(3)
    m, r = Bn(42), Bn(17)
    assert ck.slot(1).commit([m], r) == ck.commit([Bn(0), m, Bn(0)], r)


def test_equality():
    ck1 = _key(1, b"one")
    ck2 = _key(1, b"two")
    o = ck1.order
    m, r1, r2 = o.random(), o.random(), o.random()
    C1 = ck1.commit([m], r1)
    C2 = ck2.commit([m], r2)

    proof = prove_equality(ck1, C1, r1, ck2, C2, r2, m, b"ctx")
    assert verify_equality(ck1, C1, ck2, C2, proof, b"ctx")
    assert not verify_equality(ck1, C1, ck2, C2, proof, b"other")
    assert not verify_equality(ck1, C1, ck2, C1, proof, b"ctx")

    # Same key, different randomness
    C3 = ck1.commit([m], r2)
    proof = prove_equality(ck1, C1, r1, ck1, C3, r2, m)
    assert verify_equality(ck1, C1, ck1, C3, proof)


def test_equality_false_statement():
    from .errors import ProofError
    ck = _key(1)
    o = ck.order
    m, r1, r2 = o.random(), o.random(), o.random()
    C1 = ck.commit([m], r1)
    C2 = ck.commit([m + 1], r2)
    with pytest.raises(ProofError):
        prove_equality(ck, C1, r1, ck, C2, r2, m)
