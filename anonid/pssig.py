""" Pointcheval-Sanders short randomizable signatures over a vector of
messages, with blind signing of a committed message vector. For full details
of the scheme see:

David Pointcheval, Olivier Sanders: Short Randomizable Signatures. CT-RSA 2016: 111-126

Identity providers sign ``[IdCredSec, prf_key, created_at, valid_to, attr_0, ..]``
(see ``anonid.params``); the user only reveals a commitment to the first two.
"""

from .errors import MalformedInputError, DeserializationError
from .groups import bp_group, check_g1, check_g2
from .pack import encode, decode
from .pedersen import CommitmentKey
from .zeroize import wipe_bn


class PublicKey(object):
    """ The public key ``(g2, X = x g2, Y_i = y_i g2)``, plus ``Y1_i = y_i g1``
    which users need to commit to messages before a blind signature. """

    def __init__(self, X, Ys, Y1s):
        G = bp_group()
        self.g1, self.g2 = G.gen1(), G.gen2()
        self.X = X
        self.Ys = list(Ys)
        self.Y1s = list(Y1s)

    def __len__(self):
        return len(self.Ys)

    def commitment_key(self):
        """The key users commit to message vectors under, blinded by g1."""
        return CommitmentKey(self.Y1s, self.g1)

    def export(self):
        return encode([self.X, self.Ys, self.Y1s])

    @staticmethod
    def from_bytes(data):
        try:
            X, Ys, Y1s = decode(data)
        except (TypeError, ValueError):
            raise DeserializationError("Malformed signature public key.")
        if not isinstance(Ys, list) or not isinstance(Y1s, list):
            raise DeserializationError("Malformed signature public key.")
        pk = PublicKey(X, Ys, Y1s)
        check_public_key(pk)
        return pk

    def __eq__(self, other):
        return isinstance(other, PublicKey) and self.export() == other.export()

    def __ne__(self, other):
        return not self.__eq__(other)


class SecretKey(object):
    """ The signing exponents ``(x, y_1 .. y_n)``. """

    def __init__(self, x, ys):
        self.x = x
        self.ys = list(ys)

    def __len__(self):
        return len(self.ys)

    def public_key(self):
        G = bp_group()
        g1, g2 = G.gen1(), G.gen2()
        return PublicKey(self.x * g2, [y * g2 for y in self.ys], [y * g1 for y in self.ys])

    def wipe(self):
        wipe_bn(self.x)
        for y in self.ys:
            wipe_bn(y)


def keygen(n):
    """ Generates a key pair for signing vectors of n messages. """
    o = bp_group().order()
    sk = SecretKey(o.random(), [o.random() for _ in range(n)])
    return (sk, sk.public_key())


def _exponent(sk, messages):
    if len(messages) != len(sk.ys):
        raise MalformedInputError("Expected %d messages, got %d." % (len(sk.ys), len(messages)))
    o = bp_group().order()
    e = sk.x
    for y, m in zip(sk.ys, messages):
        e = e + y * m
    return e % o


def sign_known(sk, messages):
    """ Signs a vector of messages known to the signer. """
    G = bp_group()
    h = G.order().random() * G.gen1()
    return (h, _exponent(sk, messages) * h)


def sign_blinded(sk, commitment):
    """ Signs the messages hidden in ``commitment = r g1 + sum m_i Y1_i``.
    The result only verifies once unblinded with r. """
    check_g1(commitment, "commitment")
    G = bp_group()
    u = G.order().random()
    sig = (u * G.gen1(), u * (sk.x * G.gen1() + commitment))
    wipe_bn(u)
    return sig


def unblind(sig, r):
    """ Removes the blinding factor r of the commitment from a blind signature. """
    sig1, sig2 = sig
    o = bp_group().order()
    return (sig1, sig2 + ((o - r) % o) * sig1)


def randomize(sig, t=None):
    """ Returns an unlinkable signature on the same messages. """
    sig1, sig2 = sig
    if t is None:
        t = bp_group().order().random()
    return (t * sig1, t * sig2)


def check_signature(sig):
    """ Raises MalformedInputError unless both components are non-identity
    elements of the prime order subgroup of G1. Run before any pairing. """
    try:
        sig1, sig2 = sig
    except (TypeError, ValueError):
        raise MalformedInputError("A signature has two components.")
    check_g1(sig1, "signature")
    check_g1(sig2, "signature")
    return sig


def check_public_key(pk, n=None):
    """ Raises MalformedInputError unless pk is a well formed key for n messages. """
    if n is not None and len(pk.Ys) != n:
        raise MalformedInputError("The key signs %d messages, expected %d." % (len(pk.Ys), n))
    if len(pk.Ys) == 0 or len(pk.Ys) != len(pk.Y1s):
        raise MalformedInputError("Inconsistent signature public key.")
    check_g2(pk.X, "signature key")
    for Y in pk.Ys:
        check_g2(Y, "signature key")
    for Y1 in pk.Y1s:
        check_g1(Y1, "signature key")

    # Y1_i and Y_i must share the exponent y_i
    G = bp_group()
    for Y, Y1 in zip(pk.Ys, pk.Y1s):
        if not G.pair(Y1, pk.g2) == G.pair(pk.g1, Y):
            raise MalformedInputError("Inconsistent signature public key.")
    return pk


def verify(pk, messages, sig):
    """ Checks ``e(sig1, X + sum m_i Y_i) == e(sig2, g2)``. """
    try:
        check_signature(sig)
    except MalformedInputError:
        return False
    if len(messages) != len(pk.Ys):
        return False
    sig1, sig2 = sig
    G = bp_group()
    K = pk.X
    for m, Y in zip(messages, pk.Ys):
        K = K + m * Y
    return G.pair(sig1, K) == G.pair(sig2, pk.g2)


# ---------- TESTS -------------

import pytest


def _messages(n):
    o = bp_group().order()
    return [o.random() for _ in range(n)]


def test_keygen():
    sk, pk = keygen(3)
    assert len(pk) == 3
    assert check_public_key(pk, 3) == pk
    with pytest.raises(MalformedInputError):
        check_public_key(pk, 4)


def test_verify():
    sk, pk = keygen(3)
    m = _messages(3)
    signature = sign_known(sk, m)
    assert verify(pk, m, signature)

    m2 = list(m)
    m2[1] = m2[1] + 1
    assert not verify(pk, m2, signature)
    assert not verify(pk, m[:2], signature)


def test_randomize():
    sk, pk = keygen(2)
    m = _messages(2)
    signature = randomize(sign_known(sk, m))
    assert verify(pk, m, signature)


def test_blind_sign():
    sk, pk = keygen(4)
    m = _messages(4)
    o = bp_group().order()
    r = o.random()
    C = pk.commitment_key().commit(m, r)

    blind = sign_blinded(sk, C)
    assert not verify(pk, m, blind)
    signature = unblind(blind, r)
    assert verify(pk, m, signature)
    assert verify(pk, m, randomize(signature))


def test_identity_signature_rejected():
    sk, pk = keygen(1)
    G = bp_group()
    inf = G.order() * G.gen1()
    # (inf, inf) satisfies the pairing equation trivially
    assert not verify(pk, [G.order().random()], (inf, inf))
    with pytest.raises(MalformedInputError):
        check_signature((G.gen1(),))


def test_export():
    sk, pk = keygen(2)
    pk2 = PublicKey.from_bytes(pk.export())
    assert pk2 == pk

    # Y1 not matching Y
    bad = PublicKey(pk.X, pk.Ys, [pk.Y1s[1], pk.Y1s[0]])
    with pytest.raises(MalformedInputError):
        PublicKey.from_bytes(bad.export())


def test_wipe():
    sk, pk = keygen(2)
    sk.wipe()
    assert sk.x == 0 and sk.ys == [0, 0]
