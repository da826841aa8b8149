"""Account signing keys, and the fixed size ECDSA signatures over secp256k1
that identity providers put on initial credentials.

A signature is encoded as ``r || s``, each a 32 byte big-endian integer, so
that it always takes exactly 64 bytes on the ledger.

Example:
    >>> from hashlib import sha256
    >>> account, keys = generate_account_keys(2, 1)
    >>> digest = sha256(b"Hello World!").digest()
    >>> sig = sign_digest(keys.secrets[0], digest)
    >>> len(sig)
    64
    >>> verify_digest(account.keys[0].point, sig, digest)
    True

"""

from petlib.bn import Bn
from petlib.ecdsa import do_ecdsa_sign, do_ecdsa_verify

from .errors import ConfigurationError, MalformedInputError
from .groups import account_group
from .types import AccountVerifyKey, NewAccount, SIGNATURE_SIZE
from .zeroize import wipe_bn

SCALAR_SIZE = SIGNATURE_SIZE // 2


class AccountSecretKeys(object):
    """The secret keys matching the verification keys of an account, in order."""

    def __init__(self, secrets):
        self.secrets = list(secrets)

    def __len__(self):
        return len(self.secrets)

    def wipe(self):
        for s in self.secrets:
            wipe_bn(s)


def generate_key():
    G = account_group()
    priv = G.order().random()
    return priv, priv * G.generator()


def generate_account_keys(n=1, threshold=1):
    """Returns a NewAccount with n fresh keys and the matching secrets."""
    if not 1 <= n <= 255:
        raise ConfigurationError("Accounts have between 1 and 255 keys.")
    if not 1 <= threshold <= n:
        raise ConfigurationError("The signature threshold must be in [1, %d]." % n)
    pairs = [generate_key() for _ in range(n)]
    account = NewAccount([AccountVerifyKey(pub) for _, pub in pairs], threshold)
    return account, AccountSecretKeys([priv for priv, _ in pairs])


def _pad(num):
    data = num.binary()
    if len(data) > SCALAR_SIZE:
        raise MalformedInputError("Signature component too large.")
    return b"\x00" * (SCALAR_SIZE - len(data)) + data


def encode_signature(sig):
    r, s = sig
    return _pad(r) + _pad(s)


def decode_signature(data):
    if not isinstance(data, bytes) or len(data) != SIGNATURE_SIZE:
        raise MalformedInputError("Signatures are %d bytes." % SIGNATURE_SIZE)
    return (Bn.from_binary(data[:SCALAR_SIZE]), Bn.from_binary(data[SCALAR_SIZE:]))


def sign_digest(priv, digest):
    """Signs a 32 byte digest, returning the 64 byte signature. The s
    component is always in the lower half of the order."""
    G = account_group()
    r, s = do_ecdsa_sign(G, priv, digest)
    o = G.order()
    if s > o // 2:
        s = o - s
    return encode_signature((r, s))


def verify_digest(pub, sig, digest):
    """Checks a 64 byte signature on a digest. Malformed signatures are
    reported as MalformedInputError, wrong ones as False."""
    G = account_group()
    r, s = decode_signature(sig)
    o = G.order()
    # Only low s, so that (r, o - s) is not a second signature
    if not (0 < r < o and 0 < s <= o // 2):
        return False
    return do_ecdsa_verify(G, pub, (r, s), digest)


# --- TESTS ---

import pytest
from hashlib import sha256


def test_generate():
    account, keys = generate_account_keys(3, 2)
    assert len(account.keys) == 3 and account.threshold == 2
    assert len(keys) == 3
    G = account_group()
    for k, priv in zip(account.keys, keys.secrets):
        assert k.point == priv * G.generator()
    account.check()

    keys.wipe()
    assert keys.secrets[0] == 0

    for n, t in [(0, 1), (256, 1), (2, 3), (2, 0)]:
        with pytest.raises(ConfigurationError):
            generate_account_keys(n, t)


def test_sign_verify():
    priv, pub = generate_key()
    digest = sha256(b"message").digest()
    sig = sign_digest(priv, digest)
    assert len(sig) == 64
    assert verify_digest(pub, sig, digest)
    assert not verify_digest(pub, sig, sha256(b"other").digest())

    flipped = bytes([sig[0] ^ 1]) + sig[1:]
    assert not verify_digest(pub, flipped, digest)

    _, pub2 = generate_key()
    assert not verify_digest(pub2, sig, digest)


def test_bad_encodings():
    priv, pub = generate_key()
    digest = sha256(b"message").digest()
    with pytest.raises(MalformedInputError):
        verify_digest(pub, b"\x01" * 63, digest)
    assert not verify_digest(pub, b"\x00" * 64, digest)
    assert not verify_digest(pub, b"\xff" * 64, digest)


def test_low_s():
    G = account_group()
    o = G.order()
    priv, pub = generate_key()
    for i in range(8):
        digest = sha256(b"message %d" % i).digest()
        sig = sign_digest(priv, digest)
        r, s = decode_signature(sig)
        assert s <= o // 2
        assert verify_digest(pub, sig, digest)

        # The mirrored signature holds for ECDSA but is refused
        assert do_ecdsa_verify(G, pub, (r, o - s), digest)
        assert not verify_digest(pub, encode_signature((r, o - s)), digest)
