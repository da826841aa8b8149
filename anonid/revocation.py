"""Anonymity revocation.

Each anonymity revoker decrypts its share of ``IdCredPub`` from the
``ChainArData`` of a credential, and proves the decryption correct with a
Chaum-Pedersen proof. Any ``t`` shares then give back ``IdCredPub``, which the
identity provider can match to the real identity it recorded at issuance.

Example:
    >>> from anonid import demo
    >>> setup = demo.Setup(num_attributes=2, num_ars=3)
    >>> cdi, _ = setup.new_account_credential(threshold=2)
    >>> coordinator = RevocationCoordinator(setup.gc, setup.ar_infos, cdi.values)
    >>> for ar_identity in [3, 1]:
    ...     share = decrypt_share(setup.gc, setup.ar_secrets[ar_identity], cdi.values)
    ...     _ = coordinator.add_share(share)
    >>> coordinator.reconstruct() == setup.secrets.id_cred_pub(setup.gc)
    True

"""

import logging

from bplib.bp import G1Elem

from . import elgamal
from .errors import ConfigurationError, DeserializationError, MalformedInputError, \
    VerificationError
from .groups import check_g1, negate
from .pack import encode, decode
from .sharing import reconstruct_in_exponent
from .types import ArInfo, ArSecretKey
from .zkp import ZKProof, ConstGen, Sec

log = logging.getLogger(__name__)

DECRYPTION_TAG = b"anonid/share-decryption"


def generate_ar(gc, ar_identity, description=""):
    """Creates the keys of an anonymity revoker."""
    if not 0 < ar_identity < 2 ** 32:
        raise ConfigurationError("Anonymity revoker identities are in [1, 2^32).")
    pub, priv = elgamal.key_gen(gc.g)
    log.info("Generated anonymity revoker %d", ar_identity)
    return ArInfo(ar_identity, description, pub), ArSecretKey(ar_identity, priv)


class DecryptedShare(object):
    """A share ``f(i) g`` of IdCredPub and the proof it was decrypted correctly."""

    def __init__(self, ar_identity, share, proof):
        self.ar_identity = ar_identity
        self.share = share
        self.proof = proof


def _statement(gc):
    zk = ZKProof(gc.order, DECRYPTION_TAG)
    g, pk, c1, d = zk.get(ConstGen, ["g", "pk", "c1", "d"])
    sk = zk.get(Sec, "sk")
    zk.add_proof(pk, sk*g)
    zk.add_proof(d, sk*c1)
    return zk


def _env(gc, public_key, ciphertext, share):
    c1, c2 = ciphertext
    return {"g": gc.g, "pk": public_key, "c1": c1,
            "d": c2 + negate(gc.order, share)}


def _message(gc, ar_identity, values):
    return DECRYPTION_TAG + gc.export() + encode(ar_identity) + values.to_bytes()


def decrypt_share(gc, ar_secret, values):
    """Decrypts the share of ar_secret's revoker in the credential values."""
    ar_identity = ar_secret.ar_identity
    if ar_identity not in values.ar_data:
        raise MalformedInputError("Anonymity revoker %d holds no share." % ar_identity)
    ciphertext = values.ar_data[ar_identity].ciphertext
    share = elgamal.dec(ar_secret.secret, ciphertext)

    zk = _statement(gc)
    env = _env(gc, ar_secret.secret * gc.g, ciphertext, share)
    env["sk"] = ar_secret.secret
    c, responses = zk.build_proof(env, _message(gc, ar_identity, values))
    return DecryptedShare(ar_identity, share, encode([c, responses]))


def verify_decrypted_share(gc, ar_info, values, share):
    """True if share is the correct decryption for ar_info of its ciphertext."""
    if share.ar_identity != ar_info.ar_identity or share.ar_identity not in values.ar_data:
        return False
    if not isinstance(share.share, G1Elem):
        return False
    try:
        c, responses = decode(share.proof)
    except (DeserializationError, TypeError, ValueError):
        return False
    zk = _statement(gc)
    env = _env(gc, ar_info.public_key, values.ar_data[share.ar_identity].ciphertext, share.share)
    return zk.verify_proof(env, (c, responses), _message(gc, share.ar_identity, values))


def reconstruct_id_cred_pub(gc, shares, threshold):
    """Combines DecryptedShare objects, or (identity, share) pairs, into IdCredPub.

    Raises InsufficientSharesError with fewer than threshold distinct shares."""
    points = []
    for s in shares:
        if isinstance(s, DecryptedShare):
            s = (s.ar_identity, s.share)
        check_g1(s[1], "share")
        points.append(s)
    return reconstruct_in_exponent(points, threshold, gc.order)


class RevocationCoordinator(object):
    """Collects the shares of one credential, one revoker at a time."""

    def __init__(self, gc, ar_infos, values):
        self.gc = gc
        self.ar_infos = ar_infos
        self.values = values
        self.threshold = values.threshold
        self.shares = {}

    def add_share(self, share):
        """Checks and records a decrypted share. Returns the number collected."""
        if share.ar_identity in self.shares:
            raise MalformedInputError("Duplicate share from %d." % share.ar_identity)
        ar_info = self.ar_infos.get(share.ar_identity)
        if ar_info is None or share.ar_identity not in self.values.ar_data:
            raise MalformedInputError("Unexpected share from %d." % share.ar_identity)
        if not verify_decrypted_share(self.gc, ar_info, self.values, share):
            raise VerificationError("Invalid decryption from %d." % share.ar_identity)
        self.shares[share.ar_identity] = share
        log.info("Collected share %d of %d", len(self.shares), self.threshold)
        return len(self.shares)

    @property
    def ready(self):
        return len(self.shares) >= self.threshold

    def reconstruct(self):
        return reconstruct_id_cred_pub(self.gc, self.shares.values(), self.threshold)


# --- TESTS ---

import pytest
from itertools import combinations


def _credential(num_ars=4, threshold=3):
    from . import demo
    setup = demo.Setup(num_attributes=2, num_ars=num_ars)
    cdi, _ = setup.new_account_credential(threshold=threshold)
    return setup, cdi.values


def test_decrypt_and_verify():
    setup, values = _credential()
    gc = setup.gc
    share = decrypt_share(gc, setup.ar_secrets[2], values)
    assert verify_decrypted_share(gc, setup.ar_infos[2], values, share)
    assert not verify_decrypted_share(gc, setup.ar_infos[1], values, share)

    forged = DecryptedShare(2, share.share + gc.g, share.proof)
    assert not verify_decrypted_share(gc, setup.ar_infos[2], values, forged)

    with pytest.raises(ConfigurationError):
        generate_ar(gc, 0)


def test_threshold_subsets():
    from .errors import InsufficientSharesError
    setup, values = _credential(4, 3)
    gc = setup.gc
    id_cred_pub = setup.secrets.id_cred_pub(gc)
    shares = [decrypt_share(gc, setup.ar_secrets[i], values) for i in sorted(setup.ar_secrets)]

    for subset in combinations(shares, 3):
        assert reconstruct_id_cred_pub(gc, subset, 3) == id_cred_pub

    for subset in combinations(shares, 2):
        with pytest.raises(InsufficientSharesError):
            reconstruct_id_cred_pub(gc, subset, 3)


def test_coordinator():
    from .errors import InsufficientSharesError
    setup, values = _credential(3, 2)
    gc = setup.gc
    coordinator = RevocationCoordinator(gc, setup.ar_infos, values)
    share = decrypt_share(gc, setup.ar_secrets[1], values)
    assert coordinator.add_share(share) == 1
    assert not coordinator.ready
    with pytest.raises(InsufficientSharesError):
        coordinator.reconstruct()
    with pytest.raises(MalformedInputError):
        coordinator.add_share(share)

    bad = decrypt_share(gc, setup.ar_secrets[2], values)
    bad.share = bad.share + gc.g
    with pytest.raises(VerificationError):
        coordinator.add_share(bad)

    coordinator.add_share(decrypt_share(gc, setup.ar_secrets[3], values))
    assert coordinator.ready
    assert coordinator.reconstruct() == setup.secrets.id_cred_pub(gc)
