"""Genesis parameters shared by every party.

The ``GlobalContext`` is created once from a genesis string and never changes
afterwards; all generators are derived by hashing into G1 so nobody knows
discrete logarithms between them.
"""

import logging

from .errors import ConfigurationError, DeserializationError
from .groups import bp_group, account_group, check_g1
from .pack import encode, decode
from .pedersen import CommitmentKey

log = logging.getLogger(__name__)

DEFAULT_GENESIS = b"anonid genesis"

# Names of the attribute slots, in tag order.
ATTRIBUTE_NAMES = [
    "firstName",
    "lastName",
    "sex",
    "dob",
    "countryOfResidence",
    "nationality",
    "idDocType",
    "idDocNo",
    "idDocIssuer",
    "idDocIssuedAt",
    "idDocExpiresAt",
    "nationalIdNo",
    "taxIdNo",
]

# Positions of the identity provider signed messages that precede the
# attributes.
SLOT_ID_CRED_SEC = 0
SLOT_PRF_KEY = 1
SLOT_CREATED_AT = 2
SLOT_VALID_TO = 3
NUM_FIXED_SLOTS = 4


def attribute_slot(tag):
    """The signed message position of attribute tag."""
    return NUM_FIXED_SLOTS + tag


class GlobalContext(object):
    """ The read-only cryptographic parameters fixed at genesis.

    Attributes:
        group (BpGroup): the pairing group.
        order (Bn): its prime order.
        g, g2: the generators of G1 and G2; g is also the base of IdCredPub
            and of the anonymity revokers' ElGamal keys.
        h: the blinding base of all Pedersen commitments.
        commitment_key (CommitmentKey): one base per attribute slot, plus h.
        scalar_key (CommitmentKey): commitments to a single scalar under g, h.
        account_group (EcGroup): the group of account verification keys.
    """

    def __init__(self, genesis_string, h, attribute_bases):
        if len(attribute_bases) < 1 or len(attribute_bases) > 255:
            raise ConfigurationError("Between 1 and 255 attribute slots are supported.")

        G = bp_group()
        self.genesis_string = genesis_string
        self.group = G
        self.order = G.order()
        self.g = G.gen1()
        self.g2 = G.gen2()
        self.h = h
        self.attribute_bases = list(attribute_bases)
        self.commitment_key = CommitmentKey(self.attribute_bases, h)
        self.scalar_key = CommitmentKey([self.g], h)
        self.account_group = account_group()
        self._export = encode([genesis_string, h, self.attribute_bases])
        self.locked = True

    def __setattr__(self, name, value):
        if getattr(self, "locked", False):
            raise AttributeError("The global context is read-only.")
        object.__setattr__(self, name, value)

    @staticmethod
    def generate(genesis_string=DEFAULT_GENESIS, num_attributes=len(ATTRIBUTE_NAMES)):
        """Derives the parameters from a genesis string."""
        if not 1 <= num_attributes <= 255:
            raise ConfigurationError("Between 1 and 255 attribute slots are supported.")
        G = bp_group()
        h = G.hashG1(b"anonid/h/" + genesis_string)
        bases = [G.hashG1(b"anonid/attribute/%d/" % i + genesis_string)
                 for i in range(num_attributes)]
        log.debug("Generated global context with %d attribute slots", num_attributes)
        return GlobalContext(genesis_string, h, bases)

    @property
    def num_attributes(self):
        return len(self.attribute_bases)

    @property
    def num_messages(self):
        """The number of messages an identity provider signs."""
        return NUM_FIXED_SLOTS + self.num_attributes

    def pair(self, g1, g2):
        return self.group.pair(g1, g2)

    def export(self):
        return self._export

    @staticmethod
    def from_bytes(data):
        try:
            genesis_string, h, bases = decode(data)
        except (TypeError, ValueError):
            raise DeserializationError("Malformed global context.")
        if not isinstance(genesis_string, bytes) or not isinstance(bases, list):
            raise DeserializationError("Malformed global context.")
        check_g1(h, "blinding base")
        for b in bases:
            check_g1(b, "attribute base")
        return GlobalContext(genesis_string, h, bases)

    def __eq__(self, other):
        return isinstance(other, GlobalContext) and self.export() == other.export()

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash(self._export)


# --- TESTS ---

import pytest


def test_generate():
    gc = GlobalContext.generate()
    assert gc.num_attributes == len(ATTRIBUTE_NAMES)
    assert gc.num_messages == NUM_FIXED_SLOTS + len(ATTRIBUTE_NAMES)
    assert len(gc.commitment_key) == gc.num_attributes
    assert not gc.h == gc.g
    assert GlobalContext.generate() == gc


def test_different_genesis():
    assert GlobalContext.generate(b"one") != GlobalContext.generate(b"two")


def test_read_only():
    gc = GlobalContext.generate(num_attributes=2)
    with pytest.raises(AttributeError):
        gc.h = gc.g


def test_export():
    gc = GlobalContext.generate(num_attributes=3)
    gc2 = GlobalContext.from_bytes(gc.export())
    assert gc2 == gc
    assert gc2.attribute_bases[2] == gc.attribute_bases[2]

    with pytest.raises(DeserializationError):
        GlobalContext.from_bytes(gc.export()[:-1])


def test_bad_sizes():
    with pytest.raises(ConfigurationError):
        GlobalContext.generate(num_attributes=0)
    with pytest.raises(ConfigurationError):
        GlobalContext.generate(num_attributes=256)
