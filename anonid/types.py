"""The records of the ledger and the public information of the parties.

Ledger records (``CredentialDeploymentInfo``, ``InitialCredentialDeploymentInfo``
and their parts) use a fixed big-endian layout, with explicit length prefixes
for every variable length field, so that independent implementations agree
byte for byte. Every record has ``write(writer)``, ``read(reader)``,
``to_bytes()`` and ``from_bytes(data)``; ``from_bytes`` rejects trailing bytes.

Decoding checks lengths, tags, ranges and group membership, and raises
``DeserializationError``. The semantic constraints that a record may be built
in memory without (key counts, thresholds) are checked by ``check()``, which
raises ``MalformedInputError``.

The public keys of identity providers and anonymity revokers (``IpInfo``,
``ArInfo``) are not ledger records and are exported with ``anonid.pack``.
"""

from hashlib import sha256

from bplib.bp import G1Elem
from petlib.bn import Bn
from petlib.ec import EcPt

from .errors import DeserializationError, MalformedInputError
from .elgamal import check_ciphertext
from .groups import bp_group, account_group, check_g1, check_account_point
from .pack import encode, decode
from .pssig import PublicKey
from .wire import Reader, encode_with, decode_with
from .zeroize import wipe_bn

MAX_ATTRIBUTE_VALUE = 31
ADDRESS_SIZE = 32
G1_SIZE = 33
ACCOUNT_KEY_SIZE = 33
SIGNATURE_SIZE = 64

# Verification key schemes; only one is defined.
SCHEME_SECP256K1 = 0

ACCOUNT_EXISTING = 0
ACCOUNT_NEW = 1

CREDENTIAL_INITIAL = 0
CREDENTIAL_NORMAL = 1


class Record(object):
    """Common conversions of the ledger records."""

    def to_bytes(self):
        return encode_with(lambda w, v: v.write(w), self)

    @classmethod
    def from_bytes(cls, data):
        return decode_with(cls.read, data)

    def __eq__(self, other):
        return type(self) == type(other) and self.to_bytes() == other.to_bytes()

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash(self.to_bytes())


def write_g1(w, elem):
    w.raw(elem.export(), G1_SIZE)


def read_g1(r, what="group element"):
    data = r.raw(G1_SIZE)
    try:
        elem = G1Elem.from_bytes(data, bp_group())
    except Exception:  # the bindings raise a plain Exception on bad encodings
        raise DeserializationError("Cannot decode %s." % what)
    try:
        return check_g1(elem, what)
    except MalformedInputError as e:
        raise DeserializationError(str(e))


class YearMonth(Record):
    """A year in [1000, 9999] and a month in [1, 12]."""

    def __init__(self, year, month):
        if not 1000 <= year <= 9999 or not 1 <= month <= 12:
            raise MalformedInputError("Invalid year and month %r-%r." % (year, month))
        self.year = year
        self.month = month

    def scalar(self):
        """The value signed by identity providers, e.g. 202405."""
        return Bn(self.year * 100 + self.month)

    def write(self, w):
        w.u16(self.year)
        w.u8(self.month)

    @staticmethod
    def read(r):
        year, month = r.u16(), r.u8()
        try:
            return YearMonth(year, month)
        except MalformedInputError as e:
            raise DeserializationError(str(e))

    def __lt__(self, other):
        return (self.year, self.month) < (other.year, other.month)

    def __le__(self, other):
        return (self.year, self.month) <= (other.year, other.month)

    def __repr__(self):
        return "YearMonth(%d, %d)" % (self.year, self.month)


class AttributeValue(Record):
    """An attribute value of at most 31 bytes."""

    def __init__(self, value):
        if isinstance(value, str):
            value = value.encode("utf8")
        if not isinstance(value, bytes) or len(value) > MAX_ATTRIBUTE_VALUE:
            raise MalformedInputError("Attribute values are at most %d bytes." % MAX_ATTRIBUTE_VALUE)
        self.value = value

    def scalar(self):
        """An injective encoding as a scalar below the group order."""
        return Bn.from_binary(bytes([len(self.value)]) + self.value)

    def write(self, w):
        w.u8(len(self.value))
        w.raw(self.value)

    @staticmethod
    def read(r):
        size = r.u8()
        if size > MAX_ATTRIBUTE_VALUE:
            raise DeserializationError("Attribute value of %d bytes." % size)
        return AttributeValue(r.raw(size))

    def __repr__(self):
        return "AttributeValue(%r)" % (self.value,)


def _attribute_map(items):
    out = {}
    for tag, value in items.items():
        if not isinstance(tag, int) or not 0 <= tag <= 255:
            raise MalformedInputError("Attribute tags are in [0, 255].")
        if not isinstance(value, AttributeValue):
            value = AttributeValue(value)
        out[tag] = value
    return out


class AttributeList(object):
    """The attributes an identity provider vouches for, by tag, and the
    validity period of the identity object. Absent tags hold the empty value."""

    def __init__(self, valid_to, created_at, attributes):
        self.valid_to = valid_to
        self.created_at = created_at
        self.attributes = _attribute_map(attributes)

    def value(self, tag):
        return self.attributes.get(tag, AttributeValue(b""))

    def scalars(self, num_attributes):
        if self.attributes and max(self.attributes) >= num_attributes:
            raise MalformedInputError("Attribute tag beyond the %d slots." % num_attributes)
        return [self.value(t).scalar() for t in range(num_attributes)]


class Policy(Record):
    """The validity period and the attributes revealed on chain."""

    def __init__(self, valid_to, created_at, revealed):
        self.valid_to = valid_to
        self.created_at = created_at
        self.revealed = _attribute_map(revealed)

    def write(self, w):
        self.valid_to.write(w)
        self.created_at.write(w)
        w.u16(len(self.revealed))
        for tag in sorted(self.revealed):
            w.u8(tag)
            self.revealed[tag].write(w)

    @staticmethod
    def read(r):
        valid_to = YearMonth.read(r)
        created_at = YearMonth.read(r)
        revealed = {}
        last = -1
        for _ in range(r.u16()):
            tag = r.u8()
            if tag <= last:
                raise DeserializationError("Policy tags must be strictly ascending.")
            last = tag
            revealed[tag] = AttributeValue.read(r)
        return Policy(valid_to, created_at, revealed)


class ChainArData(Record):
    """The encryption of one share of IdCredPub to an anonymity revoker."""

    def __init__(self, ciphertext):
        self.ciphertext = tuple(ciphertext)

    def write(self, w):
        write_g1(w, self.ciphertext[0])
        write_g1(w, self.ciphertext[1])

    @staticmethod
    def read(r):
        return ChainArData((read_g1(r, "ciphertext"), read_g1(r, "ciphertext")))


class AccountVerifyKey(Record):
    """A signature verification key of an account."""

    def __init__(self, point, scheme=SCHEME_SECP256K1):
        self.point = point
        self.scheme = scheme

    def write(self, w):
        w.u8(self.scheme)
        w.raw(self.point.export(), ACCOUNT_KEY_SIZE)

    @staticmethod
    def read(r):
        scheme = r.u8()
        if scheme != SCHEME_SECP256K1:
            raise DeserializationError("Unknown signature scheme %d." % scheme)
        data = r.raw(ACCOUNT_KEY_SIZE)
        try:
            point = EcPt.from_binary(data, account_group())
        except Exception:  # the bindings raise a plain Exception on bad encodings
            raise DeserializationError("Cannot decode account key.")
        try:
            check_account_point(point)
        except MalformedInputError as e:
            raise DeserializationError(str(e))
        return AccountVerifyKey(point, scheme)


class KeySet(Record):
    """A list of account verification keys and a signature threshold."""

    def __init__(self, keys, threshold):
        self.keys = list(keys)
        self.threshold = threshold

    def check(self):
        if not 1 <= len(self.keys) <= 255:
            raise MalformedInputError("Accounts have between 1 and 255 keys, not %d." % len(self.keys))
        if not 1 <= self.threshold <= len(self.keys):
            raise MalformedInputError("Signature threshold %d for %d keys." % (self.threshold, len(self.keys)))
        for k in self.keys:
            check_account_point(k.point)
        return self

    def write(self, w):
        w.u8(len(self.keys))
        for k in self.keys:
            k.write(w)
        w.u8(self.threshold)

    @classmethod
    def read(cls, r):
        keys = [AccountVerifyKey.read(r) for _ in range(r.u8())]
        return cls(keys, r.u8())


class InitialCredentialAccount(KeySet):
    """The keys of an account created by an identity provider."""


class ExistingAccount(Record):
    """A credential deployed onto an existing account."""

    is_new = False

    def __init__(self, address):
        if not isinstance(address, bytes) or len(address) != ADDRESS_SIZE:
            raise MalformedInputError("Account addresses are %d bytes." % ADDRESS_SIZE)
        self.address = address

    def check(self):
        return self

    def write(self, w):
        w.u8(ACCOUNT_EXISTING)
        w.raw(self.address, ADDRESS_SIZE)


class NewAccount(KeySet):
    """A credential creating a new account with the given keys."""

    is_new = True

    def write(self, w):
        w.u8(ACCOUNT_NEW)
        KeySet.write(self, w)


def read_credential_account(r):
    tag = r.u8()
    if tag == ACCOUNT_EXISTING:
        return ExistingAccount(r.raw(ADDRESS_SIZE))
    if tag == ACCOUNT_NEW:
        return NewAccount.read(r)
    raise DeserializationError("Unknown account tag %d." % tag)


def account_address(reg_id):
    """The address of the account created with the pseudonym reg_id."""
    return sha256(reg_id.export()).digest()


class CredentialDeploymentValues(Record):
    """The public part of a credential."""

    def __init__(self, account, reg_id, ip_identity, threshold, ar_data, policy):
        self.account = account
        self.reg_id = reg_id
        self.ip_identity = ip_identity
        self.threshold = threshold
        self.ar_data = dict(ar_data)
        self.policy = policy

    def address(self):
        """The account the credential is deployed to."""
        if self.account.is_new:
            return account_address(self.reg_id)
        return self.account.address

    def check(self):
        """Structural constraints, checked before any cryptography."""
        self.account.check()
        check_g1(self.reg_id, "registration id")
        if self.threshold < 1:
            raise MalformedInputError("The revocation threshold must be at least 1.")
        if len(self.ar_data) < self.threshold:
            raise MalformedInputError("%d anonymity revokers for a threshold of %d."
                                      % (len(self.ar_data), self.threshold))
        for ar_identity, data in self.ar_data.items():
            if not 0 < ar_identity < 2 ** 32:
                raise MalformedInputError("Invalid anonymity revoker identity %r." % (ar_identity,))
            check_ciphertext(data.ciphertext)
        return self

    def write(self, w):
        self.account.write(w)
        write_g1(w, self.reg_id)
        w.u32(self.ip_identity)
        w.u8(self.threshold)
        w.u16(len(self.ar_data))
        for ar_identity in sorted(self.ar_data):
            w.u32(ar_identity)
            self.ar_data[ar_identity].write(w)
        self.policy.write(w)

    @staticmethod
    def read(r):
        account = read_credential_account(r)
        reg_id = read_g1(r, "registration id")
        ip_identity = r.u32()
        threshold = r.u8()
        if threshold == 0:
            raise DeserializationError("Zero revocation threshold.")
        ar_data = {}
        last = 0
        for _ in range(r.u16()):
            ar_identity = r.u32()
            if ar_identity <= last:
                raise DeserializationError("Anonymity revokers must be strictly ascending and nonzero.")
            last = ar_identity
            ar_data[ar_identity] = ChainArData.read(r)
        policy = Policy.read(r)
        return CredentialDeploymentValues(account, reg_id, ip_identity, threshold, ar_data, policy)


class CredentialDeploymentInfo(Record):
    """A credential with its proofs."""

    def __init__(self, values, proofs):
        self.values = values
        self.proofs = proofs

    def write(self, w):
        self.values.write(w)
        w.u32(len(self.proofs))
        w.raw(self.proofs)

    @staticmethod
    def read(r):
        values = CredentialDeploymentValues.read(r)
        proofs = r.raw(r.u32())
        return CredentialDeploymentInfo(values, proofs)


class InitialCredentialDeploymentValues(Record):
    """The public part of a credential signed directly by an identity provider."""

    def __init__(self, account, reg_id, ip_identity, policy):
        self.account = account
        self.reg_id = reg_id
        self.ip_identity = ip_identity
        self.policy = policy

    def address(self):
        return account_address(self.reg_id)

    def check(self):
        self.account.check()
        check_g1(self.reg_id, "registration id")
        return self

    def write(self, w):
        self.account.write(w)
        write_g1(w, self.reg_id)
        w.u32(self.ip_identity)
        self.policy.write(w)

    @staticmethod
    def read(r):
        account = InitialCredentialAccount.read(r)
        reg_id = read_g1(r, "registration id")
        ip_identity = r.u32()
        policy = Policy.read(r)
        return InitialCredentialDeploymentValues(account, reg_id, ip_identity, policy)


class InitialCredentialDeploymentInfo(Record):
    """Initial credential values and the 64 byte identity provider signature."""

    def __init__(self, values, sig):
        self.values = values
        self.sig = sig

    def write(self, w):
        self.values.write(w)
        w.raw(self.sig, SIGNATURE_SIZE)

    @staticmethod
    def read(r):
        values = InitialCredentialDeploymentValues.read(r)
        return InitialCredentialDeploymentInfo(values, r.raw(SIGNATURE_SIZE))


def write_account_credential(w, cred):
    """Writes either kind of credential, preceded by its tag."""
    if isinstance(cred, InitialCredentialDeploymentInfo):
        w.u8(CREDENTIAL_INITIAL)
    elif isinstance(cred, CredentialDeploymentInfo):
        w.u8(CREDENTIAL_NORMAL)
    else:
        raise MalformedInputError("Not a credential: %r" % (type(cred),))
    cred.write(w)


def read_account_credential(r):
    tag = r.u8()
    if tag == CREDENTIAL_INITIAL:
        return InitialCredentialDeploymentInfo.read(r)
    if tag == CREDENTIAL_NORMAL:
        return CredentialDeploymentInfo.read(r)
    raise DeserializationError("Unknown credential tag %d." % tag)


def account_credential_to_bytes(cred):
    return encode_with(write_account_credential, cred)


def account_credential_from_bytes(data):
    return decode_with(read_account_credential, data)


class IpInfo(object):
    """ The public information of an identity provider: its blind signature
    key and the key it signs initial credentials with. """

    def __init__(self, ip_identity, description, ps_public_key, cdi_verify_key):
        self.ip_identity = ip_identity
        self.description = description
        self.ps_public_key = ps_public_key
        self.cdi_verify_key = cdi_verify_key

    def export(self):
        return encode([self.ip_identity, self.description,
                       self.ps_public_key.export(), self.cdi_verify_key])

    @staticmethod
    def from_bytes(data):
        try:
            ip_identity, description, pk, vk = decode(data)
        except (TypeError, ValueError):
            raise DeserializationError("Malformed identity provider information.")
        if not isinstance(ip_identity, int) or not 0 <= ip_identity < 2 ** 32 \
                or not isinstance(description, str) or not isinstance(pk, bytes):
            raise DeserializationError("Malformed identity provider information.")
        try:
            check_account_point(vk, "identity provider key")
        except MalformedInputError as e:
            raise DeserializationError(str(e))
        vk = EcPt.from_binary(vk.export(), account_group())
        return IpInfo(ip_identity, description, PublicKey.from_bytes(pk), vk)

    def __eq__(self, other):
        return isinstance(other, IpInfo) and self.export() == other.export()

    def __ne__(self, other):
        return not self.__eq__(other)


class IpSecretKey(object):
    """ The blind signature key and the initial credential signing key. """

    def __init__(self, ps_secret_key, cdi_sign_key):
        self.ps_secret_key = ps_secret_key
        self.cdi_sign_key = cdi_sign_key

    def wipe(self):
        self.ps_secret_key.wipe()
        wipe_bn(self.cdi_sign_key)


class ArInfo(object):
    """ The public information of an anonymity revoker. """

    def __init__(self, ar_identity, description, public_key):
        self.ar_identity = ar_identity
        self.description = description
        self.public_key = public_key

    def export(self):
        return encode([self.ar_identity, self.description, self.public_key])

    @staticmethod
    def from_bytes(data):
        try:
            ar_identity, description, pk = decode(data)
        except (TypeError, ValueError):
            raise DeserializationError("Malformed anonymity revoker information.")
        if not isinstance(ar_identity, int) or not 0 < ar_identity < 2 ** 32 \
                or not isinstance(description, str):
            raise DeserializationError("Malformed anonymity revoker information.")
        try:
            check_g1(pk, "anonymity revoker key")
        except MalformedInputError as e:
            raise DeserializationError(str(e))
        return ArInfo(ar_identity, description, pk)

    def __eq__(self, other):
        return isinstance(other, ArInfo) and self.export() == other.export()

    def __ne__(self, other):
        return not self.__eq__(other)


class ArSecretKey(object):
    """ The ElGamal decryption key of an anonymity revoker. """

    def __init__(self, ar_identity, secret):
        self.ar_identity = ar_identity
        self.secret = secret

    def wipe(self):
        wipe_bn(self.secret)


# --- TESTS ---

import pytest


def _policy():
    return Policy(YearMonth(2030, 12), YearMonth(2024, 5), {0: b"John", 5: "DK"})


def _keyset(n):
    G = account_group()
    return [AccountVerifyKey(G.order().random() * G.generator()) for _ in range(n)]


def test_year_month():
    ym = YearMonth(2024, 5)
    assert ym.to_bytes() == b"\x07\xe8\x05"
    assert YearMonth.from_bytes(b"\x07\xe8\x05") == ym
    assert ym.scalar() == 202405
    assert YearMonth(2024, 5) < YearMonth(2024, 6)
    for bad in [(999, 1), (10000, 1), (2000, 0), (2000, 13)]:
        with pytest.raises(MalformedInputError):
            YearMonth(*bad)
    with pytest.raises(DeserializationError):
        YearMonth.from_bytes(b"\x07\xe8\x0d")


def test_attribute_value():
    v = AttributeValue(b"abc")
    assert v.to_bytes() == b"\x03abc"
    assert AttributeValue.from_bytes(b"\x03abc") == v
    assert AttributeValue(b"").scalar() == 0
    assert AttributeValue(b"\x00").scalar() != AttributeValue(b"").scalar()
    with pytest.raises(MalformedInputError):
        AttributeValue(b"x" * 32)
    with pytest.raises(DeserializationError):
        AttributeValue.from_bytes(b"\x20" + b"x" * 32)
    with pytest.raises(DeserializationError):
        AttributeValue.from_bytes(b"\x03ab")


def test_policy():
    p = _policy()
    data = p.to_bytes()
    assert data[6:8] == b"\x00\x02"
    assert data[8:9] == b"\x00" and data[14:15] == b"\x05"
    assert Policy.from_bytes(data) == p

    # Tags out of order
    swapped = data[:8] + data[14:] + data[8:14]
    with pytest.raises(DeserializationError):
        Policy.from_bytes(swapped)
    with pytest.raises(DeserializationError):
        Policy.from_bytes(data + b"\x00")


def test_accounts():
    keys = _keyset(2)
    acc = NewAccount(keys, 2)
    data = acc.to_bytes()
    assert data[:2] == b"\x01\x02" and len(data) == 2 + 2 * 34 + 1
    assert read_credential_account(Reader(data)) == acc

    existing = ExistingAccount(b"\x11" * 32)
    assert read_credential_account(Reader(existing.to_bytes())) == existing

    with pytest.raises(MalformedInputError):
        NewAccount([], 1).check()
    with pytest.raises(MalformedInputError):
        NewAccount(keys, 3).check()
    with pytest.raises(MalformedInputError):
        NewAccount(keys, 0).check()
    with pytest.raises(DeserializationError):
        read_credential_account(Reader(b"\x02"))
    with pytest.raises(MalformedInputError):
        ExistingAccount(b"\x11" * 31)


def test_bad_points():
    r = Reader(b"\x02" + b"\xff" * 32)
    with pytest.raises(DeserializationError):
        read_g1(r)
    with pytest.raises(DeserializationError):
        AccountVerifyKey.read(Reader(b"\x00\x05" + b"\x00" * 32))
    with pytest.raises(DeserializationError):
        AccountVerifyKey.read(Reader(b"\x01" + _keyset(1)[0].point.export()))


def test_credential_values():
    G = bp_group()
    g = G.gen1()
    o = G.order()
    ar_data = dict((i, ChainArData((o.random() * g, o.random() * g))) for i in [7, 3])
    values = CredentialDeploymentValues(NewAccount(_keyset(1), 1), o.random() * g,
                                        5, 2, ar_data, _policy())
    values.check()
    cdi = CredentialDeploymentInfo(values, b"proofs")
    data = cdi.to_bytes()
    assert data.endswith(b"\x00\x00\x00\x06proofs")
    cdi2 = CredentialDeploymentInfo.from_bytes(data)
    assert cdi2 == cdi
    assert sorted(cdi2.values.ar_data) == [3, 7]
    assert cdi2.values.address() == account_address(values.reg_id)

    with pytest.raises(DeserializationError):
        CredentialDeploymentInfo.from_bytes(data[:-1])
    with pytest.raises(DeserializationError):
        CredentialDeploymentInfo.from_bytes(data + b"\x00")

    values.threshold = 3
    with pytest.raises(MalformedInputError):
        values.check()


def test_account_credential():
    G = bp_group()
    values = InitialCredentialDeploymentValues(InitialCredentialAccount(_keyset(1), 1),
                                               G.order().random() * G.gen1(), 9, _policy())
    icdi = InitialCredentialDeploymentInfo(values, b"\x01" * 64)
    data = account_credential_to_bytes(icdi)
    assert data[0:1] == b"\x00"
    assert account_credential_from_bytes(data) == icdi
    with pytest.raises(DeserializationError):
        account_credential_from_bytes(b"\x02" + data[1:])
    with pytest.raises(MalformedInputError):
        InitialCredentialDeploymentInfo(values, b"\x01" * 63).to_bytes()


def test_party_info():
    from .pssig import keygen
    G = bp_group()
    _, pk = keygen(3)
    EG = account_group()
    ip = IpInfo(1, "Test IP", pk, EG.order().random() * EG.generator())
    assert IpInfo.from_bytes(ip.export()) == ip

    ar = ArInfo(2, "Test AR", G.order().random() * G.gen1())
    assert ArInfo.from_bytes(ar.export()) == ar
    with pytest.raises(DeserializationError):
        ArInfo.from_bytes(ArInfo(0, "Zero", ar.public_key).export())
