## ElGamal encryption "in the exponent" over G1, used to encrypt the
## shares of IdCredPub to the anonymity revokers. Since the plaintext of a
## share is only ever needed as a group element, decryption returns m * g.

from .groups import bp_group, check_g1


def key_gen(g):
    """Generates a fresh key pair for the base g"""
    o = bp_group().order()
    priv = o.random()
    pub = priv * g
    return (pub, priv)


def enc(g, pub, m, k=None):
    """Encrypts m * g to pub. Returns the ciphertext and the randomness used."""
    if k is None:
        k = bp_group().order().random()
    a = k * g
    b = k * pub + m * g
    return (a, b), k


def dec(priv, c):
    """Decrypt a ciphertext, returning the plaintext group element"""
    o = bp_group().order()
    a, b = c
    return b + ((o - priv) % o) * a


def check_ciphertext(c):
    """Raises MalformedInputError unless both components are valid G1 elements."""
    a, b = c
    check_g1(a, "ciphertext")
    check_g1(b, "ciphertext")
    return c


def test_elgamal():
    G = bp_group()
    g = G.gen1()
    o = G.order()
    (pub, priv) = key_gen(g)

    m = o.random()
    c, k = enc(g, pub, m)
    assert dec(priv, c) == m * g
    assert c[0] == k * g

    # Wrong key
    (_, priv2) = key_gen(g)
    assert not dec(priv2, c) == m * g


def test_check_ciphertext():
    import pytest
    from .errors import MalformedInputError
    G = bp_group()
    g = G.gen1()
    (pub, _) = key_gen(g)
    c, _ = enc(g, pub, G.order().random())
    assert check_ciphertext(c) == c

    with pytest.raises(MalformedInputError):
        check_ciphertext((c[0], G.order()))
    with pytest.raises(MalformedInputError):
        check_ciphertext((c[0], G.gen2()))
