## Non-interactive proofs of knowledge of discrete log representations,
#  compiled from linear relations into a single Schnorr-style sigma protocol
#  made non-interactive with Fiat-Shamir.
#
#  A statement is a conjunction of linear relations between public group
#  elements. Relations may live in different groups (G1, G2 and GT of the
#  pairing group, or the account key curve): every relation carries the order
#  of its group, and all of them are answered against a single challenge.
#
# The construction is that of Chapter 3 of
# "Rethinking Public Key Infrastructures and Digital Certificates
# Building in Privacy" By Stefan Brands, MIT Press (2000)

import re
from hashlib import sha256

from bplib.bp import GTElem
from petlib.bn import Bn

from .errors import ProofError
from .pack import encode
from .zeroize import SecretScope

_NAME = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")


def challenge(elements):
    """Hashes a transcript, encoded without ambiguity."""
    H = sha256()
    H.update(encode(elements))
    return H.digest()


def _add(a, b):
    # GT is written multiplicatively by the pairing library.
    if isinstance(a, GTElem):
        return a.mul(b)
    return a + b


def _scale(k, a):
    if isinstance(a, GTElem):
        # exp leaves the base unchanged for a zero exponent
        k = k % a.group.order()
        if k == 0:
            return GTElem.one(a.group)
        return a.exp(k)
    return k * a


class Val:
    """A scalar of a statement."""
    def val(self, env):
        return env[self.name]


class Pub(Val):
    """A scalar the prover publishes with the proof."""
    def __init__(self, zkp, name):
        self.name = name
        self.zkp = zkp
        assert name not in zkp.Pub
        zkp.Pub[name] = self


class ConstPub(Pub):
    """A scalar the verifier already knows."""
    def __init__(self, zkp, name):
        self.name = name
        self.zkp = zkp
        assert name not in zkp.Const
        zkp.Const[name] = self


class Sec(Val):
    """A scalar only the prover knows."""
    def __init__(self, zkp, name):
        self.name = name
        self.zkp = zkp
        assert name not in zkp.Sec
        zkp.Sec[name] = self


class Gen(object):
    """A group element, or an expression over group elements. Named ones are published by the prover."""
    def __init__(self, zkp, name=None, prove=False, construction=None):
        self.name = name
        self.zkp = zkp

        if name:
            assert name not in zkp.Pub
            zkp.Pub[name] = self

        self.prove = prove
        self.construction = construction

    def get_repr(self):
        if self.name or self.construction[0] == "Gen*":
            return [self]
        elif self.construction[0] == "Gen+":
            return self.construction[1:]

        raise ProofError("Unknown Gen type")

    def __add__(self, other):
        assert isinstance(other, Gen)
        assert self.zkp == other.zkp

        prove = self.prove or other.prove
        c = ["Gen+"] + self.get_repr() + other.get_repr()
        return Gen(self.zkp, prove=prove, construction=c)

    def __rmul__(self, other):
        assert isinstance(other, Val)
        assert not self.prove
        assert self.zkp == other.zkp

        prove = isinstance(other, Sec)
        if self.construction and self.construction[0] == "Gen*":
            c = self.construction + [other]
        else:
            c = ["Gen*", self, other]

        return Gen(self.zkp, construction=c, prove=prove)

    def secrets(self):
        """The names of the secrets this expression depends on."""
        if self.name:
            return set()
        if self.construction[0] == "Gen+":
            names = set()
            for part in self.construction[1:]:
                names |= part.secrets()
            return names
        return set(v.name for v in self.construction[2:] if isinstance(v, Sec))

    def val(self, env):
        """Evaluates the expression in env."""

        ## Named elements come from env
        if self.name:
            return env[self.name]

        ## Sums
        if self.construction[0] == "Gen+":
            Sum = None
            for v in self.construction[1:]:
                x = v.val(env)
                Sum = x if Sum is None else _add(x, Sum)
            return Sum

        if self.construction[0] == "Gen*":
            base = self.construction[1].val(env)
            Prod = Bn(1)
            for v in self.construction[2:]:
                Prod = v.val(env) * Prod
            return _scale(Prod, base)

        raise ProofError("Unknown case")


class ConstGen(Gen):
    """A group element the verifier already knows."""
    def __init__(self, zkp, name):
        Gen.__init__(self, zkp, name=None)

        self.name = name
        assert name not in self.zkp.Const
        self.zkp.Const[name] = self


class ZKProof(object):
    """A conjunction of relations, proven together under one challenge."""

    def __init__(self, order, tag=b"anonid/zkp"):
        """Define a proof object, the default order of the groups in which the
        relations are carried, and a domain separation tag."""

        self.locked = False
        self.order = order
        self.tag = tag

        self.Const = {}
        self.Pub = {}
        self.Sec = {}
        self.proofs = []

        self.arrays = {}

        self.locked = True

    def add_proof(self, lhs, rhs, order=None):
        """Adds a proof obligation to show the rhs is the representation of the lhs,
        in a group of the given order (by default the order of the proof)."""
        assert isinstance(lhs, Gen)
        assert lhs.prove == False
        assert isinstance(rhs, Gen)
        assert rhs.prove == True
        assert self == lhs.zkp == rhs.zkp

        self.proofs.append((lhs, rhs, order if order is not None else self.order))

    def get(self, vtype, name, ignore_check=False):
        """Declares (or looks up) one variable, or a list of them."""
        assert vtype in [Gen, ConstGen, Sec, Pub, ConstPub]

        if isinstance(name, str):
            assert ignore_check or _NAME.match(name)
            return self._get(vtype, name)

        if isinstance(name, list):
            assert ignore_check or all(_NAME.match(n) for n in name)
            return [self._get(vtype, n) for n in name]

        raise ProofError("Wrong type of names: str or list(str)")

    def _get(self, vtype, name):
        for D in [self.Const, self.Pub, self.Sec]:
            if name in D:
                assert isinstance(D[name], vtype)
                return D[name]

        return vtype(self, name)

    def __setattr__(self, name, value):
        if getattr(self, "locked", False):
            assert name not in self.__dict__

            # zk.name = Type declares a variable
            v = self.get(value, name)
            object.__setattr__(self, name, v)
        else:
            object.__setattr__(self, name, value)

    def get_array(self, vtype, name, number, start=0):
        """Declares the variables name[start] .. name[start + number - 1]."""
        assert vtype in [Gen, ConstGen, Sec, Pub, ConstPub]
        assert _NAME.match(name)

        if name in self.arrays:
            assert self.arrays[name] == (number, start)
        else:
            self.arrays[name] = (number, start)

        names = ["%s[%i]" % (name, i) for i in range(start, start + number)]
        return self.get(vtype, names, True)

    def all_vars(self):
        return set(self.Const) | set(self.Pub) | set(self.Sec)

    def secret_orders(self):
        """Maps every secret to the order of the groups it is used in."""
        orders = {}
        for _, expr, order in self.proofs:
            for name in expr.secrets():
                if orders.setdefault(name, order) != order:
                    raise ProofError("Secret '%s' is used in groups of different order." % name)
        for name in self.Sec:
            orders.setdefault(name, self.order)
        return orders

    def _check_env(self, env):
        for v in self.all_vars():
            if v not in env:
                raise ProofError("Could not find variable %s in the environment." % repr(v))

    def _state(self, env, message):
        state = [self.tag, message]
        for v in sorted(self.Const.keys()):
            state += [env[v]]
        for v in sorted(self.Pub.keys()):
            state += [env[v]]
        return state

    def build_proof(self, env, message=b""):
        """Generates a proof within an environment of assigned public and secret
        variables. The witnesses are wiped before returning."""

        self._check_env(env)

        # Refuse to prove false statements
        for base, expr, _ in self.proofs:
            if not base.val(env) == expr.val(env):
                raise ProofError("Proof about '%s' does not hold." % base.name)

        orders = self.secret_orders()

        ## Statement and public values
        state = self._state(env, message)

        with SecretScope() as scope:
            ## Fresh nonces for the secrets
            witnesses = dict(env.items())
            for w in self.Sec.keys():
                witnesses[w] = scope.random(orders[w])

            ## Commitments
            for base, expr, _ in self.proofs:
                state += [expr.val(witnesses)]

            ## Challenge over the whole transcript
            c = Bn.from_binary(challenge(state)) % self.order

            ## Compute all the responses
            responses = {}
            for v in self.Pub.keys():
                responses[v] = env[v]
            for w in self.Sec.keys():
                responses[w] = (witnesses[w] - c * env[w]) % orders[w]

        return (c, responses)

    def verify_proof(self, env, proof, message=b"", strict=True):
        """Verifies a proof within an environment of assigned public only
        variables. Returns False for any transcript that is not a valid
        proof of the statement."""

        if strict:
            env_not = [k for k in env if k not in self.Const]
            if len(env_not):
                raise ProofError("Did not check: " + (", ".join(sorted(env_not))))

        try:
            c, responses = proof
        except (TypeError, ValueError):
            return False
        if not isinstance(c, Bn) or not 0 <= c < self.order:
            return False
        if not isinstance(responses, dict):
            return False

        ## Exactly the public values and the secrets of the statement
        if set(responses.keys()) != set(self.Pub) | set(self.Sec):
            return False

        orders = self.secret_orders()
        for w in self.Sec:
            r = responses[w]
            if not isinstance(r, Bn) or not 0 <= r < orders[w]:
                return False

        responses = dict(responses)
        for k in self.Const:
            if k not in env:
                raise ProofError("Could not find constant %s in the environment." % repr(k))
            responses[k] = env[k]

        ## Statement and public values
        state = self._state(responses, message)

        ## Commitments, recomputed from the responses
        for base, expr, _ in self.proofs:
            Cr = expr.val(responses)
            Cx = base.val(responses)
            state += [_add(Cr, _scale(c, Cx))]

        ## Challenge over the whole transcript
        c_prime = Bn.from_binary(challenge(state)) % self.order

        ## Same challenge
        return c == c_prime


class ZKEnv(object):
    """ Assigns values to the variables of a proof by attribute,
        checking every name against the statement.
    """

    def __init__(self, zkp):
        """ Binds the environment to zkp. """
        ## Bypass our own __setattr__
        object.__setattr__(self, "zkp", zkp)
        object.__setattr__(self, "env", {})

    def __setattr__(self, name, value):
        """ Lists fill an array of variables. """
        if isinstance(value, list):
            assert name in self.zkp.arrays
            number, start = self.zkp.arrays[name]
            assert len(value) == number

            for i, v in enumerate(value):
                self._set_var("%s[%i]" % (name, start + i), v)

        else:
            self._set_var(name, value)

    def _set_var(self, name, value):
        if name not in self.zkp.all_vars():
            raise ProofError("Variable name '%s' not known." % name)
        self.env[name] = value

    def __getattr__(self, name):
        if name not in self.zkp.all_vars():
            raise ProofError("Variable name '%s' not known." % name)
        return self.env[name]

    def get(self):
        """ The assignment, as a dict. """
        return self.env


# --- TESTS ---

import pytest


def _pedersen_setup():
    from .groups import bp_group
    G = bp_group()
    order = G.order()

    zk = ZKProof(order)
    g, h = zk.get(ConstGen, ["g", "h"])
    x, o = zk.get(Sec, ["x", "o"])
    Cxo = zk.get(Gen, "Cxo")
    zk.add_proof(Cxo, x*g + o*h)

    g1 = G.gen1()
    h1 = G.hashG1(b"zkp test h")
    bn_x, bn_o = order.random(), order.random()
    return zk, g1, h1, bn_x, bn_o, bn_x * g1 + bn_o * h1


def test_declarations():
    zk = ZKProof(Bn(7))
    g = zk.get(ConstGen, "g")
    assert zk.get(ConstGen, "g") is g

    # One name, one kind
    with pytest.raises(AssertionError):
        zk.get(Pub, "g")
    with pytest.raises(AssertionError):
        zk.get(Sec, "not a name")

    h = zk.get(ConstGen, "h")
    x, o = zk.get(Sec, ["x", "o"])
    y = zk.get(Pub, "y")
    Cx = zk.get(Gen, "Cx")
    zk.add_proof(Cx, x*g + o*(y*h))

    assert zk.all_vars() == set(["g", "h", "x", "o", "y", "Cx"])
    assert zk.secret_orders() == {"x": Bn(7), "o": Bn(7)}
    assert (o*(y*h)).secrets() == set(["o"])

    # The left side is public, the right side involves a secret
    with pytest.raises(AssertionError):
        zk.add_proof(x*g, Cx)


def test_commitment_opening():
    zk, g1, h1, bn_x, bn_o, C = _pedersen_setup()
    env = {"g": g1, "h": h1, "Cxo": C, "x": bn_x, "o": bn_o}
    proof = zk.build_proof(env, b"bound")

    assert zk.verify_proof({"g": g1, "h": h1}, proof, b"bound")
    assert not zk.verify_proof({"g": g1, "h": h1}, proof, b"unbound")
    assert not zk.verify_proof({"g": h1, "h": g1}, proof, b"bound")

    # The published commitment is part of the proof
    c, responses = proof
    assert responses["Cxo"] == C
    assert bn_x != 0 and bn_o != 0


def test_env_arrays():
    from .groups import bp_group
    G = bp_group()
    order = G.order()

    zk = ZKProof(order)
    g = zk.get(ConstGen, "g")
    xs = zk.get_array(Sec, "x", 3)
    Xs = zk.get_array(Gen, "X", 3)
    for x, X in zip(xs, Xs):
        zk.add_proof(X, x*g)

    secrets = [order.random() for _ in range(3)]
    env = ZKEnv(zk)
    env.g = G.gen1()
    env.x = secrets
    env.X = [s * G.gen1() for s in secrets]
    proof = zk.build_proof(env.get())

    check = ZKEnv(zk)
    check.g = G.gen1()
    assert zk.verify_proof(check.get(), proof)

    with pytest.raises(AssertionError):
        env.x = secrets[:2]


def test_shorthand_encryption():
    from .groups import bp_group
    G = bp_group()
    order = G.order()

    # Knowledge of the plaintext and randomness of an ElGamal ciphertext
    zk = ZKProof(order)
    zk.g, zk.pk = ConstGen, ConstGen
    zk.k, zk.m = Sec, Sec
    zk.a, zk.b = Gen, Gen
    zk.add_proof(zk.a, zk.k*zk.g)
    zk.add_proof(zk.b, zk.k*zk.pk + zk.m*zk.g)

    g = G.gen1()
    pk = order.random() * g
    k, m = order.random(), Bn(42)
    env = ZKEnv(zk)
    env.g, env.pk = g, pk
    env.a, env.b = k * g, k * pk + m * g
    env.k, env.m = k, m
    proof = zk.build_proof(env.get())

    check = ZKEnv(zk)
    check.g, check.pk = g, pk
    assert zk.verify_proof(check.get(), proof)
    with pytest.raises(AssertionError):
        zk.g = ConstGen


def test_env_errors():
    zk, g1, h1, bn_x, bn_o, C = _pedersen_setup()
    env = ZKEnv(zk)
    env.g, env.h = g1, h1
    env.Cxo = C
    env.x = bn_x

    with pytest.raises(ProofError) as excinfo:
        env.unknown = bn_x
    assert "'unknown' not known" in str(excinfo.value)

    # o is not assigned
    with pytest.raises(ProofError) as excinfo:
        zk.build_proof(env.get())
    assert "Could not find variable" in str(excinfo.value)

    env.o = bn_o + 1
    with pytest.raises(ProofError) as excinfo:
        zk.build_proof(env.get())
    assert "'Cxo' does not hold" in str(excinfo.value)


def test_tampered_responses():
    zk, ec_g, ec_h, bn_x, bn_o, ec_Cxo = _pedersen_setup()
    env = {"g": ec_g, "h": ec_h, "Cxo": ec_Cxo, "x": bn_x, "o": bn_o}
    c, responses = zk.build_proof(env)
    env_verify = {"g": ec_g, "h": ec_h}

    bad = dict(responses)
    bad["x"] = (bad["x"] + 1) % zk.order
    assert not zk.verify_proof(env_verify, (c, bad))

    # Public value changed
    bad = dict(responses)
    bad["Cxo"] = ec_Cxo + ec_g
    assert not zk.verify_proof(env_verify, (c, bad))

    # Unexpected, missing or out of range responses
    bad = dict(responses)
    bad["extra"] = Bn(1)
    assert not zk.verify_proof(env_verify, (c, bad))
    bad = dict(responses)
    del bad["o"]
    assert not zk.verify_proof(env_verify, (c, bad))
    bad = dict(responses)
    bad["o"] = bad["o"] + zk.order
    assert not zk.verify_proof(env_verify, (c, bad))
    assert not zk.verify_proof(env_verify, (c + zk.order, responses))
    assert not zk.verify_proof(env_verify, None)

    # Constants are not taken from the transcript
    with pytest.raises(ProofError):
        zk.verify_proof(dict(env_verify, Cxo=ec_Cxo), (c, responses))


def test_mixed_groups():
    from .groups import bp_group, account_group
    G = bp_group()
    order = G.order()
    EG = account_group()
    e_order = EG.order()

    zk = ZKProof(order)
    g, gt_base, acc_g = zk.get(ConstGen, ["g", "gt_base", "acc_g"])
    x, k = zk.get(Sec, ["x", "k"])
    X, T, K = zk.get(Gen, ["X", "T", "K"])
    zk.add_proof(X, x*g)
    zk.add_proof(T, x*gt_base)
    zk.add_proof(K, k*acc_g, e_order)

    assert zk.secret_orders() == {"x": order, "k": e_order}

    bn_x = order.random()
    bn_k = e_order.random()
    gt = G.pair(G.gen1(), G.gen2())
    env = {"g": G.gen1(), "gt_base": gt, "acc_g": EG.generator(),
           "X": bn_x * G.gen1(), "T": gt.exp(bn_x), "K": bn_k * EG.generator(),
           "x": bn_x, "k": bn_k}
    proof = zk.build_proof(env)

    env_verify = {"g": G.gen1(), "gt_base": gt, "acc_g": EG.generator()}
    assert zk.verify_proof(env_verify, proof)

    c, responses = proof
    bad = dict(responses, T=gt)
    assert not zk.verify_proof(env_verify, (c, bad))


def test_zero_exponent_gt():
    from .groups import bp_group
    G = bp_group()
    order = G.order()
    gt = G.pair(G.gen1(), G.gen2())

    assert _scale(Bn(0), gt) == GTElem.one(G)
    assert _scale(order, gt) == GTElem.one(G)
    assert _add(_scale(Bn(0), gt), gt) == gt

    # A zero secret in a relation over GT
    zk = ZKProof(order)
    gt_base, h = zk.get(ConstGen, ["gt_base", "h"])
    x, y = zk.get(Sec, ["x", "y"])
    T = zk.get(Gen, "T")
    zk.add_proof(T, x*gt_base + y*h)

    h_val = gt.exp(Bn(5))
    bn_y = order.random()
    env = {"gt_base": gt, "h": h_val, "T": _scale(bn_y, h_val), "x": Bn(0), "y": bn_y}
    proof = zk.build_proof(env)
    assert zk.verify_proof({"gt_base": gt, "h": h_val}, proof)


def test_conflicting_orders():
    zk = ZKProof(Bn(7))
    g, h = zk.get(ConstGen, ["g", "h"])
    x = zk.get(Sec, "x")
    A, B = zk.get(Gen, ["A", "B"])
    zk.add_proof(A, x*g)
    zk.add_proof(B, x*h, Bn(11))
    with pytest.raises(ProofError):
        zk.secret_orders()
