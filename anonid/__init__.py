# The anonid version
VERSION = '0.1.0'


__all__ = ["accounts", "credential", "demo", "elgamal", "errors", "groups", "issuance",
           "pack", "params", "pedersen", "proofs", "pssig", "revocation", "sharing",
           "types", "verify", "wire", "zeroize", "zkp"]

def run_tests():
    # These are only needed in case we test
    import pytest
    import os.path
    import glob

    # List all anonid files in the directory
    anonid_dir = os.path.dirname(os.path.realpath(__file__))
    pyfiles = glob.glob(os.path.join(anonid_dir, '*.py'))

    # Run the test suite
    print("Directory: %s" % pyfiles)
    res = pytest.main(["-v", "-x"] + pyfiles)
    print("Result: %s" % res)

    # Return exit result
    return res
