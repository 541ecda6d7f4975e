"""Selective Disclosure Request support for the walette holder and verifier."""
