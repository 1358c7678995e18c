"""Commit-reveal randomness for server-drawn game outcomes.

A wager gets a fresh server seed whose SHA-256 is shown to the player up
front. All randomness for the round is derived from
HMAC-SHA256(server_seed, "client_seed:nonce"), and the seed itself is
revealed once the wager is settled, so the player can recompute the result.
"""
import hashlib
import hmac
import random
import secrets
from dataclasses import dataclass

_FLOAT_HEX_DIGITS = 13


@dataclass(frozen=True)
class FairSeed:
    server_seed: str
    client_seed: str
    nonce: int

    @property
    def server_seed_hash(self) -> str:
        return hash_seed(self.server_seed)

    def digest(self) -> str:
        msg = f"{self.client_seed}:{self.nonce}".encode()
        return hmac.new(self.server_seed.encode(), msg, hashlib.sha256).hexdigest()

    def uniform(self) -> float:
        """A float in [0, 1) taken from the first 52 bits of the digest."""
        return int(self.digest()[:_FLOAT_HEX_DIGITS], 16) / float(16**_FLOAT_HEX_DIGITS)

    def rng(self) -> random.Random:
        return random.Random(int(self.digest(), 16))


def new_server_seed() -> str:
    return secrets.token_hex(32)


def new_client_seed() -> str:
    return secrets.token_hex(8)


def hash_seed(server_seed: str) -> str:
    return hashlib.sha256(server_seed.encode()).hexdigest()


def issue_seed(client_seed: str | None, nonce: int) -> FairSeed:
    return FairSeed(
        server_seed=new_server_seed(),
        client_seed=client_seed or new_client_seed(),
        nonce=nonce,
    )
