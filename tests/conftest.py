"""Shared fixtures: an in-memory mint that really signs, and a fake settlement wallet."""

from typing import Any, Callable

import pytest
from coincurve import PrivateKey, PublicKey

from lost_nuts.crypto import hash_to_curve, proof_y, random_blinding_factor, random_secret
from lost_nuts.models import RecoveryRequest
from lost_nuts.token import decode_token, encode_token_v4
from lost_nuts.types import MintError, Proof

KEYSET_ID = "009a1f293253e41e"
MINT_URL = "https://mint.example.com"

MINT_PRIVKEY = PrivateKey(bytes.fromhex("7f" * 32))
MINT_PUBKEY = MINT_PRIVKEY.public_key.format(compressed=True).hex()
KEYS = {str(2**i): MINT_PUBKEY for i in range(11)}


def make_output(amount: int = 1) -> dict[str, Any]:
    """Serialized output the way a client derives it from its seed."""
    secret = random_secret()
    return {
        "blindedMessage": {
            "amount": amount,
            "B_": PrivateKey().public_key.format(compressed=True).hex(),
            "id": KEYSET_ID,
        },
        "blindingFactor": random_blinding_factor().hex(),
        "secret": secret.encode("utf-8").hex(),
    }


class FakeMint:
    """Mint double that keeps its state in memory and signs with a real key.

    `sign()` registers a restore signature C_ = C + r*K for a seed output so
    the unblinded proof is known up front. `issue()` hands out valid proofs
    C = k*Y that swap and melt accept exactly once.
    """

    def __init__(self, url: str = MINT_URL, privkey: PrivateKey = MINT_PRIVKEY) -> None:
        self.url = url
        self.privkey = privkey
        pubkey = privkey.public_key.format(compressed=True).hex()
        self.keys = {str(2**i): pubkey for i in range(11)}
        self.input_fee_ppk = 0
        self.signatures: dict[str, dict[str, Any]] = {}
        self.states: dict[str, str] = {}
        self.spent: set[str] = set()
        self.restore_calls: list[list[dict[str, Any]]] = []
        self.check_calls: list[list[str]] = []
        self.swap_calls: list[list[Proof]] = []
        self.melt_calls: list[dict[str, Any]] = []
        self.minted: list[dict[str, Any]] = []
        self.melt_quote: dict[str, Any] = {"quote": "melt-1", "amount": 95, "fee_reserve": 2}
        self.melt_result: dict[str, Any] = {"quote": "melt-1", "state": "PAID"}
        self.mint_error: Exception | None = None
        self.fail_restore: Exception | None = None
        self.closed = False

    def sign(self, output: dict[str, Any], state: str | None = "UNSPENT") -> str:
        message = output["blindedMessage"]
        C = PrivateKey().public_key
        rK = PublicKey(bytes.fromhex(self.keys[str(message["amount"])])).multiply(
            bytes.fromhex(output["blindingFactor"])
        )
        C_ = PublicKey.combine_keys([C, rK])
        self.signatures[message["B_"]] = {
            "amount": message["amount"],
            "C_": C_.format(compressed=True).hex(),
            "id": message["id"],
        }
        if state is not None:
            secret = bytes.fromhex(output["secret"]).decode("utf-8")
            self.states[proof_y(secret)] = state
        return C.format(compressed=True).hex()

    def issue(self, amounts: list[int]) -> list[Proof]:
        proofs = []
        for amount in amounts:
            secret = random_secret()
            C = hash_to_curve(secret.encode("utf-8")).multiply(self.privkey.secret)
            proofs.append(
                Proof(id=KEYSET_ID, amount=amount, secret=secret, C=C.format(compressed=True).hex())
            )
        return proofs

    def token(self, amounts: list[int]) -> str:
        return encode_token_v4(self.issue(amounts), self.url)

    def _spend(self, inputs: list[Proof], path: str) -> None:
        for proof in inputs:
            expected = hash_to_curve(proof["secret"].encode("utf-8")).multiply(self.privkey.secret)
            if proof["C"] != expected.format(compressed=True).hex():
                raise MintError(
                    f"Mint returned 400 on {path}: invalid proof", mint_url=self.url, status=400
                )
            if proof["secret"] in self.spent:
                raise MintError(
                    f"Mint returned 400 on {path}: proof already spent",
                    mint_url=self.url,
                    status=400,
                )
        self.spent.update(p["secret"] for p in inputs)

    def _blind_sign(self, outputs: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "amount": o["amount"],
                "C_": PublicKey(bytes.fromhex(o["B_"]))
                .multiply(self.privkey.secret)
                .format(compressed=True)
                .hex(),
                "id": o["id"],
            }
            for o in outputs
        ]

    async def restore(self, *, outputs: list[dict[str, Any]]) -> dict[str, Any]:
        self.restore_calls.append(outputs)
        if self.fail_restore is not None:
            raise self.fail_restore
        matched = [o for o in outputs if o["B_"] in self.signatures]
        return {
            "outputs": matched,
            "signatures": [self.signatures[o["B_"]] for o in matched],
        }

    async def check_proof_states(self, Ys: list[str], *, batch_size: int) -> dict[str, str]:
        self.check_calls.append(list(Ys))
        return {y: self.states[y] for y in Ys if y in self.states}

    async def get_keysets_info(self) -> list[dict[str, Any]]:
        return [
            {"id": KEYSET_ID, "unit": "sat", "active": True, "input_fee_ppk": self.input_fee_ppk}
        ]

    async def get_active_keyset(self, unit: str = "sat") -> dict[str, Any]:
        return {"id": KEYSET_ID, "unit": unit, "keys": dict(self.keys)}

    async def swap(self, *, inputs: list[Proof], outputs: list[dict[str, Any]]) -> dict[str, Any]:
        self.swap_calls.append(inputs)
        self._spend(inputs, "/v1/swap")
        fee = (len(inputs) * self.input_fee_ppk + 999) // 1000
        if sum(o["amount"] for o in outputs) != sum(p["amount"] for p in inputs) - fee:
            raise MintError("Mint returned 400 on /v1/swap: unbalanced", status=400)
        return {"signatures": self._blind_sign(outputs)}

    async def create_mint_quote(self, *, amount: int, unit: str = "sat") -> dict[str, Any]:
        return {"quote": "mint-1", "request": f"lnbc{amount}n1invoice", "amount": amount}

    async def mint(self, *, quote: str, outputs: list[dict[str, Any]]) -> dict[str, Any]:
        if self.mint_error is not None:
            raise self.mint_error
        self.minted.extend(outputs)
        return {"signatures": self._blind_sign(outputs)}

    async def create_melt_quote(self, request: str, *, unit: str = "sat") -> dict[str, Any]:
        return dict(self.melt_quote, request=request)

    async def melt(self, *, quote: str, inputs: list[Proof]) -> dict[str, Any]:
        self.melt_calls.append({"quote": quote, "inputs": inputs})
        self._spend(inputs, "/v1/melt/bolt11")
        return self.melt_result

    async def aclose(self) -> None:
        self.closed = True


class FakeSettlement:
    """Settlement backend double; balances are the sum of deposited token amounts."""

    def __init__(self) -> None:
        self.wallets: dict[str, dict[str, Any]] = {}
        self.received: list[tuple[str, str]] = []
        self.swept: list[str] = []

    async def create_wallet(self, name: str, token: str | None = None) -> dict[str, Any]:
        access_key = f"key-{name}"
        self.wallets[access_key] = {"name": name, "access_key": access_key, "balance": 0}
        if token is not None:
            await self.receive_token(access_key, token)
        return dict(self.wallets[access_key])

    async def receive_token(self, access_key: str, token: str) -> int:
        self.received.append((access_key, token))
        wallet = self.wallets.setdefault(
            access_key, {"name": access_key, "access_key": access_key, "balance": 0}
        )
        wallet["balance"] += decode_token(token).amount
        return wallet["balance"]

    async def get_wallet_info(self, access_key: str) -> dict[str, Any]:
        return dict(self.wallets[access_key])

    async def send_all(self, access_key: str) -> str:
        self.swept.append(access_key)
        return f"cashuBswept-{self.wallets[access_key]['balance']}"


@pytest.fixture
def fake_mint() -> FakeMint:
    return FakeMint()


@pytest.fixture
def settlement() -> FakeSettlement:
    return FakeSettlement()


@pytest.fixture
def make_batch() -> Callable[..., dict[str, Any]]:
    """Build a batch of outputs starting at `counter`."""

    def _make_batch(counter: int, size: int, amount: int = 1) -> dict[str, Any]:
        return {"counter": counter, "outputs": [make_output(amount) for _ in range(size)]}

    return _make_batch


def recovery_body(
    batches: list[dict[str, Any]], gap_limit: int = 4, batch_size: int = 2
) -> dict[str, Any]:
    return {
        "mintUrl": MINT_URL,
        "keysetId": KEYSET_ID,
        "keyset": {"id": KEYSET_ID, "keys": KEYS},
        "batches": batches,
        "gapLimit": gap_limit,
        "batchSize": batch_size,
    }


@pytest.fixture
def make_body() -> Callable[..., dict[str, Any]]:
    """Recovery request body as sent over the wire."""
    return recovery_body


@pytest.fixture
def make_request() -> Callable[..., RecoveryRequest]:
    def _make_request(
        batches: list[dict[str, Any]], gap_limit: int = 4, batch_size: int = 2
    ) -> RecoveryRequest:
        return RecoveryRequest.model_validate(recovery_body(batches, gap_limit, batch_size))

    return _make_request


@pytest.fixture
def mint_keys() -> dict[str, str]:
    return dict(KEYS)


@pytest.fixture
def mint_privkey() -> PrivateKey:
    return MINT_PRIVKEY


@pytest.fixture
def make_mint() -> Callable[[str], FakeMint]:
    """Mint double with its own signing key."""
    return lambda url: FakeMint(url, PrivateKey())
