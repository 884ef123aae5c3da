"""Signing helpers for the settlement protocol.

Every request after authentication is signed with the ephemeral session key
over the keccak-256 digest of the compact JSON request tuple. The long-lived
credential only ever signs the EIP-712 auth policy during the handshake.
"""

import json
import re
from dataclasses import dataclass
from typing import Any

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import is_address, keccak, to_checksum_address

from ..errors import InvalidPayload, SignatureMalformed

SIGNATURE_LENGTH = 132
_SIGNATURE_RE = re.compile(r"^0x[0-9a-fA-F]{130}$")

POLICY_TYPES = {
    "EIP712Domain": [{"name": "name", "type": "string"}],
    "Policy": [
        {"name": "challenge", "type": "string"},
        {"name": "scope", "type": "string"},
        {"name": "wallet", "type": "address"},
        {"name": "session_key", "type": "address"},
        {"name": "expires_at", "type": "uint64"},
        {"name": "allowances", "type": "Allowance[]"},
    ],
    "Allowance": [
        {"name": "asset", "type": "string"},
        {"name": "amount", "type": "string"},
    ],
}


@dataclass(frozen=True)
class SessionKey:
    address: str
    private_key: str


def normalize_private_key(private_key: str) -> str:
    return private_key if private_key.startswith("0x") else f"0x{private_key}"


def address_of(private_key: str) -> str:
    return Account.from_key(normalize_private_key(private_key)).address


def generate_session_key() -> SessionKey:
    account = Account.create()
    return SessionKey(
        address=to_checksum_address(account.address),
        private_key="0x" + bytes(account.key).hex(),
    )


def canonical_address(address: Any) -> str:
    if not isinstance(address, str) or not is_address(address):
        raise InvalidPayload(f"Invalid address: {address!r}")
    return to_checksum_address(address)


def validate_signature_shape(signature: Any) -> str:
    if not isinstance(signature, str):
        raise SignatureMalformed("Signature must be a string")
    if not signature.startswith("0x"):
        raise SignatureMalformed("Signature is missing the 0x prefix")
    if len(signature) != SIGNATURE_LENGTH or not _SIGNATURE_RE.match(signature):
        raise SignatureMalformed(
            f"Signature has length {len(signature)}, expected {SIGNATURE_LENGTH}"
        )
    return signature


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def request_digest(payload: Any) -> bytes:
    return keccak(text=canonical_json(payload))


class RequestSigner:
    """Signs request tuples with an ephemeral session key."""

    def __init__(self, private_key: str):
        self._private_key = normalize_private_key(private_key)
        self.address = to_checksum_address(Account.from_key(self._private_key).address)

    def sign(self, payload: Any) -> str:
        signed = Account.unsafe_sign_hash(request_digest(payload), self._private_key)
        return "0x" + bytes(signed.signature).hex()


def policy_typed_data(
    challenge: str, auth_request: dict[str, Any], domain_name: str
) -> dict[str, Any]:
    return {
        "types": POLICY_TYPES,
        "primaryType": "Policy",
        "domain": {"name": domain_name},
        "message": {
            "challenge": challenge,
            "scope": auth_request["scope"],
            "wallet": auth_request["address"],
            "session_key": auth_request["session_key"],
            "expires_at": int(auth_request["expire"]),
            "allowances": auth_request["allowances"],
        },
    }


def sign_policy(
    private_key: str, challenge: str, auth_request: dict[str, Any], domain_name: str
) -> str:
    signable = encode_typed_data(
        full_message=policy_typed_data(challenge, auth_request, domain_name)
    )
    signed = Account.sign_message(signable, normalize_private_key(private_key))
    return "0x" + bytes(signed.signature).hex()
