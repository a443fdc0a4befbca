"""
Cryptographic Hashing Utilities — PayU SHA-512 request/response signatures,
plus SHA-256 payload hashing for the audit trail.
"""
import hashlib
import hmac
import json
from typing import Optional

from payu_provider.exceptions import IntegrityError

# Five reserved (empty) fields between udf5 and the salt / status.
RESERVED_FIELDS = "|" * 5


def _sha512(value: str) -> str:
    return hashlib.sha512(value.encode("utf-8")).hexdigest().lower()


def _field(value: Optional[str]) -> str:
    return "" if value is None else str(value)


class HashEngine:
    """PayU hash formulas. Every method is a pure function of its arguments."""

    @staticmethod
    def sign_request(
        key: str,
        salt: str,
        txnid: str,
        amount: str,
        productinfo: str,
        firstname: str,
        email: str,
        udf1: Optional[str] = "",
        udf2: Optional[str] = "",
        udf3: Optional[str] = "",
        udf4: Optional[str] = "",
        udf5: Optional[str] = "",
    ) -> str:
        """Sign an outbound checkout request.

        Formula:
            sha512(key|txnid|amount|productinfo|firstname|email|udf1|udf2|udf3|udf4|udf5||||||salt)

        Missing udf values hash as empty strings; slot position matters.
        """
        fields = [key, txnid, amount, productinfo, firstname, email, udf1, udf2, udf3, udf4, udf5]
        hash_string = "|".join(_field(f) for f in fields) + RESERVED_FIELDS + "|" + _field(salt)
        return _sha512(hash_string)

    @staticmethod
    def response_hash(
        salt: str,
        key: str,
        status: str,
        email: str,
        firstname: str,
        productinfo: str,
        amount: str,
        txnid: str,
        udf1: Optional[str] = "",
        udf2: Optional[str] = "",
        udf3: Optional[str] = "",
        udf4: Optional[str] = "",
        udf5: Optional[str] = "",
        additional_charges: Optional[str] = None,
    ) -> str:
        """Compute the reverse hash PayU attaches to callbacks and webhooks.

        Formula:
            sha512([additionalCharges|]salt|status||||||udf5|udf4|udf3|udf2|udf1|email|firstname|productinfo|amount|txnid|key)
        """
        head = [_field(salt), _field(status)]
        tail = [udf5, udf4, udf3, udf2, udf1, email, firstname, productinfo, amount, txnid, key]
        hash_string = "|".join(head) + RESERVED_FIELDS + "|" + "|".join(_field(f) for f in tail)
        if additional_charges:
            hash_string = f"{additional_charges}|{hash_string}"
        return _sha512(hash_string)

    @staticmethod
    def verify_response(
        salt: str,
        key: str,
        status: str,
        email: str,
        firstname: str,
        productinfo: str,
        amount: str,
        txnid: str,
        claimed_hash: Optional[str],
        udf1: Optional[str] = "",
        udf2: Optional[str] = "",
        udf3: Optional[str] = "",
        udf4: Optional[str] = "",
        udf5: Optional[str] = "",
        additional_charges: Optional[str] = None,
    ) -> bool:
        """Return True when ``claimed_hash`` matches the reverse hash. Never raises."""
        if not claimed_hash or not isinstance(claimed_hash, str):
            return False

        expected = HashEngine.response_hash(
            salt, key, status, email, firstname, productinfo, amount, txnid,
            udf1=udf1, udf2=udf2, udf3=udf3, udf4=udf4, udf5=udf5,
            additional_charges=additional_charges,
        )
        claimed = claimed_hash.strip().lower()
        return hmac.compare_digest(expected.encode("utf-8"), claimed.encode("utf-8"))

    @staticmethod
    def require_valid_response(**fields) -> None:
        """Same as verify_response, but raises IntegrityError on mismatch."""
        if not HashEngine.verify_response(**fields):
            raise IntegrityError(f"PayU response hash mismatch for txnid {fields.get('txnid')!r}")

    @staticmethod
    def sign_command(key: str, command: str, var1: str, salt: str) -> str:
        """Hash for merchant API commands: sha512(key|command|var1|salt)."""
        return _sha512(f"{key}|{command}|{var1}|{salt}")


def generate_hash(data: dict) -> str:
    """Generate a SHA-256 hash of a dictionary (deterministic, sorted keys)."""
    canonical = json.dumps(data, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(canonical).hexdigest()


def generate_chain_hash(current_data: dict, previous_hash: str = "") -> str:
    """Generate a chain hash: SHA-256(previous_hash + current_payload).
    Creates a tamper-evident linked chain for the audit trail.
    """
    current_hash = generate_hash(current_data)
    chain_input = f"{previous_hash}{current_hash}".encode("utf-8")
    return hashlib.sha256(chain_input).hexdigest()
