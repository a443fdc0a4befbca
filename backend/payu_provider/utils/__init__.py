from payu_provider.utils.hashing import HashEngine, generate_hash, generate_chain_hash
from payu_provider.utils.identifiers import generate_txnid, generate_refund_token
from payu_provider.utils.validators import format_amount, to_decimal, resolve_customer_fields

__all__ = [
    "HashEngine", "generate_hash", "generate_chain_hash",
    "generate_txnid", "generate_refund_token",
    "format_amount", "to_decimal", "resolve_customer_fields",
]
