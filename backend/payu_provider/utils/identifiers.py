"""
Identifier generation for PayU transactions and refund tokens.
"""
import secrets
import time


def generate_txnid() -> str:
    """Generate a unique merchant transaction id: TXN_<epoch-ms>_<8 hex>."""
    return f"TXN_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def generate_refund_token(gateway_transaction_id: str) -> str:
    """Generate a refund token, unique per attempt: REF_<mihpayid>_<epoch-ns>_<4 hex>."""
    return f"REF_{gateway_transaction_id}_{time.time_ns()}_{secrets.token_hex(2)}"
