from admissions.utils.hashing import generate_hash, generate_chain_hash, sign_payload, signatures_match
from admissions.utils.references import generate_reference

__all__ = [
    "generate_hash", "generate_chain_hash",
    "sign_payload", "signatures_match",
    "generate_reference",
]
