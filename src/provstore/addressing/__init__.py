"""Content addressing: CIDs, dag-cbor and the file/directory DAG layout."""

from .cid import (
    DAG_CBOR,
    EMPTY_CID,
    FIL_COMMITMENT_UNSEALED,
    RAW,
    SHA2_256,
    SHA2_256_TRUNC254_PADDED,
    ContentId,
    Multihash,
    decode_varint,
    encode_varint,
    is_valid_cid,
    make_cid,
)
from .hashing import address_of, address_of_stream, iter_chunks

__all__ = [
    "ContentId",
    "Multihash",
    "RAW",
    "DAG_CBOR",
    "FIL_COMMITMENT_UNSEALED",
    "SHA2_256",
    "SHA2_256_TRUNC254_PADDED",
    "EMPTY_CID",
    "address_of",
    "address_of_stream",
    "iter_chunks",
    "encode_varint",
    "decode_varint",
    "is_valid_cid",
    "make_cid",
]
