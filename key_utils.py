"""Key utilities shared by key block codec and DUKPT engine

Parity adjustment, key component combination, key variants and
key check values (KCV).
"""
from functools import reduce
from typing import Sequence

from crypto_primitives import Algorithm, Mode, cmac, encrypt_block, xor

__author__ = 'zaeta'
__licence__ = 'BSD 2-Clause'


def _odd(byte: int) -> bool:
    return bin(byte).count('1') % 2 == 1


def adjust_parity(key: bytes) -> bytes:
    """Force odd parity of every byte (lowest bit is the parity bit)"""
    return bytes([b if _odd(b) else b ^ 0x01 for b in key])


def adjust_parity_even(key: bytes) -> bytes:
    """Force even parity of every byte"""
    return bytes([b ^ 0x01 if _odd(b) else b for b in key])


def check_parity(key: bytes, odd: bool = True) -> bool:
    return all(_odd(b) == odd for b in key)


def combine_keys(components: Sequence[bytes], parity: bool = False) -> bytes:
    """Combine key components with xor (optionally adjust odd parity)"""
    if len(components) < 2:
        raise ValueError("At least 2 components required")
    if len({len(c) for c in components}) != 1:
        raise ValueError("All components must have the same length")
    key = reduce(xor, components)
    return adjust_parity(key) if parity else key


def key_variant(key: bytes, variant: int) -> bytes:
    """Xor every byte of key with variant byte"""
    return bytes([b ^ variant for b in key])


def compute_kcv(key: bytes, algorithm: Algorithm, parity: bool = False,
                length: int = 3) -> bytes:
    """Key check value

    Des/TripleDes: encrypt 8 zero bytes (ECB)
    Aes: CMAC over 16 zero bytes
    """
    if algorithm is Algorithm.AES:
        return cmac(Algorithm.AES, key, bytes(16))[:length]
    if parity:
        key = adjust_parity(key)
    algorithm = Algorithm.DES if len(key) == 8 else Algorithm.TDES
    return encrypt_block(algorithm, Mode.ECB, key, bytes(8))[:length]


def wipe(buffer: bytearray) -> None:
    """Overwrite sensitive key material in place"""
    buffer[:] = bytes(len(buffer))
