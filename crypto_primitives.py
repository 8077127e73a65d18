"""Block cipher and MAC primitives

Cipher: Des / TripleDes / Aes (ECB and CBC mode, no padding)
Mac: CMAC (NIST SP 800-38B), ISO 9797-1 algorithm 1 and 3 (retail mac)
"""
from enum import Enum
from typing import Optional, Tuple

from Crypto.Cipher import AES, DES, DES3  # pycryptodome library
from Crypto.Hash import CMAC

from errors import InvalidKeyLength

__author__ = 'zaeta'
__licence__ = 'BSD 2-Clause'


class Algorithm(Enum):
    DES = 'D'
    TDES = 'T'
    AES = 'A'

    @property
    def block_size(self) -> int:
        return 16 if self is Algorithm.AES else 8


class Mode(Enum):
    ECB = 'ECB'
    CBC = 'CBC'


KEY_LENGTHS = {
    Algorithm.DES: (8,),
    Algorithm.TDES: (16, 24),
    Algorithm.AES: (16, 24, 32),
}


def xor(first: bytes, second: bytes) -> bytes:
    assert len(first) == len(second), "xor elements must have the same size"
    return bytes([f ^ s for f, s in zip(first, second)])


def check_key_length(algorithm: Algorithm, key: bytes) -> None:
    if len(key) not in KEY_LENGTHS[algorithm]:
        raise InvalidKeyLength(
            f"{algorithm.name} key must be "
            f"{' or '.join(str(n) for n in KEY_LENGTHS[algorithm])} bytes "
            f"(got {len(key)})")


def _without_parity(key: bytes) -> bytes:
    return bytes(b & 0xFE for b in key)


def _cipher_module(algorithm: Algorithm, key: bytes) -> Tuple[object, bytes]:
    """Returns pycryptodome module and key to use for given algorithm

    TripleDes keys whose parts repeat degenerate to a single Des key,
    which DES3.new refuses, so such keys are reduced to the equivalent
    Des key.
    """
    check_key_length(algorithm, key)
    if algorithm is Algorithm.AES:
        return AES, key
    if algorithm is Algorithm.DES:
        return DES, key
    k1, k2, k3 = key[:8], key[8:16], key[16:] or key[:8]
    if _without_parity(k1) == _without_parity(k2):
        return DES, k3
    if _without_parity(k2) == _without_parity(k3):
        return DES, k1
    return DES3, key


def _new_cipher(algorithm: Algorithm, mode: Mode, key: bytes,
                iv: Optional[bytes]):
    module, key = _cipher_module(algorithm, key)
    if mode is Mode.ECB:
        return module.new(key, module.MODE_ECB)
    if iv is None:
        iv = bytes(algorithm.block_size)
    if len(iv) != algorithm.block_size:
        raise ValueError(f"{algorithm.name} iv must be "
                         f"{algorithm.block_size} bytes")
    return module.new(key, module.MODE_CBC, iv=iv)


def _check_data(algorithm: Algorithm, data: bytes) -> None:
    if len(data) % algorithm.block_size:
        raise ValueError(f"Data length must be multiple of "
                         f"{algorithm.block_size} bytes")


def encrypt_block(algorithm: Algorithm, mode: Mode, key: bytes, data: bytes,
                  iv: Optional[bytes] = None) -> bytes:
    """Encrypt data (already padded) with given cipher and mode"""
    _check_data(algorithm, data)
    return _new_cipher(algorithm, mode, key, iv).encrypt(data)


def decrypt_block(algorithm: Algorithm, mode: Mode, key: bytes, data: bytes,
                  iv: Optional[bytes] = None) -> bytes:
    """Decrypt data with given cipher and mode"""
    _check_data(algorithm, data)
    return _new_cipher(algorithm, mode, key, iv).decrypt(data)


def cmac(algorithm: Algorithm, key: bytes, data: bytes) -> bytes:
    """Full length CMAC tag (8 bytes for Des ciphers, 16 for Aes)"""
    module, key = _cipher_module(algorithm, key)
    return CMAC.new(key, msg=data, ciphermod=module).digest()


def pad_iso9797(data: bytes, method: int = 1, block_size: int = 8) -> bytes:
    """ISO 9797-1 padding method 1 (zeros) or 2 (0x80 then zeros)"""
    if method == 2:
        data += b'\x80'
    elif method != 1:
        raise ValueError(f"Unsupported padding method {method}")
    if not data or len(data) % block_size:
        data += bytes(block_size - len(data) % block_size)
    return data


def tdes_cbc_mac(key: bytes, data: bytes, padding: int = 1) -> bytes:
    """ISO 9797-1 mac algorithm 1 with TripleDes (last cbc block)"""
    data = pad_iso9797(data, padding)
    return encrypt_block(Algorithm.TDES, Mode.CBC, key, data)[-8:]


def retail_mac(key: bytes, data: bytes, padding: int = 1) -> bytes:
    """ISO 9797-1 mac algorithm 3 (ANSI X9.19 retail mac)"""
    check_key_length(Algorithm.TDES, key)
    data = pad_iso9797(data, padding)
    k1, k2, k3 = key[:8], key[8:16], key[16:] or key[:8]
    last = DES.new(k1, DES.MODE_CBC, iv=bytes(8)).encrypt(data)[-8:]
    last = DES.new(k2, DES.MODE_ECB).decrypt(last)
    return DES.new(k3, DES.MODE_ECB).encrypt(last)
