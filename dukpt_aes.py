"""Dukpt aes utility

Specification: ANS X9.24-3-2017
Layout: Derived unique key per transaction (12 bytes KSN:
        8 bytes initial key id, 4 bytes transaction counter)
Cipher: Aes (ECB mode) as key derivation function
PinBlock format: ISO-4 (Aes keys), ISO-0 (TripleDes keys)
Mac: CMAC with the working key cipher
"""
import logging
from typing import Optional

from crypto_primitives import Algorithm, Mode, cmac, encrypt_block
from dukpt_types import (DukptBase, KeyType, KeyUsage, check_counter,
                         next_counter)
from errors import DukptKeyLength, InvalidKsn
from key_utils import wipe

__author__ = 'zaeta'
__licence__ = 'BSD 2-Clause'

_BDK_TYPES = {16: KeyType.AES_128, 24: KeyType.AES_192, 32: KeyType.AES_256}


class DukptAes(DukptBase):
    """Dukpt Aes (ANS X9.24-3-2017) implementation"""
    ksn_length = 12
    max_counter = 0xFFFFFFFF
    max_work = 16

    def __init__(self, bdk: Optional[bytes], ksn: bytes):
        if bdk is not None and len(bdk) not in _BDK_TYPES:
            raise DukptKeyLength(f"Bdk must be 16, 24 or 32 bytes "
                                 f"(got {len(bdk)})")
        if len(ksn) != self.ksn_length:
            raise InvalidKsn(f"Ksn must be {self.ksn_length} bytes "
                             f"(got {len(ksn)})")
        self._bdk: Optional[bytes] = bdk
        self._initial_key: Optional[bytes] = None
        self._ksn: bytearray = bytearray(ksn)
        self.key_type: Optional[KeyType] = \
            _BDK_TYPES[len(bdk)] if bdk is not None else None

    @classmethod
    def from_initial_key(cls, initial_key: bytes, ksn: bytes) -> 'DukptAes':
        """Device side instance (initial key instead of Bdk)"""
        if len(initial_key) not in _BDK_TYPES:
            raise DukptKeyLength(f"Initial key must be 16, 24 or 32 bytes "
                                 f"(got {len(initial_key)})")
        dukpt = cls(None, ksn)
        dukpt._initial_key = initial_key
        dukpt.key_type = _BDK_TYPES[len(initial_key)]
        return dukpt

    @property
    def ksn(self) -> bytes:
        return bytes(self._ksn)

    @property
    def initial_key_id(self) -> bytes:
        return bytes(self._ksn[:8])

    @property
    def counter(self) -> int:
        return int.from_bytes(self._ksn[8:], 'big')

    def initial_key(self) -> bytes:
        """Initial key (IK) loaded into the device"""
        if self._initial_key is not None:
            return self._initial_key
        data = self._derivation_data(KeyUsage.KEY_DERIVATION_INITIAL,
                                     self.key_type, initial=True)
        return bytes(self._derive_key(self._bdk, self.key_type, data))

    def working_key(self, usage: KeyUsage,
                    key_type: Optional[KeyType] = None) -> bytes:
        """Derive transaction key for given usage and key type"""
        key_type = key_type or self.key_type
        if key_type.algorithm is Algorithm.AES \
                and key_type.length > self.key_type.length:
            raise DukptKeyLength(f"{key_type.name} working key can't be "
                                 f"derived from {self.key_type.name} key")
        counter = self.counter
        check_counter(counter, self.max_work)
        derivation_key = bytearray(self.initial_key())
        try:
            mask = 0x80000000
            working_counter = 0
            while mask:
                if mask & counter:
                    working_counter |= mask
                    data = self._derivation_data(
                        KeyUsage.KEY_DERIVATION, self.key_type,
                        working_counter)
                    next_key = self._derive_key(derivation_key,
                                                self.key_type, data)
                    wipe(derivation_key)
                    derivation_key = next_key
                mask >>= 1
            data = self._derivation_data(usage, key_type, counter)
            working_key = self._derive_key(derivation_key, key_type, data)
            try:
                return bytes(working_key)
            finally:
                wipe(working_key)
        finally:
            wipe(derivation_key)

    def _working_algorithm(self, key_type: Optional[KeyType]) -> Algorithm:
        return (key_type or self.key_type).algorithm

    def _mac(self, key: bytes, data: bytes,
             key_type: Optional[KeyType]) -> bytes:
        return cmac(self._working_algorithm(key_type), key, data)

    def next_ksn(self) -> bytes:
        """Increase Key Serial Number to next value"""
        counter = next_counter(self.counter, self.max_work, self.max_counter)
        self._ksn[8:] = counter.to_bytes(4, 'big')
        logging.debug("Ksn counter increased to %08X", counter)
        return self.ksn

    def _derivation_data(self, usage: KeyUsage, key_type: KeyType,
                         counter: int = 0, initial: bool = False) -> bytes:
        """Derivation data block

        version 01 | block counter | key usage | algorithm | length in bits
        | initial key id (initial key) or its right half and counter
        """
        data = bytearray(16)
        data[0] = 0x01
        data[1] = 0x01
        data[2:4] = usage.value.to_bytes(2, 'big')
        data[4:6] = key_type.value.to_bytes(2, 'big')
        data[6:8] = (key_type.length * 8).to_bytes(2, 'big')
        if initial:
            data[8:16] = self._ksn[:8]
        else:
            data[8:12] = self._ksn[4:8]
            data[12:16] = counter.to_bytes(4, 'big')
        return bytes(data)

    @staticmethod
    def _derive_key(derivation_key: bytes, key_type: KeyType,
                    data: bytes) -> bytearray:
        """Counter mode key derivation (one Aes block per 128 bits)"""
        result = bytearray()
        for block in range(1, -(-key_type.length // 16) + 1):
            block_data = data[:1] + bytes([block]) + data[2:]
            result += encrypt_block(Algorithm.AES, Mode.ECB,
                                    bytes(derivation_key), block_data)
        del result[key_type.length:]
        return result
