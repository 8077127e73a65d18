"""Dukpt des utility

Specification: ANS X9.24-1-2009
Layout: Derived unique key per transaction
Cipher: TripleDes (ECB mode) / Des (ECB mode)
PinBlock format: ISO-0 (ISO 9564-1 Format 0)
Mac: ANSI X9.19 retail mac
"""
import logging
from typing import Optional

from Crypto.Cipher import DES  # pycryptodome library

from crypto_primitives import Algorithm, Mode, encrypt_block, retail_mac, xor
from dukpt_types import (DukptBase, KeyType, KeyUsage, check_counter,
                         next_counter)
from errors import DukptError, DukptKeyLength, InvalidKsn
from key_utils import wipe

__author__ = 'zaeta'
__licence__ = 'BSD 2-Clause'


class DukptDes(DukptBase):
    """Dukpt TripleDes (ANS X9.24-1-2009) implementation"""
    _c_mask = bytes.fromhex('C0C0C0C000000000C0C0C0C000000000')
    # position of the 0xFF variant byte in both key halves
    _variants = {
        KeyUsage.PIN_ENCRYPTION: 7,
        KeyUsage.MAC_GENERATION: 6,
        KeyUsage.MAC_BOTH: 6,
        KeyUsage.MAC_VERIFICATION: 4,
        KeyUsage.DATA_ENCRYPT: 5,
        KeyUsage.DATA_BOTH: 5,
        KeyUsage.DATA_DECRYPT: 3,
    }
    _data_usages = {KeyUsage.DATA_ENCRYPT, KeyUsage.DATA_BOTH,
                    KeyUsage.DATA_DECRYPT}
    ksn_lengths = {8, 10}
    max_counter = 0x1FFFFF
    max_work = 10

    def __init__(self, bdk: Optional[bytes], ksn: bytes):
        if bdk is not None and len(bdk) != 16:
            raise DukptKeyLength(f"Bdk must be 16 bytes (got {len(bdk)})")
        if len(ksn) not in self.ksn_lengths:
            raise InvalidKsn(f"Ksn must be 8 or 10 bytes (got {len(ksn)})")
        self._bdk: Optional[bytes] = bdk
        self._ipek: Optional[bytes] = None
        self._ksn: bytearray = bytearray(ksn)
        if len(ksn) == 8:
            self._ksn = bytearray(bytes([0xFF, 0xFF]) + self._ksn)

    @classmethod
    def from_ipek(cls, ipek: bytes, ksn: bytes) -> 'DukptDes':
        """Device side instance (initially loaded key instead of Bdk)"""
        if len(ipek) != 16:
            raise DukptKeyLength(f"Ipek must be 16 bytes (got {len(ipek)})")
        dukpt = cls(None, ksn)
        dukpt._ipek = ipek
        return dukpt

    @property
    def ksn(self) -> bytes:
        return bytes(self._ksn)

    def ipek(self) -> bytes:
        """Initially loaded pin entry device key"""
        return self._generate_ipek()

    def working_key(self, usage: KeyUsage,
                    key_type: Optional[KeyType] = None) -> bytes:
        """Derive transaction key for given usage"""
        if key_type not in (None, KeyType.TDEA_2KEY):
            raise DukptKeyLength(f"TripleDes Dukpt can't derive "
                                 f"{key_type.name} keys")
        if usage not in self._variants:
            raise DukptError(f"{usage.name} key isn't defined by "
                             f"TripleDes Dukpt")
        check_counter(self._counter(), self.max_work)
        key = bytearray(self._generate_future_key())
        try:
            position = self._variants[usage]
            key[position] ^= 0xFF
            key[position + 8] ^= 0xFF
            if usage in self._data_usages:
                # one way function: variant key encrypted under itself
                return encrypt_block(Algorithm.TDES, Mode.ECB, bytes(key),
                                     bytes(key))
            return bytes(key)
        finally:
            wipe(key)

    def _working_algorithm(self, key_type: Optional[KeyType]) -> Algorithm:
        return Algorithm.TDES

    def _mac(self, key: bytes, data: bytes,
             key_type: Optional[KeyType]) -> bytes:
        """ANSI X9.19 retail mac (zero padding)"""
        return retail_mac(key, data)

    def next_ksn(self) -> bytes:
        """Increase Key Serial Number to next value"""
        counter = next_counter(self._counter(), self.max_work,
                               self.max_counter)
        self._replace_counter(counter)
        logging.debug("Ksn counter increased to %06X", counter)
        return self.ksn

    def _generate_future_key(self) -> bytes:
        """Walk key generation tree over counter one bits"""
        curkey = self._generate_ipek()
        r8 = self._ksn_with_zeroed_counter()[-8:]
        sr = 0x100000
        r3 = self._counter()
        while sr:
            if (sr & r3) != 0:
                srb = sr.to_bytes(8, byteorder="big")
                r8 = bytes([a | b for a, b in zip(r8, srb)])
                r8a = xor(curkey[8:], r8)
                r8a = DES.new(curkey[:8], mode=DES.MODE_ECB).encrypt(r8a)
                r8a = xor(r8a, curkey[8:])
                curkey = xor(curkey, self._c_mask)
                r8b = xor(curkey[8:], r8)
                r8b = DES.new(curkey[:8], mode=DES.MODE_ECB).encrypt(r8b)
                r8b = xor(curkey[8:], r8b)
                curkey = r8b + r8a
            sr >>= 1
        return curkey

    def _generate_ipek(self) -> bytes:
        """Generate initially loaded pin entry device key"""
        if self._ipek is not None:
            return self._ipek
        ksnr = self._ksn_with_zeroed_counter()[:8]
        left = encrypt_block(Algorithm.TDES, Mode.ECB, self._bdk, ksnr)
        right_key = xor(self._bdk, self._c_mask)
        right = encrypt_block(Algorithm.TDES, Mode.ECB, right_key, ksnr)
        return left + right

    def _counter(self) -> int:
        """Returns 21 bits counter of KSN as integer"""
        first = (self._ksn[-3] & 0x1F) * 0x10000
        return first + self._ksn[-2] * 0x100 + self._ksn[-1]

    def _ksn_with_zeroed_counter(self) -> bytes:
        """Generate ksn with zero filled counter"""
        return bytes([*self._ksn[:-3], self._ksn[-3] & 0xE0, 0x00, 0x00])

    def _replace_counter(self, counter: int) -> None:
        """Replace counter of KSN"""
        tmp = counter.to_bytes(3, byteorder="big")
        self._ksn[-3] = (self._ksn[-3] & 0xE0) | tmp[0]
        self._ksn[-2] = tmp[1]
        self._ksn[-1] = tmp[2]
