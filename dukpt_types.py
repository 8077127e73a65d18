"""Key usages, key types, counter handling and transaction operations
common to both Dukpt variants
"""
from enum import Enum
from typing import Optional, Tuple

from crypto_primitives import Algorithm, Mode, decrypt_block, encrypt_block
from errors import DukptError, KsnExhausted
from pin_block import check_pan, check_pin, decrypt_pinblock, encrypt_pinblock

__author__ = 'zaeta'
__licence__ = 'BSD 2-Clause'


class KeyUsage(Enum):
    """Working key usage (values are ANS X9.24-3 key usage indicators)"""
    KEY_ENCRYPTION = 0x0002
    PIN_ENCRYPTION = 0x1000
    MAC_GENERATION = 0x2000
    MAC_VERIFICATION = 0x2001
    MAC_BOTH = 0x2002
    DATA_ENCRYPT = 0x3000
    DATA_DECRYPT = 0x3001
    DATA_BOTH = 0x3002
    KEY_DERIVATION = 0x8000
    KEY_DERIVATION_INITIAL = 0x8001


class KeyType(Enum):
    """Derived key type (values are ANS X9.24-3 algorithm indicators)"""
    TDEA_2KEY = 0
    TDEA_3KEY = 1
    AES_128 = 2
    AES_192 = 3
    AES_256 = 4

    @property
    def length(self) -> int:
        return {0: 16, 1: 24, 2: 16, 3: 24, 4: 32}[self.value]

    @property
    def algorithm(self) -> Algorithm:
        return Algorithm.TDES if self.value < 2 else Algorithm.AES


USAGE_NAMES = {
    'kek': KeyUsage.KEY_ENCRYPTION,
    'pin': KeyUsage.PIN_ENCRYPTION,
    'mac-gen': KeyUsage.MAC_GENERATION,
    'mac-verify': KeyUsage.MAC_VERIFICATION,
    'mac': KeyUsage.MAC_BOTH,
    'data-encrypt': KeyUsage.DATA_ENCRYPT,
    'data-decrypt': KeyUsage.DATA_DECRYPT,
    'data': KeyUsage.DATA_BOTH,
}

MAC_USAGES = {KeyUsage.MAC_GENERATION, KeyUsage.MAC_VERIFICATION,
              KeyUsage.MAC_BOTH}
DATA_USAGES = {KeyUsage.DATA_ENCRYPT, KeyUsage.DATA_DECRYPT,
               KeyUsage.DATA_BOTH}

KEY_TYPE_NAMES = {
    '2TDEA': KeyType.TDEA_2KEY,
    '3TDEA': KeyType.TDEA_3KEY,
    'AES-128': KeyType.AES_128,
    'AES-192': KeyType.AES_192,
    'AES-256': KeyType.AES_256,
}


def next_counter(counter: int, max_work: int, max_counter: int) -> int:
    """Next transaction counter with at most max_work one bits"""
    while True:
        step = 1
        if bin(counter).count('1') >= max_work:
            while step & counter == 0:
                step *= 2
        counter += step
        if counter > max_counter:
            raise KsnExhausted("KSN can't be increased (exhausted)")
        if bin(counter).count('1') <= max_work:
            return counter


def check_counter(counter: int, max_work: int) -> None:
    if bin(counter).count('1') > max_work:
        raise KsnExhausted(f"KSN counter {counter:X} has more than "
                           f"{max_work} one bits (exhausted)")


class DukptBase:
    """Transaction operations with the keys of the current KSN

    Subclasses derive working keys and choose the MAC algorithm.
    """

    @property
    def ksn(self) -> bytes:
        raise NotImplementedError

    def working_key(self, usage: KeyUsage,
                    key_type: Optional[KeyType] = None) -> bytes:
        raise NotImplementedError

    def _working_algorithm(self, key_type: Optional[KeyType]) -> Algorithm:
        raise NotImplementedError

    def _mac(self, key: bytes, data: bytes,
             key_type: Optional[KeyType]) -> bytes:
        raise NotImplementedError

    def generate_pinblock(self, pin: str, pan: str,
                          key_type: Optional[KeyType] = None
                          ) -> Tuple[bytes, bytes]:
        """Generate pinblock with given pin (ISO format 0 or 4)"""
        check_pin(pin)
        check_pan(pan)
        key = self.working_key(KeyUsage.PIN_ENCRYPTION, key_type)
        algorithm = self._working_algorithm(key_type)
        return encrypt_pinblock(algorithm, key, pin, pan), self.ksn

    def generate_pin(self, pinblock: bytes, pan: str,
                     key_type: Optional[KeyType] = None) -> str:
        """Generate pin with given pinblock"""
        algorithm = self._working_algorithm(key_type)
        if len(pinblock) != algorithm.block_size:
            raise ValueError("Incorrect Pinblock")
        check_pan(pan)
        key = self.working_key(KeyUsage.PIN_ENCRYPTION, key_type)
        return decrypt_pinblock(algorithm, key, pinblock, pan)

    def generate_mac(self, data: bytes,
                     usage: KeyUsage = KeyUsage.MAC_GENERATION,
                     key_type: Optional[KeyType] = None) -> bytes:
        """Message authentication code under the transaction mac key"""
        if usage not in MAC_USAGES:
            raise DukptError(f"{usage.name} key can't generate mac")
        key = self.working_key(usage, key_type)
        return self._mac(key, data, key_type)

    def encrypt_data(self, data: bytes,
                     usage: KeyUsage = KeyUsage.DATA_ENCRYPT,
                     iv: Optional[bytes] = None,
                     key_type: Optional[KeyType] = None) -> bytes:
        """Encrypt data (CBC mode, already padded) under the data key"""
        if usage not in DATA_USAGES:
            raise DukptError(f"{usage.name} key can't encrypt data")
        key = self.working_key(usage, key_type)
        return encrypt_block(self._working_algorithm(key_type), Mode.CBC,
                             key, data, iv)

    def decrypt_data(self, data: bytes,
                     usage: KeyUsage = KeyUsage.DATA_ENCRYPT,
                     iv: Optional[bytes] = None,
                     key_type: Optional[KeyType] = None) -> bytes:
        """Decrypt data (CBC mode) under the data key"""
        if usage not in DATA_USAGES:
            raise DukptError(f"{usage.name} key can't decrypt data")
        key = self.working_key(usage, key_type)
        return decrypt_block(self._working_algorithm(key_type), Mode.CBC,
                             key, data, iv)
