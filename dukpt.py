"""Dukpt working key derivation for both TripleDes and Aes variants

Variant is chosen by KSN length: 8/10 bytes TripleDes (ANS X9.24-1),
12 bytes Aes (ANS X9.24-3).
"""
from typing import Dict, Iterable, Optional, Union

from dukpt_aes import DukptAes
from dukpt_des import DukptDes
from dukpt_types import KeyType, KeyUsage
from errors import InvalidKsn

__author__ = 'zaeta'
__licence__ = 'BSD 2-Clause'

Dukpt = Union[DukptDes, DukptAes]

DEFAULT_USAGES = (
    KeyUsage.PIN_ENCRYPTION,
    KeyUsage.MAC_GENERATION,
    KeyUsage.MAC_VERIFICATION,
    KeyUsage.DATA_ENCRYPT,
    KeyUsage.DATA_DECRYPT,
)


def engine(bdk: Optional[bytes], ksn: bytes,
           initial_key: Optional[bytes] = None) -> Dukpt:
    """Dukpt instance matching KSN layout (from Bdk or initial key)"""
    if len(ksn) in DukptDes.ksn_lengths:
        if initial_key is not None:
            return DukptDes.from_ipek(initial_key, ksn)
        return DukptDes(bdk, ksn)
    if len(ksn) == DukptAes.ksn_length:
        if initial_key is not None:
            return DukptAes.from_initial_key(initial_key, ksn)
        return DukptAes(bdk, ksn)
    raise InvalidKsn(f"Ksn must be 8, 10 or 12 bytes (got {len(ksn)})")


def derive_initial_key(bdk: bytes, ksn: bytes) -> bytes:
    """IPEK (TripleDes) or initial key (Aes)"""
    dukpt = engine(bdk, ksn)
    if isinstance(dukpt, DukptDes):
        return dukpt.ipek()
    return dukpt.initial_key()


def derive_working_key(bdk: Optional[bytes], ksn: bytes, usage: KeyUsage,
                       key_type: Optional[KeyType] = None,
                       initial_key: Optional[bytes] = None) -> bytes:
    """Working key for one transaction

    key_type is the derived key type; TripleDes Dukpt always derives
    double length TripleDes keys, Aes Dukpt defaults to the Bdk type.
    """
    dukpt = engine(bdk, ksn, initial_key)
    return dukpt.working_key(usage, key_type)


def derive_working_keys(bdk: Optional[bytes], ksn: bytes,
                        usages: Iterable[KeyUsage] = DEFAULT_USAGES,
                        key_type: Optional[KeyType] = None,
                        initial_key: Optional[bytes] = None
                        ) -> Dict[KeyUsage, bytes]:
    """Working keys of one transaction for several usages"""
    return {usage: derive_working_key(bdk, ksn, usage, key_type, initial_key)
            for usage in usages}
