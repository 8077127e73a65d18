"""Pin block utility

Specification: ISO 9564-1:2017
Format 0: pin field xor pan field, TripleDes (ECB mode), 8 bytes
Format 4: Aes enciphered pin field xor pan field, Aes (ECB mode), 16 bytes
"""
from Crypto.Random import get_random_bytes  # pycryptodome library

from crypto_primitives import (Algorithm, Mode, decrypt_block, encrypt_block,
                               xor)

__author__ = 'zaeta'
__licence__ = 'BSD 2-Clause'


def check_pin(pin: str) -> None:
    if not (4 <= len(pin) <= 12 and pin.isdigit()):
        raise ValueError("Incorrect Pin")


def check_pan(pan: str) -> None:
    if not (12 <= len(pan) <= 19 and pan.isdigit()):
        raise ValueError("Incorrect Pan")


def _iso0_pan_field(pan: str) -> bytes:
    return bytes.fromhex(pan[-min(13, len(pan)):-1].zfill(16))


def _iso4_pan_field(pan: str) -> bytes:
    return bytes.fromhex(f"{len(pan) - 12:X}{pan}".ljust(32, '0'))


def _parse_pin_field(pin_field: str, control: str, filler: str,
                     size: int) -> str:
    """Pin digits of a clear pin field, ValueError when it's malformed"""
    pin_len = int(pin_field[1], 16) if pin_field[0] == control else 0
    pin = pin_field[2:pin_len + 2]
    if not 4 <= pin_len <= 12 or not pin.isdigit() \
            or pin_field[pin_len + 2:size] != filler * (size - 2 - pin_len):
        raise ValueError(f"Can't decrypt pin (pin part: {pin_field})")
    return pin


def encrypt_pinblock(algorithm: Algorithm, key: bytes, pin: str,
                     pan: str) -> bytes:
    """Format 0 pin block for TripleDes keys, format 4 for Aes keys"""
    check_pin(pin)
    check_pan(pan)
    if algorithm is Algorithm.AES:
        pin_field = bytes.fromhex(f"4{len(pin):X}{pin}".ljust(16, 'A')) \
            + get_random_bytes(8)
        intermediate = encrypt_block(algorithm, Mode.ECB, key, pin_field)
        return encrypt_block(algorithm, Mode.ECB, key,
                             xor(intermediate, _iso4_pan_field(pan)))
    pin_part = bytes.fromhex(f"0{len(pin):X}{pin}".ljust(16, 'F'))
    clear_pinblock = xor(pin_part, _iso0_pan_field(pan))
    return encrypt_block(algorithm, Mode.ECB, key, clear_pinblock)


def decrypt_pinblock(algorithm: Algorithm, key: bytes, pinblock: bytes,
                     pan: str) -> str:
    """Pin from format 0 (TripleDes) or format 4 (Aes) pin block"""
    check_pan(pan)
    if len(pinblock) != algorithm.block_size:
        raise ValueError("Incorrect Pinblock")
    if algorithm is Algorithm.AES:
        intermediate = decrypt_block(algorithm, Mode.ECB, key, pinblock)
        pin_field = decrypt_block(algorithm, Mode.ECB, key,
                                  xor(intermediate, _iso4_pan_field(pan)))
        return _parse_pin_field(pin_field.hex(), '4', 'a', 16)
    clear_pinblock = decrypt_block(algorithm, Mode.ECB, key, pinblock)
    pin_part = xor(clear_pinblock, _iso0_pan_field(pan)).hex()
    return _parse_pin_field(pin_part, '0', 'f', 16)
