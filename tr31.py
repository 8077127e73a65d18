"""TR-31 key block codec

Specification: ANSI X9.143-2022 (ASC X9 TR 31-2018)
Layout: 16 characters header, optional blocks, encrypted key data, mac
Binding: key variant (versions A, C) / key derivation (versions B, D, E)
Cipher: TripleDes CBC (versions A, B, C) / Aes CBC (versions D, E)
"""
import logging
import string
from dataclasses import dataclass, field, replace
from enum import Enum
from hmac import compare_digest
from typing import Dict, Iterable, List, Optional, Tuple

from Crypto.Random import get_random_bytes  # pycryptodome library

from crypto_primitives import (Algorithm, KEY_LENGTHS, Mode, cmac,
                               decrypt_block, encrypt_block, tdes_cbc_mac)
from errors import (AuthenticationFailed, KeyBlockKeyLength, MalformedHeader,
                    OptionalBlockLengthOverflow, PaddingError,
                    UnsupportedVersion)
from key_utils import key_variant, wipe

__author__ = 'zaeta'
__licence__ = 'BSD 2-Clause'

HEADER_LENGTH = 16
MAX_BLOCK_LENGTH = 9999

_PAD_CHARS = string.ascii_uppercase + string.digits
_HEX_CHARS = string.digits + 'ABCDEF'


class Version(Enum):
    """Key block version id with its protection method"""
    A = 'A'
    B = 'B'
    C = 'C'
    D = 'D'
    E = 'E'

    @property
    def algorithm(self) -> Algorithm:
        return Algorithm.AES if self in (Version.D, Version.E) \
            else Algorithm.TDES

    @property
    def variant_binding(self) -> bool:
        return self in (Version.A, Version.C)

    @property
    def mac_length(self) -> int:
        if self.variant_binding:
            return 4
        return self.algorithm.block_size


VERSIONS = {
    'A': 'Key Variant Binding Method (deprecated)',
    'B': 'TDEA Key Derivation Binding Method',
    'C': 'TDEA Key Variant Binding Method',
    'D': 'AES Key Derivation Binding Method',
    'E': 'AES Key Derivation Binding Method (ISO 20038)',
}

KEY_USAGES = {
    'B0': 'BDK Base Derivation Key',
    'B1': 'Initial DUKPT Key',
    'B2': 'Base Key Variant Key',
    'C0': 'CVK Card Verification Key',
    'D0': 'Symmetric Key for Data Encryption',
    'D1': 'Asymmetric Key for Data Encryption',
    'D2': 'Data Encryption Key for Decimalization Table',
    'E0': 'EMV/chip Issuer Master Key: Application cryptograms',
    'E1': 'EMV/chip Issuer Master Key: Secure Messaging for Confidentiality',
    'E2': 'EMV/chip Issuer Master Key: Secure Messaging for Integrity',
    'E3': 'EMV/chip Issuer Master Key: Data Authentication Code',
    'E4': 'EMV/chip Issuer Master Key: Dynamic Numbers',
    'E5': 'EMV/chip Issuer Master Key: Card Personalization',
    'E6': 'EMV/chip Issuer Master Key: Other',
    'I0': 'Initialization Vector (IV)',
    'K0': 'Key Encryption or Wrapping',
    'K1': 'TR-31 Key Block Protection Key',
    'K2': 'TR-34 Asymmetric Key',
    'K3': 'Asymmetric Key for key agreement/key wrapping',
    'M0': 'ISO 16609 MAC algorithm 1 (using TDEA)',
    'M1': 'ISO 9797-1 MAC Algorithm 1',
    'M2': 'ISO 9797-1 MAC Algorithm 2',
    'M3': 'ISO 9797-1 MAC Algorithm 3',
    'M4': 'ISO 9797-1 MAC Algorithm 4',
    'M5': 'ISO 9797-1:1999 MAC Algorithm 5',
    'M6': 'ISO 9797-1:2011 MAC Algorithm 5/CMAC',
    'M7': 'HMAC',
    'M8': 'ISO 9797-1:2011 MAC Algorithm 6',
    'P0': 'PIN Encryption',
    'S0': 'Asymmetric key pair for digital signature',
    'S1': 'Asymmetric key pair, CA key',
    'S2': 'Asymmetric key pair, nonX9.24 key',
    'V0': 'PIN verification, KPV, other algorithm',
    'V1': 'PIN verification, IBM 3624',
    'V2': 'PIN Verification, VISA PVV',
}

ALGORITHMS = {
    'A': 'AES',
    'D': 'DEA',
    'E': 'Elliptic Curve',
    'H': 'HMAC',
    'R': 'RSA',
    'S': 'DSA',
    'T': 'Triple DEA (TDEA)',
}

MODES_OF_USE = {
    'B': 'Both Encrypt & Decrypt / Wrap & Unwrap',
    'C': 'Both Generate & Verify',
    'D': 'Decrypt / Unwrap Only',
    'E': 'Encrypt / Wrap Only',
    'G': 'Generate Only',
    'N': 'No special restrictions',
    'S': 'Signature Only',
    'T': 'Both Sign & Decrypt',
    'V': 'Verify Only',
    'X': 'Key used to derive other key(s)',
    'Y': 'Key used to create key variants',
}

EXPORTABILITY = {
    'E': 'Exportable under trusted key',
    'N': 'Non-exportable',
    'S': 'Sensitive, exportable under untrusted key',
}

OPTIONAL_BLOCKS = {
    'CT': 'Asymmetric Public Key Certificate',
    'HM': 'Hash Algorithm for HMAC',
    'IK': 'Initial Key Identifier (AES DUKPT)',
    'KC': 'Key Check Value of wrapped key',
    'KP': 'Key Check Value of KBPK',
    'KS': 'Key Set Identifier (TDES DUKPT)',
    'KV': 'Key Block Values',
    'PB': 'Padding Block',
    'TS': 'Time Stamp',
}


def _is_hex(value: str) -> bool:
    return bool(value) and all(c in _HEX_CHARS for c in value)


def _is_printable(value: str) -> bool:
    return all(' ' <= c <= '~' for c in value)


@dataclass
class OptionalBlock:
    """Optional header block (ID, length, data)"""
    id: str
    data: str = ''

    def encode(self) -> str:
        """Encode block with its length (extended form above 255 chars)"""
        if len(self.id) != 2 or not self.id.isascii() \
                or not self.id.isalnum():
            raise MalformedHeader(f"Optional block id '{self.id}' "
                                  f"is malformed")
        if not _is_printable(self.data):
            raise MalformedHeader(f"Optional block {self.id} data must be "
                                  f"printable ASCII")
        length = 4 + len(self.data)
        if length <= 0xFF:
            return f"{self.id}{length:02X}{self.data}"
        length = 10 + len(self.data)
        if length > 0xFFFF:
            raise OptionalBlockLengthOverflow(
                f"Optional block {self.id} is too long")
        return f"{self.id}0002{length:04X}{self.data}"


@dataclass
class KeyBlockHeader:
    """Key block header fields

    block_length and num_optional_blocks are computed during encoding.
    """
    version: Version
    key_usage: str
    algorithm: str
    mode_of_use: str
    key_version_number: str = '00'
    exportability: str = 'N'
    reserved: str = '00'
    block_length: int = 0
    num_optional_blocks: int = 0

    def __post_init__(self):
        try:
            self.version = Version(self.version)
        except ValueError:
            raise UnsupportedVersion(
                f"Unsupported key block version '{self.version}'") from None

    def fields(self) -> Tuple[Version, str, str, str, str, str]:
        return (self.version, self.key_usage, self.algorithm,
                self.mode_of_use, self.key_version_number,
                self.exportability)

    def validate(self) -> None:
        checks = (('key usage', self.key_usage, 2),
                  ('algorithm', self.algorithm, 1),
                  ('mode of use', self.mode_of_use, 1),
                  ('key version number', self.key_version_number, 2),
                  ('exportability', self.exportability, 1),
                  ('reserved', self.reserved, 2))
        for name, value, size in checks:
            if len(value) != size or not value.isascii() \
                    or not value.isalnum():
                raise MalformedHeader(f"Key block {name} '{value}' "
                                      f"is malformed")

    def encode(self) -> str:
        return (f"{self.version.value}{self.block_length:04d}"
                f"{self.key_usage}{self.algorithm}{self.mode_of_use}"
                f"{self.key_version_number}{self.exportability}"
                f"{self.num_optional_blocks:02d}{self.reserved}")

    def describe(self) -> Dict[str, str]:
        """Human readable meaning of every header field"""
        def meaning(table, value):
            return f"{value} ({table[value]})" if value in table else value
        return {
            'Version': meaning(VERSIONS, self.version.value),
            'Length': str(self.block_length),
            'Key usage': meaning(KEY_USAGES, self.key_usage),
            'Algorithm': meaning(ALGORITHMS, self.algorithm),
            'Mode of use': meaning(MODES_OF_USE, self.mode_of_use),
            'Key version number': self.key_version_number,
            'Exportability': meaning(EXPORTABILITY, self.exportability),
            'Optional blocks': str(self.num_optional_blocks),
            'Reserved': self.reserved,
        }


@dataclass
class KeyBlock:
    """Decoded key block"""
    header: KeyBlockHeader
    optional_blocks: List[OptionalBlock] = field(default_factory=list)
    key: bytes = field(default=b'', repr=False)

    @property
    def key_usage(self) -> str:
        return self.header.key_usage

    @property
    def algorithm(self) -> str:
        return self.header.algorithm

    @property
    def exportability(self) -> str:
        return self.header.exportability

    @property
    def key_hex(self) -> str:
        return self.key.hex().upper()


def _check_kbpk(version: Version, kbpk: bytes) -> None:
    lengths = KEY_LENGTHS[version.algorithm]
    if len(kbpk) not in lengths:
        raise KeyBlockKeyLength(
            f"Version {version.value} KBPK must be "
            f"{' or '.join(str(n) for n in lengths)} bytes (got {len(kbpk)})")


# algorithm indicator and key length in bits of derivation data
_DERIVATION_DATA = {
    Algorithm.TDES: {16: (0x0000, 128), 24: (0x0001, 192)},
    Algorithm.AES: {16: (0x0002, 128), 24: (0x0003, 192), 32: (0x0004, 256)},
}


def _derive_binding_keys(algorithm: Algorithm,
                         kbpk: bytes) -> Tuple[bytearray, bytearray]:
    """Key derivation binding method (CMAC in counter mode)

    Derivation data: counter (1) | usage 0000 enc / 0001 mac (2) |
    separator 00 (1) | algorithm (2) | key length in bits (2)
    """
    indicator, bits = _DERIVATION_DATA[algorithm][len(kbpk)]
    kbek, kbmk = bytearray(), bytearray()
    blocks = -(-len(kbpk) // algorithm.block_size)
    for counter in range(1, blocks + 1):
        for usage, output in ((0x0000, kbek), (0x0001, kbmk)):
            data = bytes([counter]) + usage.to_bytes(2, 'big') + b'\x00' \
                + indicator.to_bytes(2, 'big') + bits.to_bytes(2, 'big')
            output += cmac(algorithm, kbpk, data)
    for output in (kbek, kbmk):
        output[len(kbpk):] = bytes(len(output) - len(kbpk))
        del output[len(kbpk):]
    return kbek, kbmk


def _derive_keys(version: Version,
                 kbpk: bytes) -> Tuple[bytearray, bytearray]:
    """Returns key block encryption key and key block mac key"""
    if version.variant_binding:
        return (bytearray(key_variant(kbpk, 0x45)),
                bytearray(key_variant(kbpk, 0x4D)))
    return _derive_binding_keys(version.algorithm, kbpk)


def _variant_mac(kbmk: bytes, head: str, encrypted: bytes) -> bytes:
    data = head.encode('ascii') + encrypted
    return tdes_cbc_mac(kbmk, data)[:Version.A.mac_length]


def _verify_mac(expected: bytes, mac: bytes) -> None:
    if not compare_digest(expected, mac):
        raise AuthenticationFailed("Key block MAC verification failed")


def _parse_header(block: str) -> KeyBlockHeader:
    if len(block) < HEADER_LENGTH:
        raise MalformedHeader(f"Key block too short (minimum "
                              f"{HEADER_LENGTH} characters)")
    if not block.isascii() or not _is_printable(block):
        raise MalformedHeader("Key block must contain printable ASCII only")
    try:
        version = Version(block[0])
    except ValueError:
        raise UnsupportedVersion(
            f"Unsupported key block version '{block[0]}'") from None
    length, count = block[1:5], block[12:14]
    if not length.isdigit():
        raise MalformedHeader(f"Key block length '{length}' is malformed")
    if int(length) != len(block):
        raise MalformedHeader(f"Key block length {int(length)} doesn't "
                              f"match actual length {len(block)}")
    if not count.isdigit():
        raise MalformedHeader(f"Number of optional blocks '{count}' "
                              f"is malformed")
    header = KeyBlockHeader(
        version=version, key_usage=block[5:7], algorithm=block[7],
        mode_of_use=block[8], key_version_number=block[9:11],
        exportability=block[11], reserved=block[14:16],
        block_length=int(length), num_optional_blocks=int(count))
    header.validate()
    return header


def _parse_optional_blocks(block: str,
                           count: int) -> Tuple[List[OptionalBlock], int]:
    """Returns optional blocks and position of the encrypted key"""
    blocks = []
    pos = HEADER_LENGTH
    for _ in range(count):
        if len(block) < pos + 4:
            raise OptionalBlockLengthOverflow(
                f"Optional block at position {pos} is truncated")
        block_id, length_field = block[pos:pos + 2], block[pos + 2:pos + 4]
        if not block_id.isalnum():
            raise MalformedHeader(f"Optional block id '{block_id}' "
                                  f"is malformed")
        if not _is_hex(length_field):
            raise MalformedHeader(f"Optional block {block_id} length "
                                  f"'{length_field}' is malformed")
        length, prefix = int(length_field, 16), 4
        if length == 0:
            length_length = block[pos + 4:pos + 6]
            if not _is_hex(length_length) or int(length_length, 16) == 0:
                raise MalformedHeader(f"Optional block {block_id} extended "
                                      f"length is malformed")
            prefix = 6 + int(length_length, 16) * 2
            length_field = block[pos + 6:pos + prefix]
            if len(length_field) != prefix - 6:
                raise OptionalBlockLengthOverflow(
                    f"Optional block {block_id} extended length "
                    f"is truncated")
            if not _is_hex(length_field):
                raise MalformedHeader(f"Optional block {block_id} extended "
                                      f"length is malformed")
            length = int(length_field, 16)
        if length < prefix:
            raise OptionalBlockLengthOverflow(
                f"Optional block {block_id} length {length} is shorter "
                f"than its own header")
        if pos + length > len(block):
            raise OptionalBlockLengthOverflow(
                f"Optional block {block_id} length {length} exceeds "
                f"key block")
        data = block[pos + prefix:pos + length]
        blocks.append(OptionalBlock(block_id, data))
        pos += length
    return blocks, pos


def _unpad_key(clear_key_data: bytearray) -> bytes:
    """Strip 2 bytes key length (in bits) and padding"""
    bits = int.from_bytes(clear_key_data[:2], 'big')
    if bits == 0 or bits % 8 or bits // 8 > len(clear_key_data) - 2:
        raise PaddingError("Decrypted key is malformed")
    return bytes(clear_key_data[2:2 + bits // 8])


def decode(key_block: str, kbpk: bytes) -> KeyBlock:
    """Verify and decrypt key block with key block protection key"""
    block = ''.join(key_block.split())
    header = _parse_header(block)
    version = header.version
    _check_kbpk(version, kbpk)
    optional_blocks, pos = _parse_optional_blocks(
        block, header.num_optional_blocks)
    logging.debug("Decoding version %s key block (%d optional blocks)",
                  version.value, len(optional_blocks))

    algorithm = version.algorithm
    if pos % algorithm.block_size:
        raise MalformedHeader(f"Header length {pos} must be multiple of "
                              f"{algorithm.block_size}")
    mac_chars = version.mac_length * 2
    head = block[:pos]
    encrypted_hex = block[pos:len(block) - mac_chars]
    mac_hex = block[len(block) - mac_chars:]
    if not encrypted_hex or len(encrypted_hex) % (algorithm.block_size * 2) \
            or len(block) - pos < mac_chars:
        raise MalformedHeader(f"Encrypted key length {len(encrypted_hex)} "
                              f"is malformed")
    if not _is_hex(encrypted_hex) or not _is_hex(mac_hex):
        raise MalformedHeader("Encrypted key and MAC must be hexadecimal")
    encrypted, mac = bytes.fromhex(encrypted_hex), bytes.fromhex(mac_hex)

    kbek, kbmk = _derive_keys(version, kbpk)
    clear_key_data = bytearray()
    mac_data = bytearray(head.encode('ascii'))
    try:
        if version.variant_binding:
            _verify_mac(_variant_mac(kbmk, head, encrypted), mac)
            clear_key_data += decrypt_block(algorithm, Mode.CBC, kbek,
                                            encrypted, iv=mac_data[:8])
        else:
            clear_key_data += decrypt_block(algorithm, Mode.CBC, kbek,
                                            encrypted, iv=mac)
            mac_data += clear_key_data
            _verify_mac(cmac(algorithm, kbmk, mac_data), mac)
        key = _unpad_key(clear_key_data)
    finally:
        for buffer in (kbek, kbmk, clear_key_data, mac_data):
            wipe(buffer)
    return KeyBlock(header, optional_blocks, key)


def _padding_block(head_length: int,
                   block_size: int) -> Optional[OptionalBlock]:
    """PB block aligning header and optional blocks to cipher block size"""
    length = -head_length % block_size
    if length == 0:
        return None
    if length < 4:
        length += block_size
    filler = get_random_bytes(length - 4)
    return OptionalBlock('PB', ''.join(_PAD_CHARS[b % len(_PAD_CHARS)]
                                       for b in filler))


def encode(header: KeyBlockHeader, key: bytes, kbpk: bytes,
           optional_blocks: Iterable[OptionalBlock] = (),
           masked_key_length: Optional[int] = None) -> str:
    """Wrap key into key block

    Key block length and number of optional blocks are computed on a copy
    of header, a PB block is appended when optional blocks need alignment.
    With masked_key_length the padding hides the real key length.
    """
    version = header.version
    algorithm = version.algorithm
    _check_kbpk(version, kbpk)
    if not key:
        raise KeyBlockKeyLength("Key to wrap is empty")
    header.validate()

    blocks = list(optional_blocks)
    optional = ''.join(b.encode() for b in blocks)
    padding_block = _padding_block(HEADER_LENGTH + len(optional),
                                   algorithm.block_size)
    if padding_block:
        blocks.append(padding_block)
        optional += padding_block.encode()
    if len(blocks) > 99:
        raise MalformedHeader("Key block can hold at most 99 optional blocks")

    extra = max((masked_key_length or 0) - len(key), 0)
    pad_length = extra + -(2 + len(key) + extra) % algorithm.block_size
    clear_length = 2 + len(key) + pad_length
    block_length = HEADER_LENGTH + len(optional) + clear_length * 2 \
        + version.mac_length * 2
    if block_length > MAX_BLOCK_LENGTH:
        raise MalformedHeader(f"Key block length {block_length} exceeds "
                              f"{MAX_BLOCK_LENGTH}")
    header = replace(header, block_length=block_length,
                     num_optional_blocks=len(blocks))
    head = header.encode() + optional

    kbek, kbmk = _derive_keys(version, kbpk)
    clear_key_data = bytearray((len(key) * 8).to_bytes(2, 'big'))
    clear_key_data += key + get_random_bytes(pad_length)
    mac_data = bytearray(head.encode('ascii'))
    try:
        if version.variant_binding:
            encrypted = encrypt_block(algorithm, Mode.CBC, kbek,
                                      bytes(clear_key_data), iv=mac_data[:8])
            mac = _variant_mac(kbmk, head, encrypted)
        else:
            mac_data += clear_key_data
            mac = cmac(algorithm, kbmk, mac_data)
            encrypted = encrypt_block(algorithm, Mode.CBC, kbek,
                                      bytes(clear_key_data), iv=mac)
    finally:
        for buffer in (kbek, kbmk, clear_key_data, mac_data):
            wipe(buffer)
    result = head + encrypted.hex().upper() + mac.hex().upper()

    decoded = decode(result, kbpk)
    if not compare_digest(decoded.key, key) \
            or decoded.header.fields() != header.fields():
        raise AuthenticationFailed("Key block failed round trip verification")
    logging.debug("Encoded version %s key block (%d optional blocks)",
                  version.value, len(blocks))
    return result
