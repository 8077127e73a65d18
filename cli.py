#!/usr/bin/env python3
"""Payment key management command line utility

TR-31 key blocks, Dukpt working keys, key check values and key components.
"""
import logging
from argparse import ArgumentParser, RawTextHelpFormatter
from sys import argv
from typing import List, Optional

import dukpt
import tr31
from crypto_primitives import Algorithm
from dukpt_types import KEY_TYPE_NAMES, USAGE_NAMES, KeyUsage
from key_utils import adjust_parity, check_parity, combine_keys, compute_kcv

__author__ = 'zaeta'
__licence__ = 'BSD 2-Clause'

# wrapped key lengths with a key check value, per key block algorithm
_KCV_LENGTHS = {'A': {16, 24, 32}, 'T': {8, 16, 24}, 'D': {8}}


def _hex(value: bytes) -> str:
    return value.hex().upper()


class CommandLine:
    tr31_encode_example = ['tr31-encode',
                           '--kbpk', '89E88CF7931444F334BD7547FC3F380C',
                           '--key', 'F039121BEC83D26B169BDCD5B22AAF8F',
                           '--version', 'B', '--usage', 'P0',
                           '--algorithm', 'T', '--mode', 'E',
                           '--exportability', 'E']
    derive_example = ['dukpt-derive',
                      '--bdk', '0123456789ABCDEFFEDCBA9876543210',
                      '--ksn', 'FFFF9876543210E00001',
                      '--usage', 'pin']
    derive_aes_example = ['dukpt-derive',
                          '--bdk', 'FEDCBA9876543210F1F1F1F1F1F1F1F1',
                          '--ksn', '123456789012345600000001',
                          '--usage', 'pin', '--key-type', 'AES-128']
    ipek_example = ['dukpt-ipek',
                    '--bdk', '0123456789ABCDEFFEDCBA9876543210',
                    '--ksn', 'FFFF9876543210E00000']
    encrypt_pin_example = ['encrypt-pin',
                           '--pin', '1234',
                           '--pan', '4012345678909',
                           '--bdk', '0123456789ABCDEFFEDCBA9876543210',
                           '--ksn', 'FFFF9876543210F00000']
    decrypt_pin_example = ['decrypt-pin',
                           '--pinblock', '73EC88AD0AC5830E',
                           '--pan', '4012345678909',
                           '--bdk', '0123456789ABCDEFFEDCBA9876543210',
                           '--ksn', 'FFFF9876543210F00000']
    mac_example = ['mac',
                   '--data', '4E6F77206973207468652074696D6520',
                   '--bdk', '0123456789ABCDEFFEDCBA9876543210',
                   '--ksn', 'FFFF9876543210E00001']
    encrypt_data_example = ['encrypt-data',
                            '--data', '0123456789ABCDEF0123456789ABCDEF',
                            '--bdk', 'FEDCBA9876543210F1F1F1F1F1F1F1F1',
                            '--ksn', '123456789012345600000001']
    next_ksn_example = ['next-ksn', '--ksn', 'FFFF9876543210EFFC00']
    kcv_example = ['kcv', '--key', '0123456789ABCDEFFEDCBA9876543210']
    combine_example = ['combine', '--parity',
                       '--component', '0123456789ABCDEFFEDCBA9876543210',
                       '--component', 'FEDCBA98765432100123456789ABCDEF']
    actions = ['tr31-encode', 'tr31-decode', 'dukpt-derive', 'dukpt-ipek',
               'encrypt-pin', 'decrypt-pin', 'mac', 'encrypt-data',
               'decrypt-data', 'next-ksn', 'kcv', 'combine', 'parity']

    def __init__(self):
        def hex_type(data: str) -> bytes:
            if not data or len(data) % 2:
                raise ValueError
            return bytes.fromhex(data)

        def ksn_type(ksn: str) -> bytes:
            if len(ksn) not in {16, 20, 24}:
                raise ValueError
            return bytes.fromhex(ksn)

        def key_type(key: str) -> bytes:
            if len(key) not in {16, 32, 48, 64}:
                raise ValueError
            return bytes.fromhex(key)

        def pinblock_type(pinblock: str) -> bytes:
            if len(pinblock) not in {16, 32}:
                raise ValueError
            return bytes.fromhex(pinblock)

        def pan_type(pan: str) -> str:
            if 12 <= len(pan) <= 19 and pan.isdigit():
                return pan
            raise ValueError

        def pin_type(data: str) -> str:
            if 4 <= len(data) <= 12 and data.isdigit():
                return data
            raise ValueError

        def optional_block_type(data: str) -> tr31.OptionalBlock:
            block_id, separator, block_data = data.partition('=')
            if len(block_id) != 2 or not separator:
                raise ValueError
            return tr31.OptionalBlock(block_id, block_data)

        examples = [self.tr31_encode_example, self.derive_example,
                    self.derive_aes_example, self.ipek_example,
                    self.encrypt_pin_example, self.decrypt_pin_example,
                    self.mac_example, self.encrypt_data_example,
                    self.next_ksn_example,
                    self.kcv_example, self.combine_example]
        parser = ArgumentParser(
            description="Payment key management utility "
                        "(TR-31 key blocks, Dukpt, KCV)",
            epilog="Examples:" + ''.join(
                f"\n  {argv[0]} {' '.join(example)}\n"
                for example in examples),
            formatter_class=RawTextHelpFormatter
        )
        parser.add_argument('action', metavar='ACTION', choices=self.actions,
                            help=f"One of {','.join(self.actions)} action")
        parser.add_argument('--kbpk', type=key_type, metavar='KBPK',
                            help="Key block protection key")
        parser.add_argument('--key-block', metavar='KEYBLOCK',
                            help="TR-31 key block")
        parser.add_argument('--key', type=hex_type, metavar='KEY',
                            help="Clear key (to wrap, check or adjust)")
        parser.add_argument('--version',
                            choices=[v.value for v in tr31.Version],
                            default='D', help="Key block version")
        parser.add_argument('--usage', metavar='USAGE',
                            help="Key block key usage (e.g. P0) or Dukpt "
                                 f"usage ({','.join(USAGE_NAMES)})")
        parser.add_argument('--algorithm', metavar='ALGORITHM',
                            help="Key block algorithm (A, T, D...) or KCV "
                                 "algorithm (AES, DES)")
        parser.add_argument('--mode', default='N', metavar='MODE',
                            help="Key block mode of use")
        parser.add_argument('--key-version', default='00', metavar='KVN',
                            help="Key block key version number")
        parser.add_argument('--exportability', default='N', metavar='EXP',
                            help="Key block exportability")
        parser.add_argument('--optional-block', type=optional_block_type,
                            action='append', default=[], metavar='ID=DATA',
                            help="Key block optional block (repeatable)")
        parser.add_argument('--ksn', type=ksn_type, metavar='KSN',
                            help="Key serial number")
        parser.add_argument('--bdk', type=key_type, metavar='BDK',
                            help="Base derivation key")
        parser.add_argument('--ipek', type=key_type, metavar='IPEK',
                            help="Initial key (instead of Bdk)")
        parser.add_argument('--key-type', choices=list(KEY_TYPE_NAMES),
                            metavar='KEYTYPE',
                            help=f"Dukpt working key type "
                                 f"({','.join(KEY_TYPE_NAMES)})")
        parser.add_argument('--pan', type=pan_type, metavar='PAN',
                            help='Payment card number')
        parser.add_argument('--pin', type=pin_type, metavar='PIN',
                            help="Personal identification number")
        parser.add_argument('--pinblock', type=pinblock_type,
                            metavar='PINBLOCK',
                            help="Pin block")
        parser.add_argument('--data', type=hex_type, metavar='DATA',
                            help="Transaction data (to mac or cipher)")
        parser.add_argument('--iv', type=hex_type, metavar='IV',
                            help="Initial vector (zeros by default)")
        parser.add_argument('--component', type=hex_type, action='append',
                            default=[], metavar='COMPONENT',
                            help="Key component (repeatable)")
        parser.add_argument('--parity', action='store_true',
                            help="Adjust odd parity of result")
        parser.add_argument('--verbose', action='store_true',
                            help="Log debug messages")
        self._parser = parser

    @staticmethod
    def _require(opts, *names: str) -> None:
        for name in names:
            if getattr(opts, name.replace('-', '_')) in (None, []):
                raise ValueError(f"--{name} is required for {opts.action}")

    def _tr31_encode(self, opts) -> str:
        self._require(opts, 'kbpk', 'key', 'usage', 'algorithm')
        header = tr31.KeyBlockHeader(
            version=opts.version, key_usage=opts.usage,
            algorithm=opts.algorithm, mode_of_use=opts.mode,
            key_version_number=opts.key_version,
            exportability=opts.exportability)
        return tr31.encode(header, opts.key, opts.kbpk, opts.optional_block)

    def _tr31_decode(self, opts) -> str:
        self._require(opts, 'kbpk', 'key-block')
        key_block = tr31.decode(opts.key_block, opts.kbpk)
        lines = [f"{name}: {value}"
                 for name, value in key_block.header.describe().items()]
        for block in key_block.optional_blocks:
            meaning = tr31.OPTIONAL_BLOCKS.get(block.id, 'Proprietary')
            lines.append(f"Optional block {block.id} ({meaning}): "
                         f"{block.data}")
        lines.append(f"KEY: {key_block.key_hex}")
        kcv = self._key_block_kcv(key_block)
        if kcv is not None:
            lines.append(f"KCV: {_hex(kcv)}")
        return '\n'.join(lines)

    @staticmethod
    def _key_block_kcv(key_block: tr31.KeyBlock) -> Optional[bytes]:
        """Check value of Aes/Des/TripleDes keys, None for other keys"""
        lengths = _KCV_LENGTHS.get(key_block.algorithm, ())
        if len(key_block.key) not in lengths:
            return None
        algorithm = Algorithm.AES if key_block.algorithm == 'A' \
            else Algorithm.TDES
        return compute_kcv(key_block.key, algorithm)

    def _engine(self, opts) -> dukpt.Dukpt:
        self._require(opts, 'ksn')
        if opts.bdk is None and opts.ipek is None:
            raise ValueError(f"--bdk or --ipek is required for {opts.action}")
        return dukpt.engine(opts.bdk, opts.ksn, opts.ipek)

    def _usage(self, opts, default: KeyUsage) -> KeyUsage:
        if opts.usage is None:
            return default
        if opts.usage not in USAGE_NAMES:
            raise ValueError(f"Unknown Dukpt usage {opts.usage}")
        return USAGE_NAMES[opts.usage]

    def _mac(self, opts) -> str:
        self._require(opts, 'data')
        engine = self._engine(opts)
        usage = self._usage(opts, KeyUsage.MAC_GENERATION)
        mac = engine.generate_mac(opts.data, usage,
                                  KEY_TYPE_NAMES.get(opts.key_type))
        return f"MAC: {_hex(mac)}\nKSN:  {_hex(engine.ksn)}"

    def _data(self, opts) -> str:
        self._require(opts, 'data')
        engine = self._engine(opts)
        key_type = KEY_TYPE_NAMES.get(opts.key_type)
        # request data key by default on both sides
        usage = self._usage(opts, KeyUsage.DATA_ENCRYPT)
        if opts.action == 'encrypt-data':
            data = engine.encrypt_data(opts.data, usage, opts.iv, key_type)
        else:
            data = engine.decrypt_data(opts.data, usage, opts.iv, key_type)
        return f"DATA: {_hex(data)}"

    def _dukpt_derive(self, opts) -> str:
        self._require(opts, 'ksn', 'usage')
        if opts.bdk is None and opts.ipek is None:
            raise ValueError("--bdk or --ipek is required for dukpt-derive")
        if opts.usage not in USAGE_NAMES:
            raise ValueError(f"Unknown Dukpt usage {opts.usage}")
        key_type = KEY_TYPE_NAMES.get(opts.key_type)
        key = dukpt.derive_working_key(opts.bdk, opts.ksn,
                                       USAGE_NAMES[opts.usage], key_type,
                                       initial_key=opts.ipek)
        return f"KEY: {_hex(key)}"

    @staticmethod
    def _kcv_algorithm(opts) -> Algorithm:
        return Algorithm.AES if opts.algorithm == 'AES' else Algorithm.TDES

    def _kcv(self, opts) -> str:
        self._require(opts, 'key')
        algorithm = self._kcv_algorithm(opts)
        return f"KCV: {_hex(compute_kcv(opts.key, algorithm, opts.parity))}"

    def run(self, args: Optional[List[str]] = None) -> str:
        opts = self._parser.parse_args(args)
        if opts.verbose:
            logging.basicConfig(level=logging.DEBUG)
        try:
            if opts.action == "tr31-encode":
                return self._tr31_encode(opts)
            elif opts.action == "tr31-decode":
                return self._tr31_decode(opts)
            elif opts.action == "dukpt-derive":
                return self._dukpt_derive(opts)
            elif opts.action == "dukpt-ipek":
                self._require(opts, 'bdk', 'ksn')
                ipek = dukpt.derive_initial_key(opts.bdk, opts.ksn)
                return f"IPEK: {_hex(ipek)}"
            elif opts.action == "encrypt-pin":
                self._require(opts, 'ksn', 'pin', 'pan')
                engine = self._engine(opts)
                pinblock, ksn = engine.generate_pinblock(
                    opts.pin, opts.pan, KEY_TYPE_NAMES.get(opts.key_type))
                return f"PINBLOCK: {_hex(pinblock)}\nKSN:  {_hex(ksn)}"
            elif opts.action == "decrypt-pin":
                self._require(opts, 'ksn', 'pinblock', 'pan')
                engine = self._engine(opts)
                pin = engine.generate_pin(opts.pinblock, opts.pan,
                                          KEY_TYPE_NAMES.get(opts.key_type))
                return f"PIN: {pin}"
            elif opts.action == "mac":
                return self._mac(opts)
            elif opts.action in ("encrypt-data", "decrypt-data"):
                return self._data(opts)
            elif opts.action == "next-ksn":
                self._require(opts, 'ksn')
                engine = dukpt.engine(None, opts.ksn)
                return f"NEXT KSN: {_hex(engine.next_ksn())}"
            elif opts.action == "kcv":
                return self._kcv(opts)
            elif opts.action == "combine":
                key = combine_keys(opts.component, opts.parity)
                kcv = compute_kcv(key, self._kcv_algorithm(opts))
                return f"KEY: {_hex(key)}\nKCV: {_hex(kcv)}"
            elif opts.action == "parity":
                self._require(opts, 'key')
                key = adjust_parity(opts.key)
                odd = 'yes' if check_parity(opts.key) else 'no'
                return f"KEY: {_hex(key)}\nODD PARITY: {odd}"
        except ValueError as exc:
            return str(exc)


def main() -> None:
    print(CommandLine().run())


if __name__ == "__main__":
    main()
