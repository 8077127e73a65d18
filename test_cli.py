from unittest import TestCase, main

import dukpt
from cli import CommandLine
from crypto_primitives import Algorithm, retail_mac
from dukpt_types import KeyType, KeyUsage
from key_utils import compute_kcv

KBPK = '89E88CF7931444F334BD7547FC3F380C'
AES_KBPK = '88E1AB2A2E3DD38C1FA039A536500CC8'


class PinCommandLineCase(TestCase):
    def test_encrypt_pinblock(self):
        args = list(CommandLine.encrypt_pin_example)
        self.assertEqual(
            "PINBLOCK: 73EC88AD0AC5830E\nKSN:  FFFF9876543210F00000",
            CommandLine().run(args)
        )

    def test_decrypt(self):
        args = list(CommandLine.decrypt_pin_example)
        self.assertEqual("PIN: 1234", CommandLine().run(args))

    def test_decrypt_with_wrong_pinblock(self):
        args = list(CommandLine.decrypt_pin_example)
        args[2] = "73EC88AD0AC58300"
        self.assertEqual(
            "Can't decrypt pin (pin part: ecc16c67502f3a28)",
            CommandLine().run(args)
        )

    def test_missing_option(self):
        args = list(CommandLine.encrypt_pin_example)[:-2]
        self.assertEqual("--ksn is required for encrypt-pin",
                         CommandLine().run(args))

    def test_aes_pinblock(self):
        dukpt_args = ['--bdk', 'FEDCBA9876543210F1F1F1F1F1F1F1F1',
                      '--ksn', '123456789012345600000001',
                      '--pan', '4111111111111111']
        output = CommandLine().run(['encrypt-pin', '--pin', '1234']
                                   + dukpt_args).splitlines()
        self.assertEqual("KSN:  123456789012345600000001", output[1])
        pinblock = output[0][len("PINBLOCK: "):]
        self.assertEqual(32, len(pinblock))
        args = ['decrypt-pin', '--pinblock', pinblock] + dukpt_args
        self.assertEqual("PIN: 1234", CommandLine().run(args))
        args = ['decrypt-pin', '--pinblock', pinblock, '--key-type',
                '2TDEA'] + dukpt_args
        self.assertEqual("Incorrect Pinblock", CommandLine().run(args))

    def test_encrypt_pinblock_from_ipek(self):
        args = list(CommandLine.encrypt_pin_example)[:-4] + [
            '--ipek', '6AC292FAA1315B4D858AB3A3D7D5933A',
            '--ksn', 'FFFF9876543210F00000']
        self.assertEqual(
            "PINBLOCK: 73EC88AD0AC5830E\nKSN:  FFFF9876543210F00000",
            CommandLine().run(args)
        )


class TransactionCommandLineCase(TestCase):
    def test_mac(self):
        key = bytes.fromhex('042666B4918430A368DE9628D03984C9')
        data = bytes.fromhex('4E6F77206973207468652074696D6520')
        self.assertEqual(
            f"MAC: {retail_mac(key, data).hex().upper()}\n"
            f"KSN:  FFFF9876543210E00001",
            CommandLine().run(list(CommandLine.mac_example))
        )

    def test_mac_wrong_usage(self):
        args = list(CommandLine.mac_example) + ['--usage', 'pin']
        self.assertEqual("PIN_ENCRYPTION key can't generate mac",
                         CommandLine().run(args))

    def test_encrypt_decrypt_data(self):
        output = CommandLine().run(list(CommandLine.encrypt_data_example))
        self.assertTrue(output.startswith("DATA: "))
        encrypted = output[len("DATA: "):]
        self.assertEqual(32, len(encrypted))
        self.assertNotEqual('0123456789ABCDEF0123456789ABCDEF', encrypted)
        args = ['decrypt-data', '--data', encrypted] \
            + list(CommandLine.encrypt_data_example)[3:]
        self.assertEqual("DATA: 0123456789ABCDEF0123456789ABCDEF",
                         CommandLine().run(args))

    def test_data_not_aligned(self):
        args = list(CommandLine.encrypt_data_example)
        args[2] = '0123456789ABCDEF'
        self.assertIn("16 bytes", CommandLine().run(args))

    def test_missing_data(self):
        args = ['mac', '--bdk', '0123456789ABCDEFFEDCBA9876543210',
                '--ksn', 'FFFF9876543210E00001']
        self.assertEqual("--data is required for mac",
                         CommandLine().run(args))


class DukptCommandLineCase(TestCase):
    def test_next_ksn(self):
        args = list(CommandLine.next_ksn_example)
        self.assertEqual(
            "NEXT KSN: FFFF9876543210F00000",
            CommandLine().run(args)
        )

    def test_next_aes_ksn(self):
        args = ['next-ksn', '--ksn', '123456789012345600000001']
        self.assertEqual("NEXT KSN: 123456789012345600000002",
                         CommandLine().run(args))

    def test_no_ksn_left(self):
        args = list(CommandLine.next_ksn_example)
        args[-1] = "ffff9876543210fff800"
        self.assertEqual(
            "KSN can't be increased (exhausted)",
            CommandLine().run(args)
        )

    def test_ipek(self):
        args = list(CommandLine.ipek_example)
        self.assertEqual("IPEK: 6AC292FAA1315B4D858AB3A3D7D5933A",
                         CommandLine().run(args))

    def test_derive(self):
        args = list(CommandLine.derive_example)
        self.assertEqual("KEY: 042666B49184CF5C68DE9628D0397B36",
                         CommandLine().run(args))

    def test_derive_from_ipek(self):
        args = ['dukpt-derive', '--ipek', '6AC292FAA1315B4D858AB3A3D7D5933A',
                '--ksn', 'FFFF9876543210E00001', '--usage', 'mac-gen']
        self.assertEqual("KEY: 042666B4918430A368DE9628D03984C9",
                         CommandLine().run(args))

    def test_derive_aes(self):
        args = list(CommandLine.derive_aes_example)
        key = dukpt.derive_working_key(
            bytes.fromhex('FEDCBA9876543210F1F1F1F1F1F1F1F1'),
            bytes.fromhex('123456789012345600000001'),
            KeyUsage.PIN_ENCRYPTION, KeyType.AES_128)
        self.assertEqual(f"KEY: {key.hex().upper()}", CommandLine().run(args))

    def test_derive_errors(self):
        args = list(CommandLine.derive_example) + ['--key-type', 'AES-128']
        self.assertEqual("TripleDes Dukpt can't derive AES_128 keys",
                         CommandLine().run(args))
        args = list(CommandLine.derive_example)
        args[-1] = 'pan'
        self.assertEqual("Unknown Dukpt usage pan", CommandLine().run(args))
        args = ['dukpt-derive', '--ksn', 'FFFF9876543210E00001',
                '--usage', 'pin']
        self.assertEqual("--bdk or --ipek is required for dukpt-derive",
                         CommandLine().run(args))


class KeyBlockCommandLineCase(TestCase):
    def test_encode_decode(self):
        key_block = CommandLine().run(list(CommandLine.tr31_encode_example))
        self.assertTrue(key_block.startswith('B0080P0TE00E0000'))
        args = ['tr31-decode', '--kbpk', KBPK, '--key-block', key_block]
        lines = CommandLine().run(args).splitlines()
        self.assertIn("Version: B (TDEA Key Derivation Binding Method)",
                      lines)
        self.assertIn("Key usage: P0 (PIN Encryption)", lines)
        self.assertIn("Mode of use: E (Encrypt / Wrap Only)", lines)
        self.assertEqual("KEY: F039121BEC83D26B169BDCD5B22AAF8F", lines[-2])
        self.assertTrue(lines[-1].startswith("KCV: "))

    def test_optional_blocks(self):
        args = ['tr31-encode', '--kbpk', AES_KBPK,
                '--key', '3F419E1CB7079442AA37474C2EFBF8B8',
                '--usage', 'B1', '--algorithm', 'A', '--mode', 'X',
                '--optional-block', 'IK=1234567890123456']
        key_block = CommandLine().run(args)
        self.assertTrue(key_block.startswith('D'))
        args = ['tr31-decode', '--kbpk', AES_KBPK, '--key-block', key_block]
        output = CommandLine().run(args)
        self.assertIn("Optional block IK (Initial Key Identifier (AES DUKPT))"
                      ": 1234567890123456", output)
        self.assertIn("Optional block PB (Padding Block)", output)
        self.assertIn("KEY: 3F419E1CB7079442AA37474C2EFBF8B8", output)

    def test_hmac_key_without_kcv(self):
        key = '00112233445566778899AABBCCDDEEFF' * 2
        args = ['tr31-encode', '--kbpk', AES_KBPK, '--key', key,
                '--usage', 'M7', '--algorithm', 'H', '--mode', 'C']
        key_block = CommandLine().run(args)
        self.assertTrue(key_block.startswith('D'))
        args = ['tr31-decode', '--kbpk', AES_KBPK, '--key-block', key_block]
        lines = CommandLine().run(args).splitlines()
        self.assertEqual(f"KEY: {key}", lines[-1])
        self.assertFalse(any(line.startswith("KCV") for line in lines))

    def test_aes_key_kcv(self):
        args = ['tr31-encode', '--kbpk', AES_KBPK,
                '--key', '3F419E1CB7079442AA37474C2EFBF8B8',
                '--usage', 'P0', '--algorithm', 'A', '--mode', 'E']
        key_block = CommandLine().run(args)
        args = ['tr31-decode', '--kbpk', AES_KBPK, '--key-block', key_block]
        kcv = compute_kcv(bytes.fromhex('3F419E1CB7079442AA37474C2EFBF8B8'),
                          Algorithm.AES)
        self.assertEqual(f"KCV: {kcv.hex().upper()}",
                         CommandLine().run(args).splitlines()[-1])

    def test_decode_with_wrong_kbpk(self):
        key_block = CommandLine().run(list(CommandLine.tr31_encode_example))
        args = ['tr31-decode', '--kbpk', '0123456789ABCDEFFEDCBA9876543210',
                '--key-block', key_block]
        self.assertEqual("Key block MAC verification failed",
                         CommandLine().run(args))

    def test_missing_option(self):
        args = ['tr31-encode', '--key', 'F039121BEC83D26B169BDCD5B22AAF8F']
        self.assertEqual("--kbpk is required for tr31-encode",
                         CommandLine().run(args))


class KeyCommandLineCase(TestCase):
    def test_kcv(self):
        self.assertEqual("KCV: 08D7B4",
                         CommandLine().run(list(CommandLine.kcv_example)))
        args = ['kcv', '--key', '0123456789ABCDEF']
        self.assertEqual("KCV: D5D44F", CommandLine().run(args))

    def test_combine(self):
        output = CommandLine().run(list(CommandLine.combine_example))
        self.assertEqual("KEY: " + "FE" * 16, output.splitlines()[0])

    def test_combine_single_component(self):
        args = ['combine', '--component', '0123456789ABCDEF']
        self.assertEqual("At least 2 components required",
                         CommandLine().run(args))

    def test_parity(self):
        args = ['parity', '--key', '0023456789ABCDEF']
        self.assertEqual("KEY: 0123456789ABCDEF\nODD PARITY: no",
                         CommandLine().run(args))


if __name__ == '__main__':
    main()
