from unittest import TestCase, main

from crypto_primitives import (Algorithm, Mode, cmac, decrypt_block,
                               encrypt_block, pad_iso9797, retail_mac,
                               tdes_cbc_mac, xor)
from errors import InvalidKeyLength


class DesEdeEcbCase(TestCase):
    def setUp(self):
        self.key = bytes.fromhex('042666B49184CF5C68DE9628D0397B36')
        self.decrypted = bytes.fromhex('041274EDCBA9876F')
        self.encrypted = bytes.fromhex('1B9C1845EB993A7A')

    def test_encrypt(self):
        encrypted = encrypt_block(Algorithm.TDES, Mode.ECB, self.key,
                                  self.decrypted)
        self.assertEqual(self.encrypted, encrypted)

    def test_decrypt(self):
        decrypted = decrypt_block(Algorithm.TDES, Mode.ECB, self.key,
                                  self.encrypted)
        self.assertEqual(self.decrypted, decrypted)


class DesEcbCase(TestCase):
    def setUp(self):
        self.key = bytes.fromhex('0123456789ABCDEF')
        self.decrypted = bytes.fromhex('0000000000000000')
        self.encrypted = bytes.fromhex('d5d44ff720683d0d')

    def test_encrypt(self):
        encrypted = encrypt_block(Algorithm.DES, Mode.ECB, self.key,
                                  self.decrypted)
        self.assertEqual(self.encrypted, encrypted)

    def test_decrypt(self):
        decrypted = decrypt_block(Algorithm.DES, Mode.ECB, self.key,
                                  self.encrypted)
        self.assertEqual(self.decrypted, decrypted)

    def test_degenerated_triple_des(self):
        other = bytes.fromhex('FEDCBA9876543210')
        for key in (self.key * 2, self.key * 3, self.key + other * 2):
            with self.subTest(key=key.hex()):
                self.assertEqual(self.encrypted, encrypt_block(
                    Algorithm.TDES, Mode.ECB, key, self.decrypted))
        key = self.key * 2 + other
        self.assertEqual(
            encrypt_block(Algorithm.DES, Mode.ECB, other, self.decrypted),
            encrypt_block(Algorithm.TDES, Mode.ECB, key, self.decrypted))


class AesCase(TestCase):
    """FIPS-197 appendix C.1"""
    key = bytes.fromhex('000102030405060708090a0b0c0d0e0f')
    plain = bytes.fromhex('00112233445566778899aabbccddeeff')
    cipher = bytes.fromhex('69c4e0d86a7b0430d8cdb78070b4c55a')

    def test_ecb(self):
        self.assertEqual(self.cipher, encrypt_block(
            Algorithm.AES, Mode.ECB, self.key, self.plain))
        self.assertEqual(self.plain, decrypt_block(
            Algorithm.AES, Mode.ECB, self.key, self.cipher))

    def test_cbc(self):
        iv = bytes(range(16))
        data = self.plain * 3
        encrypted = encrypt_block(Algorithm.AES, Mode.CBC, self.key, data, iv)
        # first block is ecb of plain xor iv
        self.assertEqual(encrypt_block(Algorithm.AES, Mode.ECB, self.key,
                                       xor(self.plain, iv)), encrypted[:16])
        self.assertEqual(data, decrypt_block(Algorithm.AES, Mode.CBC,
                                             self.key, encrypted, iv))

    def test_invalid_arguments(self):
        self.assertRaises(InvalidKeyLength, encrypt_block, Algorithm.AES,
                          Mode.ECB, self.key[:15], self.plain)
        self.assertRaises(InvalidKeyLength, encrypt_block, Algorithm.TDES,
                          Mode.ECB, self.key[:8], self.plain)
        self.assertRaises(ValueError, encrypt_block, Algorithm.AES,
                          Mode.ECB, self.key, self.plain[:15])
        self.assertRaises(ValueError, encrypt_block, Algorithm.AES,
                          Mode.CBC, self.key, self.plain, bytes(8))


class MacCase(TestCase):
    def test_cmac_aes(self):
        """RFC 4493 examples 1 and 2"""
        key = bytes.fromhex('2b7e151628aed2a6abf7158809cf4f3c')
        self.assertEqual(bytes.fromhex('bb1d6929e95937287fa37d129b756746'),
                         cmac(Algorithm.AES, key, b''))
        self.assertEqual(
            bytes.fromhex('070a16b46b4d4144f79bdd9dd04a287c'),
            cmac(Algorithm.AES, key,
                 bytes.fromhex('6bc1bee22e409f96e93d7e117393172a')))

    def test_cmac_tdes(self):
        key = bytes.fromhex('0123456789ABCDEFFEDCBA9876543210')
        tag = cmac(Algorithm.TDES, key, b'1234567890')
        self.assertEqual(8, len(tag))
        self.assertNotEqual(tag, cmac(Algorithm.TDES, key, b'1234567891'))

    def test_padding(self):
        self.assertEqual(bytes(8), pad_iso9797(b''))
        self.assertEqual(b'\x01' + bytes(7), pad_iso9797(b'\x01'))
        self.assertEqual(b'\x01\x80' + bytes(6), pad_iso9797(b'\x01', 2))
        self.assertEqual(b'\x80' + bytes(7), pad_iso9797(b'', 2))
        self.assertEqual(bytes(8) + b'\x80' + bytes(7),
                         pad_iso9797(bytes(8), 2))
        self.assertRaises(ValueError, pad_iso9797, b'', 3)

    def test_tdes_cbc_mac(self):
        key = bytes.fromhex('0123456789ABCDEFFEDCBA9876543210')
        data = bytes(range(20))
        padded = pad_iso9797(data)
        self.assertEqual(
            encrypt_block(Algorithm.TDES, Mode.CBC, key, padded)[-8:],
            tdes_cbc_mac(key, data))

    def test_retail_mac(self):
        # retail mac with equal key parts is plain Des cbc mac
        key = bytes.fromhex('0123456789ABCDEF' * 2)
        self.assertEqual(bytes.fromhex('D5D44FF720683D0D'),
                         retail_mac(key, bytes(8)))
        data = b'retail mac over several blocks'
        self.assertEqual(tdes_cbc_mac(key, data), retail_mac(key, data))
        key = bytes.fromhex('0123456789ABCDEFFEDCBA9876543210')
        self.assertNotEqual(tdes_cbc_mac(key, data), retail_mac(key, data))


if __name__ == '__main__':
    main()
