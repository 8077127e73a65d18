"""Error taxonomy shared by the key block codec and the DUKPT engine"""

__author__ = 'zaeta'
__licence__ = 'BSD 2-Clause'


class InvalidKeyLength(ValueError):
    """Key length does not suit the algorithm or the operation"""


class KeyBlockError(ValueError):
    """Base class of every TR-31 decode/encode failure"""


class MalformedHeader(KeyBlockError):
    pass


class UnsupportedVersion(KeyBlockError):
    pass


class OptionalBlockLengthOverflow(KeyBlockError):
    pass


class AuthenticationFailed(KeyBlockError):
    pass


class PaddingError(KeyBlockError):
    pass


class KeyBlockKeyLength(KeyBlockError, InvalidKeyLength):
    """Wrong KBPK or wrapped key length (caught as either base)"""


class DukptError(ValueError):
    """Base class of every DUKPT derivation failure"""


class InvalidKsn(DukptError):
    pass


class KsnExhausted(DukptError):
    pass


class DukptKeyLength(DukptError, InvalidKeyLength):
    """Wrong BDK length or working key stronger than the BDK"""
