"""
Client side encryption for DRACOON.

Files are encrypted with a fresh AES-256-GCM key per file (the "plain file key").
GCM is length preserving, the authentication tag is not appended to the ciphertext but kept in the file key.
The plain file key is then wrapped (RSA-OAEP, SHA-256) for every user that must be able to read the file.

Users hold an RSA keypair, the private key is stored on the server as PKCS#8 PEM encrypted with the user's passphrase.
"""

import base64
import logging
import os
from dataclasses import dataclass, field

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from dracoon_client.api_schemas.keypairs import (
    FileKey,
    PrivateKeyContainer,
    PublicKeyContainer,
    UserKeyPairContainer,
)
from dracoon_client.exceptions import DracoonCryptoError

logger = logging.getLogger(__name__)

PLAIN_FILE_KEY_VERSION = "AES-256-GCM"
FILE_KEY_SIZE = 32
IV_SIZE = 12

# keypair version -> version of a file key wrapped with it
KEYPAIR_VERSIONS = {2048: "A", 4096: "RSA-4096"}
WRAPPED_FILE_KEY_VERSIONS = {"A": "A", "RSA-4096": "RSA-4096/AES-256-GCM"}

OAEP_PADDING = padding.OAEP(mgf=padding.MGF1(hashes.SHA256()), algorithm=hashes.SHA256(), label=None)


def b64(data: bytes | bytearray) -> str:
    return base64.b64encode(bytes(data)).decode("ascii")


def ub64(data: str) -> bytes:
    return base64.b64decode(data.encode("ascii"))


def zeroize(buffer: bytearray) -> None:
    """Overwrite a mutable buffer in place."""
    buffer[:] = bytes(len(buffer))


@dataclass
class PlainFileKey:
    """Symmetric key material of one file. The key is a bytearray so it can be wiped after use."""

    key: bytearray = field(repr=False)
    iv: bytes
    tag: bytes | None = None
    version: str = PLAIN_FILE_KEY_VERSION

    @classmethod
    def generate(cls) -> "PlainFileKey":
        return cls(key=bytearray(os.urandom(FILE_KEY_SIZE)), iv=os.urandom(IV_SIZE))

    @classmethod
    def from_file_key(cls, file_key: FileKey) -> "PlainFileKey":
        return cls(
            key=bytearray(ub64(file_key.key)),
            iv=ub64(file_key.iv),
            tag=ub64(file_key.tag) if file_key.tag else None,
            version=file_key.version,
        )

    def to_file_key(self) -> FileKey:
        return FileKey(
            key=b64(self.key),
            iv=b64(self.iv),
            tag=b64(self.tag) if self.tag is not None else None,
            version=self.version,
        )

    def zeroize(self) -> None:
        zeroize(self.key)


@dataclass
class FileEncrypter:
    """
    Encrypts a file in arbitrary sized updates into an internal buffer.
    Call finalize once after the last update, the tag is then set on the plain file key.
    """

    plain_file_key: PlainFileKey = field(default_factory=PlainFileKey.generate)
    _message: bytearray = field(default_factory=bytearray, init=False, repr=False)
    _finalized: bool = field(default=False, init=False)

    def __post_init__(self):
        try:
            cipher = Cipher(algorithms.AES(self.plain_file_key.key), modes.GCM(self.plain_file_key.iv))
        except (ValueError, TypeError, UnsupportedAlgorithm) as err:
            raise DracoonCryptoError(f"Could not initialize file encryption: {err}") from err
        self._encryptor = cipher.encryptor()

    def update(self, data: bytes | bytearray | memoryview) -> None:
        if self._finalized:
            raise DracoonCryptoError("Encrypter was already finalized.")
        self._message += self._encryptor.update(data)

    def finalize(self) -> None:
        if self._finalized:
            raise DracoonCryptoError("Encrypter was already finalized.")
        self._message += self._encryptor.finalize()
        self.plain_file_key.tag = self._encryptor.tag
        self._finalized = True

    @property
    def message(self) -> bytearray:
        if not self._finalized:
            raise DracoonCryptoError("Encrypter must be finalized before reading the encrypted message.")
        return self._message

    def take_message(self) -> bytearray:
        """Hand the encrypted message over to the caller, the encrypter keeps no reference to it."""
        message = self.message
        self._message = bytearray()
        return message


class FileDecrypter:
    """Counterpart of FileEncrypter, finalize verifies the authentication tag."""

    def __init__(self, plain_file_key: PlainFileKey):
        if plain_file_key.tag is None:
            raise DracoonCryptoError("File key has no authentication tag, cannot decrypt.")
        try:
            cipher = Cipher(
                algorithms.AES(plain_file_key.key), modes.GCM(plain_file_key.iv, plain_file_key.tag)
            )
        except (ValueError, TypeError, UnsupportedAlgorithm) as err:
            raise DracoonCryptoError(f"Could not initialize file decryption: {err}") from err
        self._decryptor = cipher.decryptor()
        self._message = bytearray()

    def update(self, data: bytes | bytearray | memoryview) -> None:
        self._message += self._decryptor.update(data)

    def finalize(self) -> bytearray:
        try:
            self._message += self._decryptor.finalize()
        except InvalidTag as err:
            raise DracoonCryptoError("Authentication tag mismatch, the file was modified or the key is wrong.") from err
        return self._message


def encrypt_file_key(plain_file_key: PlainFileKey, public_key_container: PublicKeyContainer) -> FileKey:
    """Wrap a plain file key for the owner of the given public key (RSA-OAEP)."""
    wrapped_version = WRAPPED_FILE_KEY_VERSIONS.get(public_key_container.version)
    if wrapped_version is None:
        raise DracoonCryptoError(f"Unsupported public key version '{public_key_container.version}'.")

    try:
        public_key = serialization.load_pem_public_key(public_key_container.public_key.encode())
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise DracoonCryptoError("Public key is not an RSA key.")
        wrapped_key = public_key.encrypt(bytes(plain_file_key.key), OAEP_PADDING)
    except (ValueError, TypeError, UnsupportedAlgorithm) as err:
        raise DracoonCryptoError(f"Could not wrap file key: {err}") from err

    return FileKey(
        key=b64(wrapped_key),
        iv=b64(plain_file_key.iv),
        tag=b64(plain_file_key.tag) if plain_file_key.tag is not None else None,
        version=wrapped_version,
    )


def decrypt_file_key(file_key: FileKey, private_key: rsa.RSAPrivateKey) -> PlainFileKey:
    """Unwrap a file key with the recipient's (decrypted) private key."""
    try:
        key = private_key.decrypt(ub64(file_key.key), OAEP_PADDING)
    except ValueError as err:
        raise DracoonCryptoError(f"Could not unwrap file key: {err}") from err

    return PlainFileKey(
        key=bytearray(key),
        iv=ub64(file_key.iv),
        tag=ub64(file_key.tag) if file_key.tag else None,
    )


def generate_user_keypair(password: str, key_size: int = 4096) -> UserKeyPairContainer:
    """
    Generate a user keypair, the private key is encrypted with the given password.
    """
    version = KEYPAIR_VERSIONS.get(key_size)
    if version is None:
        raise DracoonCryptoError(f"Unsupported key size {key_size}, use one of {sorted(KEYPAIR_VERSIONS)}.")

    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.BestAvailableEncryption(password.encode()),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return UserKeyPairContainer(
        private_key_container=PrivateKeyContainer(version=version, private_key=private_pem.decode()),
        public_key_container=PublicKeyContainer(version=version, public_key=public_pem.decode()),
    )


def decrypt_private_key(private_key_container: PrivateKeyContainer, password: str) -> rsa.RSAPrivateKey:
    """Decrypt the user's private key with their passphrase."""
    try:
        private_key = serialization.load_pem_private_key(
            private_key_container.private_key.encode(), password=password.encode()
        )
    except (ValueError, TypeError, UnsupportedAlgorithm):
        # the underlying message can hint at the password, don't pass it on
        logger.error("Could not decrypt private key, wrong encryption password or corrupt key.")
        raise DracoonCryptoError("Could not decrypt private key, check the encryption password.") from None

    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise DracoonCryptoError("Private key is not an RSA key.")
    return private_key
