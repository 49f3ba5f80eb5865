"""
Schemas for user keypairs and file keys used by client side encryption.

Key material is base64 encoded, RSA keys are PEM encoded.
"""

from pydantic import Field

from dracoon_client.api_schemas.base import DracoonModel


class PublicKeyContainer(DracoonModel):
    version: str = Field(..., description="Keypair version, e.g. 'RSA-4096'")
    public_key: str = Field(..., description="PEM encoded public key")


class PrivateKeyContainer(DracoonModel):
    version: str = Field(..., description="Keypair version, e.g. 'RSA-4096'")
    private_key: str = Field(..., description="PEM encoded private key, encrypted with the user's passphrase")


class UserKeyPairContainer(DracoonModel):
    private_key_container: PrivateKeyContainer
    public_key_container: PublicKeyContainer


class FileKey(DracoonModel):
    """
    File key as stored by DRACOON.
    For a plain file key, key is the raw symmetric key, for a wrapped file key it is the RSA encrypted key.
    """

    key: str = Field(..., description="Base64 encoded (plain or wrapped) symmetric key")
    iv: str = Field(..., description="Base64 encoded initialization vector")
    version: str = Field(..., description="e.g. 'AES-256-GCM' (plain) or 'RSA-4096/AES-256-GCM' (wrapped)")
    tag: str | None = Field(None, description="Base64 encoded GCM authentication tag, set after encryption")


class UserFileKey(DracoonModel):
    """A file key wrapped for one recipient."""

    user_id: int = Field(..., description="Id of the recipient user")
    file_key: FileKey
