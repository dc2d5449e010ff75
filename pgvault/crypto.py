"""age encryption of dump artifacts, by recipient key or by passphrase."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import BinaryIO

import pyrage
from pyrage import passphrase as age_passphrase
from pyrage import x25519

from pgvault.errors import CapabilityError, MalformedCiphertext, NoIdentityMatch, PostStepFailed

logger = logging.getLogger(__name__)

AGE_HEADER = b"age-encryption.org/v1\n"


@dataclass(frozen=True)
class CipherParams:
    """Key material for one run. Never log an instance."""

    passphrase: str = ""
    public_key: str = ""
    private_key: str = ""

    def __repr__(self) -> str:
        return "CipherParams(****)"

    @property
    def can_encrypt(self) -> bool:
        return bool(self.public_key or self.passphrase)

    @property
    def can_decrypt(self) -> bool:
        return bool(self.private_key or self.passphrase)


def encrypt(src: BinaryIO, dst: BinaryIO, params: CipherParams) -> None:
    """Encrypt everything readable from ``src`` into ``dst``.

    The public key takes precedence over the passphrase.
    """
    data = src.read()
    try:
        if params.public_key:
            try:
                recipient = x25519.Recipient.from_str(params.public_key)
            except pyrage.RecipientError as e:
                raise CapabilityError(f"invalid public key: {e}") from e
            ciphertext = pyrage.encrypt(data, [recipient])
        elif params.passphrase:
            ciphertext = age_passphrase.encrypt(data, params.passphrase)
        else:
            raise CapabilityError("cannot encrypt without a public key or a passphrase")
    except pyrage.EncryptError as e:
        raise PostStepFailed(f"failed to encrypt: {e}") from e

    dst.write(ciphertext)
    dst.flush()


def decrypt(src: BinaryIO, dst: BinaryIO, params: CipherParams) -> None:
    """Decrypt ``src`` into ``dst``.

    Raises ``MalformedCiphertext`` when the input is not age data at all and
    ``NoIdentityMatch`` when the key or passphrase does not open it.
    """
    data = src.read()
    if not data.startswith(AGE_HEADER):
        raise MalformedCiphertext("input is not an age encrypted file")

    try:
        if params.private_key:
            try:
                identity = x25519.Identity.from_str(params.private_key)
            except pyrage.IdentityError as e:
                raise CapabilityError(f"invalid private key: {e}") from e
            plaintext = pyrage.decrypt(data, [identity])
        elif params.passphrase:
            plaintext = age_passphrase.decrypt(data, params.passphrase)
        else:
            raise CapabilityError("cannot decrypt without a private key or a passphrase")
    except pyrage.DecryptError as e:
        if params.private_key:
            raise NoIdentityMatch("no identity matched the recipients of the file") from e
        raise NoIdentityMatch("invalid passphrase") from e

    dst.write(plaintext)
    dst.flush()


def _encrypt_one(path: str, params: CipherParams, keep_src: bool) -> str:
    logger.debug(f"encrypting: {path}")
    target = f"{path}.age"

    try:
        src = open(path, "rb")
    except OSError as e:
        raise PostStepFailed(f"could not read {path}: {e.strerror or e}") from e

    with src:
        try:
            with open(target, "wb") as dst:
                encrypt(src, dst, params)
        except Exception as e:
            if os.path.exists(target):
                os.remove(target)
            if isinstance(e, (CapabilityError, PostStepFailed)):
                raise
            raise PostStepFailed(f"could not encrypt {path}: {e}") from e

    # The ciphertext is closed at this point
    if not keep_src:
        try:
            os.remove(path)
        except OSError as e:
            raise PostStepFailed(f"could not remove {path}: {e.strerror or e}") from e

    return target


def encrypt_file(path: str, params: CipherParams, keep_src: bool = False) -> list[str]:
    """Encrypt ``path`` into ``<path>.age``; directories are done file by file.

    Returns the encrypted files written. A failure mid-directory leaves the
    files already encrypted in place.
    """
    if not os.path.isdir(path):
        return [_encrypt_one(path, params, keep_src)]

    logger.debug("dump is a directory, encrypting all files inside")
    sources = []
    for root, dirs, names in os.walk(path):
        dirs.sort()
        for name in sorted(names):
            full = os.path.join(root, name)
            if os.path.isfile(full) and not os.path.islink(full):
                sources.append(full)

    return [_encrypt_one(source, params, keep_src) for source in sources]


def decrypt_file(path: str, params: CipherParams) -> str:
    """Decrypt ``<name>.age`` into ``<name>``. Returns the plaintext path."""
    logger.info(f"decrypting {path}")
    target = path.removesuffix(".age")

    with open(path, "rb") as src:
        try:
            with open(target, "wb") as dst:
                decrypt(src, dst, params)
        except BaseException:
            if os.path.exists(target):
                os.remove(target)
            raise

    return target


def generate_identity() -> tuple[str, str]:
    """New x25519 key pair as ``(private, public)`` strings."""
    identity = x25519.Identity.generate()
    return str(identity), str(identity.to_public())
