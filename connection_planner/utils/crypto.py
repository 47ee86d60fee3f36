"""
At-rest encryption for external connection secrets.

The stored form of ``ExternalConnection.value_field`` is a Fernet token
(URL-safe base64 text). The key comes from ENCRYPTION_KEY and is read on
every call, so rotating the variable takes effect without a restart of
the import graph (tests set it at module load).

Generate a key with:
    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

import os

from cryptography.fernet import Fernet


def _fernet() -> Fernet:
    key = os.getenv("ENCRYPTION_KEY")
    if not key:
        raise RuntimeError("ENCRYPTION_KEY is not set; refusing to store connection secrets")
    return Fernet(key.encode())


def encrypt_secret(plaintext: str) -> str:
    """Return the Fernet token for a connection secret."""
    return _fernet().encrypt(plaintext.encode("utf-8")).decode("ascii")


def decrypt_secret(token: str) -> str:
    """Inverse of encrypt_secret().

    Raises:
        RuntimeError: ENCRYPTION_KEY is not set.
        cryptography.fernet.InvalidToken: token was altered or made with another key.
    """
    return _fernet().decrypt(token.encode("ascii")).decode("utf-8")
