"""
Adapter around SQLCipher page decryption.

The cipher itself is a trusted dependency (the `sqlcipher3` binding). This
module only knows how the NT client lays out its files and how to ask
SQLCipher for a plaintext export:

    plaintext = PageCipherAdapter().decrypt(encrypted_bytes, key)
"""
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Tuple

from .. import config
from ..exceptions import BadKeyError, CorruptDatabaseError, DecryptionError
from .db import SQLITE_MAGIC

# (encrypted bytes, key) -> plaintext bytes
Decryptor = Callable[[bytes, str], bytes]


@dataclass(frozen=True)
class CipherProfile:
    """SQLCipher parameters used by the NT client."""
    header_size: int = config.NT_DB_HEADER_SIZE
    page_size: int = config.CIPHER_PAGE_SIZE
    kdf_iter: int = config.CIPHER_KDF_ITER
    kdf_algorithm: str = config.CIPHER_KDF_ALGORITHM
    hmac_algorithms: Tuple[str, ...] = config.CIPHER_HMAC_ALGORITHMS


def load_key(path: Path) -> str:
    """Reads a key file, stripping surrounding whitespace."""
    key = path.read_text(encoding="utf-8").strip()
    if not key:
        raise BadKeyError(f"Key file is empty: {path}")
    return key


def apply_profile(conn, key: str, profile: CipherProfile, hmac_algorithm: str):
    """Keys a sqlcipher3 connection. PRAGMA key does not accept bound parameters."""
    escaped = key.replace("'", "''")
    conn.execute(f"PRAGMA key = '{escaped}'")
    conn.execute(f"PRAGMA cipher_page_size = {int(profile.page_size)}")
    conn.execute(f"PRAGMA kdf_iter = {int(profile.kdf_iter)}")
    conn.execute(f"PRAGMA cipher_kdf_algorithm = {profile.kdf_algorithm}")
    conn.execute(f"PRAGMA cipher_hmac_algorithm = {hmac_algorithm}")


def _import_sqlcipher():
    try:
        import sqlcipher3
    except ImportError as e:
        raise DecryptionError(
            "sqlcipher3 is not installed; install the 'sqlcipher' extra (pip install qqcleaner[sqlcipher])"
        ) from e
    return sqlcipher3


class PageCipherAdapter:
    def __init__(self, profile: CipherProfile = CipherProfile()):
        self.profile = profile

    def __call__(self, encrypted: bytes, key: str) -> bytes:
        return self.decrypt(encrypted, key)

    def strip_header(self, encrypted: bytes) -> bytes:
        """Removes the client's fixed header in front of the first cipher page."""
        body = encrypted[self.profile.header_size:]
        if len(body) < self.profile.page_size or len(body) % self.profile.page_size:
            raise CorruptDatabaseError(
                f"Encrypted database has {len(body)} bytes after the header, "
                f"expected whole {self.profile.page_size}-byte pages"
            )
        return body

    def decrypt(self, encrypted: bytes, key: str) -> bytes:
        """
        Returns the plaintext SQLite image for `encrypted`.
        Raises BadKeyError if no HMAC variant accepts the key, CorruptDatabaseError
        if the bytes are damaged.
        """
        sqlcipher3 = _import_sqlcipher()
        body = self.strip_header(encrypted)

        with tempfile.TemporaryDirectory(prefix="qqcleaner-") as tmp:
            cipher_path = Path(tmp) / "cipher.db"
            plain_path = Path(tmp) / "plain.db"
            cipher_path.write_bytes(body)

            for hmac_algorithm in self.profile.hmac_algorithms:
                if plain_path.exists():
                    plain_path.unlink()
                conn = sqlcipher3.connect(str(cipher_path))
                try:
                    apply_profile(conn, key, self.profile, hmac_algorithm)
                    try:
                        conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
                    except sqlcipher3.DatabaseError:
                        logging.debug(f"Key rejected with {hmac_algorithm}")
                        continue

                    try:
                        conn.execute("ATTACH DATABASE ? AS plaintext KEY ''", (str(plain_path),))
                        conn.execute("SELECT sqlcipher_export('plaintext')").fetchone()
                        conn.execute("DETACH DATABASE plaintext")
                    except sqlcipher3.DatabaseError as e:
                        raise CorruptDatabaseError(f"Export failed after key was accepted: {e}") from e
                finally:
                    conn.close()

                logging.debug(f"Decrypted {len(body)} bytes with {hmac_algorithm}")
                plaintext = plain_path.read_bytes()
                if not plaintext.startswith(SQLITE_MAGIC):
                    raise CorruptDatabaseError("Export did not produce a SQLite image")
                return plaintext

        raise BadKeyError("Decryption key rejected by every cipher profile")


def is_plaintext(data: bytes) -> bool:
    return data.startswith(SQLITE_MAGIC)

