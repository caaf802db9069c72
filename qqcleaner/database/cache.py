"""
Decrypted database cache.

Decryption is the expensive step, so plaintext images are persisted next to
the encrypted sources as ``<stem>.clean.db``. A small JSON manifest records
the input key (source name, size, mtime, key fingerprint); the cached blob is
reused only when that input key is unchanged. Parsing is deterministic, so
equal inputs always mean equal records.
"""
import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from .. import config
from ..exceptions import BadKeyError
from .cipher import Decryptor, is_plaintext

MANIFEST_SUFFIX = ".cache.json"


def clean_path_for(source: Path, cache_dir: Optional[Path] = None) -> Path:
    """files_in_chat.db -> files_in_chat.clean.db"""
    base = cache_dir or source.parent
    return base / f"{source.stem}{config.CLEAN_DB_SUFFIX}"


def key_fingerprint(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


class DecryptedCache:
    def __init__(self, cache_dir: Optional[Path] = None):
        self.cache_dir = cache_dir

    def input_key(self, source: Path, key: str) -> Dict[str, Any]:
        st = source.stat()
        return {
            "source": source.name,
            "size": st.st_size,
            "mtime_ns": st.st_mtime_ns,
            "key_sha256": key_fingerprint(key),
        }

    def _manifest_path(self, clean_path: Path) -> Path:
        return clean_path.with_name(clean_path.name + MANIFEST_SUFFIX)

    def _read_manifest(self, clean_path: Path) -> Optional[Dict[str, Any]]:
        manifest = self._manifest_path(clean_path)
        if not manifest.exists():
            return None
        try:
            with manifest.open("r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logging.warning(f"Ignoring unreadable cache manifest {manifest}: {e}")
            return None

    def _write(self, clean_path: Path, plaintext: bytes, input_key: Dict[str, Any]):
        clean_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = clean_path.with_name(clean_path.name + config.PARTIAL_SUFFIX)
        tmp.write_bytes(plaintext)
        os.replace(tmp, clean_path)
        with self._manifest_path(clean_path).open("w", encoding="utf-8") as f:
            json.dump(input_key, f, indent=2, sort_keys=True)

    def load(self, source: Path, key: Optional[str], decrypt: Decryptor) -> bytes:
        """
        Returns the plaintext image for `source`.

        1. Encrypted source missing: use an existing clean copy as-is.
        2. Manifest matches the input key: reuse the cached blob.
        3. Otherwise decrypt and refresh the cache.
        """
        clean_path = clean_path_for(source, self.cache_dir)

        if not source.exists():
            if clean_path.exists():
                logging.info(f"Using decrypted database {clean_path} (no encrypted source).")
                return clean_path.read_bytes()
            raise FileNotFoundError(f"Neither {source} nor {clean_path} exists")

        encrypted = source.read_bytes()
        if is_plaintext(encrypted):
            logging.info(f"{source.name} is already plaintext, skipping decryption.")
            return encrypted

        if key is None:
            raise BadKeyError(f"{source.name} is encrypted and no key was provided")

        input_key = self.input_key(source, key)
        if clean_path.exists() and self._read_manifest(clean_path) == input_key:
            logging.info(f"Cache hit for {source.name}: {clean_path}")
            return clean_path.read_bytes()

        logging.info(f"Decrypting {source.name}...")
        plaintext = decrypt(encrypted, key)
        self._write(clean_path, plaintext, input_key)
        logging.info(f"Decrypted {source.name} -> {clean_path}")
        return plaintext
