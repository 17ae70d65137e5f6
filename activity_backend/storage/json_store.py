from __future__ import annotations

import base64
import json
import logging
import os
import time
from dataclasses import dataclass
from hashlib import sha256
from pathlib import Path
from typing import Any, List, Optional
from urllib.parse import quote, unquote

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

FILE_SUFFIX = ".json"
# Escaped stems longer than this are replaced by a digest so every derived
# name (temp, corrupt) stays well under NAME_MAX.
MAX_STEM_LENGTH = 150
HASHED_STEM_PREFIX = "@"
ID_FIELD = "playerId"


def _derive_key(secret: str) -> bytes:
    return sha256(secret.encode("utf-8")).digest()


def file_key_for(player_id: str) -> str:
    """
    Filesystem-safe file stem for a player id. Short ids escape reversibly;
    long ones hash to `@<sha256>`, and `@` never appears in an escaped stem.
    """
    escaped = quote(player_id, safe="").replace(".", "%2E")
    if len(escaped) <= MAX_STEM_LENGTH:
        return escaped
    return HASHED_STEM_PREFIX + sha256(player_id.encode("utf-8")).hexdigest()


def is_hashed_key(file_key: str) -> bool:
    return file_key.startswith(HASHED_STEM_PREFIX)


def player_id_for(file_key: str) -> str:
    return unquote(file_key)


class CorruptDocumentError(ValueError):
    pass


@dataclass
class JsonDocumentStore:
    """
    One JSON document per key under `base_dir`.

    Writes go to a temp file that is fsynced and renamed over the target, so a
    reader sees either the previous document or the new one, never a partial.
    """

    base_dir: Path
    encryption_secret: Optional[str] = None
    encryption_algorithm: str = "aes-256-gcm"

    def _ensure_dir(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_key(self) -> Optional[bytes]:
        if not self.encryption_secret:
            return None
        return _derive_key(self.encryption_secret)

    def path_for(self, player_id: str) -> Path:
        return self.base_dir / f"{file_key_for(player_id)}{FILE_SUFFIX}"

    def init(self) -> None:
        self._ensure_dir()

    def exists(self, player_id: str) -> bool:
        return self.path_for(player_id).is_file()

    def list_ids(self) -> List[str]:
        if not self.base_dir.exists():
            return []
        ids = []
        for path in self.base_dir.iterdir():
            if path.suffix != FILE_SUFFIX or not path.is_file():
                continue
            if not is_hashed_key(path.stem):
                ids.append(player_id_for(path.stem))
                continue
            player_id = self._embedded_id(path)
            if player_id is not None:
                ids.append(player_id)
        return sorted(ids)

    def _embedded_id(self, path: Path) -> Optional[str]:
        try:
            document = self._read_path(path)
        except (OSError, CorruptDocumentError):
            logger.warning("Skipping unreadable document %s", path.name, exc_info=True)
            return None
        player_id = document.get(ID_FIELD) if isinstance(document, dict) else None
        if not isinstance(player_id, str) or path.stem != file_key_for(player_id):
            logger.warning("Document %s has no matching %s", path.name, ID_FIELD)
            return None
        return player_id

    def read(self, player_id: str) -> Optional[Any]:
        """
        Return the decoded document, or None when there is no file.

        Raises CorruptDocumentError when the file exists but cannot be decoded;
        OSError propagates for unreadable files.
        """
        path = self.path_for(player_id)
        if not path.is_file():
            return None
        return self._read_path(path)

    def _read_path(self, path: Path) -> Any:
        raw = path.read_text(encoding="utf-8")
        if not raw.strip():
            raise CorruptDocumentError(f"{path.name} is empty")
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CorruptDocumentError(f"{path.name} is not valid JSON") from exc

        if self._is_envelope(value):
            key = self._get_key()
            if not key:
                raise CorruptDocumentError(f"{path.name} is encrypted but no key is configured")
            try:
                value = json.loads(self._decrypt(value, key))
            except Exception as exc:
                raise CorruptDocumentError(f"Failed to decrypt {path.name}") from exc
        return value

    def write(self, player_id: str, data: Any) -> None:
        self._ensure_dir()
        path = self.path_for(player_id)
        if is_hashed_key(path.stem) and isinstance(data, dict):
            # The stem is not reversible, so the id travels inside the document.
            data = {**data, ID_FIELD: player_id}
        key = self._get_key()
        if key:
            serialized = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
            payload = json.dumps(self._encrypt(serialized, key))
        else:
            payload = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
        self._write_payload_atomic(path, payload)

    def delete(self, player_id: str) -> bool:
        path = self.path_for(player_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def quarantine(self, player_id: str) -> Optional[Path]:
        """Move an unreadable document aside so the next write starts clean."""
        path = self.path_for(player_id)
        corrupt_path = path.with_suffix(path.suffix + f".corrupt.{int(time.time())}")
        try:
            os.replace(path, corrupt_path)
        except OSError:
            logger.warning("Failed to move corrupt document %s aside", path.name, exc_info=True)
            return None
        return corrupt_path

    def clear(self) -> int:
        removed = 0
        for player_id in self.list_ids():
            if self.delete(player_id):
                removed += 1
        return removed

    def _write_payload_atomic(self, path: Path, payload: str) -> None:
        tmp_path = path.with_suffix(path.suffix + f".{os.getpid()}.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as fp:
                fp.write(payload)
                fp.flush()
                os.fsync(fp.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            try:
                tmp_path.unlink()
            except OSError:
                pass
            raise

    # Internal helpers -------------------------------------------------

    @staticmethod
    def _is_envelope(value: Any) -> bool:
        return (
            isinstance(value, dict)
            and value.get("v") == 1
            and "iv" in value
            and "payload" in value
            and "tag" in value
        )

    def _encrypt(self, plaintext: str, key: bytes) -> dict[str, Any]:
        aes = AESGCM(key)
        iv = os.urandom(12)
        ciphertext = aes.encrypt(iv, plaintext.encode("utf-8"), None)
        tag = ciphertext[-16:]
        payload = ciphertext[:-16]
        return {
            "v": 1,
            "alg": self.encryption_algorithm,
            "iv": base64.b64encode(iv).decode("ascii"),
            "tag": base64.b64encode(tag).decode("ascii"),
            "payload": base64.b64encode(payload).decode("ascii"),
        }

    def _decrypt(self, envelope: dict[str, Any], key: bytes) -> str:
        aes = AESGCM(key)
        iv = base64.b64decode(envelope["iv"])
        tag = base64.b64decode(envelope["tag"])
        payload = base64.b64decode(envelope["payload"])
        plaintext = aes.decrypt(iv, payload + tag, None)
        return plaintext.decode("utf-8")
