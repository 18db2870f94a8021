"""Encrypted storage for device tokens, account details and key shares."""

import asyncio
import base64
import hashlib
import json
import os
import secrets
from pathlib import Path
from typing import Awaitable, Callable, Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from ..logger import get_logger
from ..types import ErrorCode, StorageError
from .entities import ApiModel, AuthTokens, WalletAccountsDetails

logger = get_logger(__name__)

PBKDF2_ITERATIONS = 100_000


class SecureStore(Protocol):
    """Protocol for encrypted key-value backends."""

    def put(self, key: str, value: str) -> None:
        """Encrypt and store a value."""
        ...

    def get(self, key: str) -> str | None:
        """Load and decrypt a value."""
        ...

    def delete(self, key: str) -> bool:
        """Delete a value."""
        ...

    def keys(self) -> list[str]:
        """List stored keys."""
        ...


class MemoryStore:
    """In-memory store for testing."""

    def __init__(self, password: str, iterations: int = PBKDF2_ITERATIONS) -> None:
        self._password = password
        self._iterations = iterations
        self._values: dict[str, tuple[str, str]] = {}  # key -> (encrypted, salt)

    def put(self, key: str, value: str) -> None:
        salt = secrets.token_hex(32)
        self._values[key] = (_encrypt(value, self._password, salt, self._iterations), salt)

    def get(self, key: str) -> str | None:
        if key not in self._values:
            return None
        encrypted, salt = self._values[key]
        return _decrypt(encrypted, self._password, salt, self._iterations)

    def delete(self, key: str) -> bool:
        return self._values.pop(key, None) is not None

    def keys(self) -> list[str]:
        return list(self._values.keys())


class FileSystemStore:
    """File system store, one encrypted file per key."""

    def __init__(self, base_path: str | Path, password: str, iterations: int = PBKDF2_ITERATIONS) -> None:
        self._base_path = Path(base_path)
        self._base_path.mkdir(parents=True, exist_ok=True)
        self._password = password
        self._iterations = iterations

    def _path(self, key: str) -> Path:
        # Reversible for any key
        return self._base_path / f"{key.encode().hex()}.enc"

    def put(self, key: str, value: str) -> None:
        """Write through a temp file so readers never see a partial record."""
        salt = secrets.token_hex(32)
        encrypted = _encrypt(value, self._password, salt, self._iterations)

        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            tmp_path.write_text(json.dumps({"encrypted": encrypted, "salt": salt}))
            try:
                tmp_path.chmod(0o600)
            except (OSError, NotImplementedError):
                pass  # Windows doesn't support chmod
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(ErrorCode.STORAGE_ERROR, f"Failed to write {key}", e) from e

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            raise StorageError(ErrorCode.STORAGE_ERROR, f"Failed to read {key}", e) from e
        return _decrypt(data["encrypted"], self._password, data["salt"], self._iterations)

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if path.exists():
            # Overwrite with zeros before deleting
            size = path.stat().st_size
            path.write_bytes(b"\x00" * size)
            path.unlink()
            return True
        return False

    def keys(self) -> list[str]:
        keys = []
        for path in self._base_path.glob("*.enc"):
            try:
                keys.append(bytes.fromhex(path.stem).decode())
            except ValueError:
                logger.warning(f"Ignoring foreign file {path.name} in key store")
        return keys


def _derive_key(password: str, salt: str, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode(), bytes.fromhex(salt), iterations, dklen=32)


def _encrypt(data: str, password: str, salt: str, iterations: int = PBKDF2_ITERATIONS) -> str:
    """Encrypt data with password."""
    nonce = secrets.token_bytes(12)
    cipher = ChaCha20Poly1305(_derive_key(password, salt, iterations))
    ciphertext = cipher.encrypt(nonce, data.encode(), None)
    return base64.b64encode(nonce + ciphertext).decode()


def _decrypt(encrypted: str, password: str, salt: str, iterations: int = PBKDF2_ITERATIONS) -> str:
    """Decrypt data with password."""
    data = base64.b64decode(encrypted)
    nonce, ciphertext = data[:12], data[12:]
    cipher = ChaCha20Poly1305(_derive_key(password, salt, iterations))
    try:
        return cipher.decrypt(nonce, ciphertext, None).decode()
    except InvalidTag as e:
        raise StorageError(ErrorCode.STORAGE_ERROR, "Stored value can't be decrypted", e) from e


# ============================================================================
# Device records
# ============================================================================


class DeviceRecord(ApiModel):
    """Tokens and account details of one device, written together."""

    tokens: AuthTokens | None = None
    accounts_details: WalletAccountsDetails | None = None


class MPCWalletsDataStorage:
    """
    Per-device persistence of auth tokens and account details.

    Both live in a single record so one `put` updates them atomically.
    """

    RECORD_PREFIX = "mpc-device-"

    def __init__(self, store: SecureStore) -> None:
        self._store = store

    def _key(self, device_id: str) -> str:
        return f"{self.RECORD_PREFIX}{device_id}"

    def _load(self, device_id: str) -> DeviceRecord:
        raw = self._store.get(self._key(device_id))
        if raw is None:
            return DeviceRecord()
        try:
            return DeviceRecord.model_validate_json(raw)
        except ValueError as e:
            raise StorageError(ErrorCode.STORAGE_ERROR, f"Corrupted record for device {device_id}", e) from e

    def _save(self, device_id: str, record: DeviceRecord) -> None:
        self._store.put(self._key(device_id), record.model_dump_json(by_alias=True))

    def store_wallet(self, device_id: str, tokens: AuthTokens, details: WalletAccountsDetails) -> None:
        """Persist tokens and account details in one write."""
        self._save(device_id, DeviceRecord(tokens=tokens, accounts_details=details))
        logger.debug(f"Stored wallet record for device {device_id}")

    def store_auth_tokens(self, device_id: str, tokens: AuthTokens) -> None:
        record = self._load(device_id)
        record.tokens = tokens
        self._save(device_id, record)

    def store_accounts_details(self, device_id: str, details: WalletAccountsDetails) -> None:
        record = self._load(device_id)
        record.accounts_details = details
        self._save(device_id, record)

    def retrieve_auth_tokens(self, device_id: str) -> AuthTokens | None:
        return self._load(device_id).tokens

    def retrieve_accounts_details(self, device_id: str) -> WalletAccountsDetails | None:
        return self._load(device_id).accounts_details

    def clear(self, device_id: str) -> None:
        """Remove tokens and account details for a device."""
        if self._store.delete(self._key(device_id)):
            logger.info(f"Cleared stored data for device {device_id}")


# ============================================================================
# Key shares
# ============================================================================


Authorizer = Callable[[str], Awaitable[bool]]


class KeyShareStorage:
    """
    Key-storage delegate for the custody SDK.

    Key material is stored encrypted under its key id. Reads and writes go
    through an optional authorizer (e.g. a biometric prompt); a denial
    raises `KEY_ACCESS_DENIED`.

    Example:
        >>> storage = KeyShareStorage(FileSystemStore("~/.ud/keys", app_password))
        >>> await storage.store({"key-1": b"..."})
        >>> shares = await storage.load(["key-1"])
    """

    KEY_PREFIX = "mpc-key-"

    def __init__(self, store: SecureStore, authorizer: Authorizer | None = None) -> None:
        self._store = store
        self._authorizer = authorizer
        self._lock = asyncio.Lock()

    async def _authorize(self, reason: str) -> None:
        if self._authorizer is None:
            return
        if not await self._authorizer(reason):
            raise StorageError(ErrorCode.KEY_ACCESS_DENIED, f"Access to key material denied: {reason}")

    async def store(self, keys: dict[str, bytes]) -> dict[str, bool]:
        """Store key shares. Returns per-key success."""
        async with self._lock:
            await self._authorize("store keys")
            result = {}
            for key_id, material in keys.items():
                try:
                    self._store.put(self.KEY_PREFIX + key_id, base64.b64encode(material).decode())
                    result[key_id] = True
                except StorageError as e:
                    logger.error(f"Failed to store key {key_id}: {e}")
                    result[key_id] = False
            return result

    async def load(self, key_ids: list[str]) -> dict[str, bytes]:
        """Load the key shares that exist among `key_ids`."""
        async with self._lock:
            await self._authorize("load keys")
            result = {}
            for key_id in key_ids:
                value = self._store.get(self.KEY_PREFIX + key_id)
                if value is not None:
                    result[key_id] = base64.b64decode(value)
            return result

    def contains(self, key_ids: list[str]) -> dict[str, bool]:
        stored = set(self._store.keys())
        return {key_id: (self.KEY_PREFIX + key_id) in stored for key_id in key_ids}

    def remove(self, key_id: str) -> bool:
        return self._store.delete(self.KEY_PREFIX + key_id)
