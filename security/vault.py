"""
security/vault.py -- Reversible symmetric encryption for session payloads
and the legacy password scheme.

Algorithm: AES-256 in CBC mode with PKCS7 padding, base64 text output.
The IV is fixed per installation, so encryption is deterministic: the same
plaintext always yields the same ciphertext. Legacy password hashes
(sha512(salt + encrypt(passwd))) depend on that property, which is also why
this class is not a general purpose encryption API.

Multi-layer mode runs the data through the cipher once per layer, each with
its own key derived from the configured one by a character shift.

Config mode:
  A Vault built without key or IV refuses to encrypt and instead exposes
  freshly generated material in ``config_data`` ("key" as text, "iv" as hex)
  so an operator can paste it into VAULT_KEY / VAULT_IV.
"""

from __future__ import annotations

import base64
import binascii
import logging
import math
import secrets

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from core.config import Settings
from core.errors import VaultError

logger = logging.getLogger("splkit.vault")

KEY_SIZE = 32
IV_SIZE = 16
MAX_ASCII = 255

KEY_CHARS = '01$%234{}-56789qwe&*rtyu=_+~!@#iop[]asd:"|fg|(hjkl;\\zxc|^vbnm,./?><:")'

# Character codes a derived layer key may not contain.
BLACKLIST = frozenset(list(range(33)) + [127, 129, 141, 143, 144, 157, 160])


def generate_key() -> str:
    return "".join(secrets.choice(KEY_CHARS) for _ in range(KEY_SIZE))


def generate_iv() -> str:
    return secrets.token_bytes(IV_SIZE).hex()


def derive_layer_keys(key: str, layers: int, shift: int) -> list[str]:
    """Return one key per layer; index 0 is the configured key."""
    keys = [key]
    for i in range(2, layers + 1):
        step = shift * i
        if step >= MAX_ASCII:
            step = math.ceil(MAX_ASCII / i)
        chars = []
        for char in keys[-1]:
            code = ord(char) + step
            if code > MAX_ASCII:
                code -= MAX_ASCII
            while code in BLACKLIST:
                code += 1
            chars.append(chr(code))
        keys.append("".join(chars))
    return keys


class Vault:
    def __init__(
        self,
        key: str = "",
        iv: str = "",
        layers: int = 1,
        shift: int = 4,
        debug: bool = False,
    ) -> None:
        self.layers = max(int(layers), 1)
        self.shift = int(shift)
        self.debug = debug
        self.config_data: dict[str, str] = {}
        self.config_mode = not (key and iv)

        if self.config_mode:
            self.config_data = {"key": generate_key(), "iv": generate_iv()}
            self._keys: list[bytes] = []
            self._iv = b""
            return

        try:
            self._iv = bytes.fromhex(iv)[:IV_SIZE]
        except ValueError as exc:
            raise VaultError("VAULT_IV must be hex encoded") from exc
        if len(self._iv) != IV_SIZE:
            raise VaultError(f"VAULT_IV must decode to {IV_SIZE} bytes")

        self._keys = [k.encode("latin-1")[:KEY_SIZE] for k in derive_layer_keys(key, self.layers, self.shift)]
        if len(self._keys[0]) not in (16, 24, 32):
            raise VaultError("VAULT_KEY must be 16, 24 or 32 characters")

    def _cipher(self, key: bytes) -> Cipher:
        return Cipher(algorithms.AES(key), modes.CBC(self._iv))

    def _crypt(self, data: bytes, key: bytes) -> str:
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(data) + padder.finalize()
        encryptor = self._cipher(key).encryptor()
        return base64.b64encode(encryptor.update(padded) + encryptor.finalize()).decode("ascii")

    def _dcrypt(self, data: str, key: bytes) -> bytes:
        try:
            raw = base64.b64decode(data, validate=True)
            decryptor = self._cipher(key).decryptor()
            padded = decryptor.update(raw) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except (binascii.Error, ValueError) as exc:
            raise VaultError("Could not decrypt data") from exc

    def _check(self, data) -> None:
        if self.config_mode:
            raise VaultError("Vault is in config mode: set VAULT_KEY and VAULT_IV")
        if not isinstance(data, str):
            raise TypeError(f"Vault only handles str, got {type(data).__name__}")

    def encrypt(self, data: str) -> str:
        self._check(data)
        result = data
        for i, key in enumerate(self._keys, start=1):
            result = self._crypt(result.encode("utf-8"), key)
            if self.debug:
                logger.debug("Encrypted layer %d: %s", i, result)
        return result

    def decrypt(self, data: str) -> str:
        self._check(data)
        result = data
        for i, key in reversed(list(enumerate(self._keys, start=1))):
            try:
                result = self._dcrypt(result, key).decode("utf-8")
            except UnicodeDecodeError as exc:
                raise VaultError("Could not decrypt data") from exc
            if self.debug:
                logger.debug("Decrypted layer %d", i)
        return result


def vault_from_settings(settings: Settings) -> Vault:
    """Build the application Vault.

    Dev mode (DEBUG=true): missing key material is generated for this process
    with a warning. Production mode: refuse to start without it.
    """
    if settings.vault_key and settings.vault_iv:
        return Vault(settings.vault_key, settings.vault_iv, settings.vault_layers, settings.vault_shift)

    if not settings.debug:
        raise VaultError(
            "VAULT_KEY and VAULT_IV are required in production mode. "
            "Run 'python main.py keygen' and add the output to your environment."
        )
    generated = Vault().config_data
    logger.warning(
        "WARNING: Using auto-generated VAULT_KEY/VAULT_IV. "
        "Encrypted session data and legacy passwords will not survive restarts."
    )
    return Vault(generated["key"], generated["iv"], settings.vault_layers, settings.vault_shift)
