"""
Admin bootstrap: one-time unlock of the master key

The master key is never stored. It is derived from a physical key (handed to
the operator, typically on an NFC tag) and the admin password, and checked
against a verification blob produced at provisioning time. Until the unlock
succeeds every storage and auth endpoint answers "service not ready".
"""

import hmac
import logging
import threading
from typing import Optional

from nosuite.core.config import Settings
from nosuite.core.encryption import CipherEngine, create_key, hash_password, stretch_key
from nosuite.core.errors import Forbidden, ServiceNotReady

logger = logging.getLogger(__name__)


def derive_master_key(physical_key_hex: str, admin_password: str, iterations: int) -> bytes:
    physical_key = bytes.fromhex(physical_key_hex)
    return stretch_key(hash_password(admin_password).encode("utf-8"), physical_key, iterations)


def provision(
    cipher: CipherEngine,
    physical_key_hex: str,
    admin_password: str,
    admin_device_id: str,
) -> str:
    """
    Build the ADMIN_VERIFICATION value for a deployment

    Returns the hex ciphertext of the admin device id under the master key
    derived from the physical key and admin password.
    """
    master_key = derive_master_key(physical_key_hex, admin_password, cipher.iterations)
    return cipher.encrypt_json(admin_device_id, master_key).hex()


class AdminBootstrap:
    """Locked -> Unlocked state machine, one-way for the process lifetime"""

    def __init__(self, settings: Settings, cipher: CipherEngine):
        self.settings = settings
        self.cipher = cipher
        self._lock = threading.Lock()
        self._unlocked = False

    @property
    def unlocked(self) -> bool:
        return self._unlocked

    def require_ready(self) -> None:
        if not self._unlocked:
            raise ServiceNotReady()

    def _check_admin_device(self, admin_device_id: Optional[str]) -> bool:
        expected = self.settings.ADMIN_DEVICE_ID
        if not expected or not admin_device_id:
            return False
        return hmac.compare_digest(expected.encode("utf-8"), admin_device_id.encode("utf-8"))

    def create_physical_key(self, admin_device_id: Optional[str]) -> str:
        if not self._check_admin_device(admin_device_id):
            logger.warning("Physical key requested from an unknown admin device")
            raise Forbidden()
        return create_key()

    def unlock(self, physical_key_hex: str, admin_password: str, admin_device_id: Optional[str]) -> bool:
        if not self._check_admin_device(admin_device_id):
            logger.warning("Unlock attempted from an unknown admin device")
            return False

        verification = self.settings.ADMIN_VERIFICATION
        if not verification:
            logger.error("ADMIN_VERIFICATION is not configured, the service cannot be unlocked")
            return False

        try:
            candidate = derive_master_key(physical_key_hex, admin_password, self.cipher.iterations)
            payload = self.cipher.decrypt_json(bytes.fromhex(verification), candidate)
        except ValueError:
            logger.warning("Unlock attempted with a malformed physical key")
            return False

        if payload != self.settings.ADMIN_DEVICE_ID:
            logger.warning("Unlock failed: wrong physical key or admin password")
            return False

        with self._lock:
            if self._unlocked:
                return hmac.compare_digest(self.cipher.master_key, candidate)
            self.cipher.set_master_key(candidate)
            self._unlocked = True

        logger.info("Service unlocked")
        return True

    def unlock_with_master_key(self, master_key_hex: str) -> None:
        """Development autostart from a configured MASTER_KEY"""
        with self._lock:
            if self._unlocked:
                return
            self.cipher.set_master_key(bytes.fromhex(master_key_hex))
            self._unlocked = True
        logger.warning("Service unlocked from MASTER_KEY, do not use this in production")


if __name__ == "__main__":
    # python -m nosuite.core.bootstrap
    # Prints a new physical key and the matching ADMIN_VERIFICATION value.
    import getpass

    from nosuite.core.config import get_settings

    settings = get_settings()
    if not settings.ADMIN_DEVICE_ID:
        raise SystemExit("Set ADMIN_DEVICE_ID before provisioning")

    cipher = CipherEngine(settings.iv_bytes, iterations=settings.KDF_ITERATIONS)
    physical_key = create_key()
    password = getpass.getpass("Admin password: ")

    print(f"Physical key:        {physical_key}")
    print(f"ADMIN_VERIFICATION = {provision(cipher, physical_key, password, settings.ADMIN_DEVICE_ID)}")
