"""
Per-user credential records

Layout under the users root:

    {email}/verification.enc   the sentinel "password", proves the password
    {email}/name.enc           display name
    {email}/devices.enc        registered devices
    {email}/{app_origin}/**    app storage, see services.storage

All three records are encrypted with the user's derived key. Plain accounts
(fixtures and demos) are stored unencrypted and always verify.
"""

import json
import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional

from nosuite.core.config import Settings
from nosuite.core.encryption import DECRYPT_FAILED, CipherEngine
from nosuite.core.errors import DecryptFailure, Forbidden, Refuse
from nosuite.schemas.auth import Device
from nosuite.services.paths import PathResolver

logger = logging.getLogger(__name__)

VERIFICATION_FILE = "verification.enc"
NAME_FILE = "name.enc"
DEVICES_FILE = "devices.enc"
PASSWORD_SENTINEL = "password"

BETA_ACCESS_FILE = "beta-access.json"
TESTERS_FILE = "testers.json"


class CredentialStore:
    """Reads and writes the encrypted account records of each user"""

    def __init__(self, settings: Settings, cipher: CipherEngine, resolver: PathResolver):
        self.settings = settings
        self.cipher = cipher
        self.resolver = resolver

    def user_key(self, email: str, hashed_password: str) -> Optional[bytes]:
        """Derived key of the user, None for plain accounts"""
        if self.settings.is_plain_account(email):
            return None
        return self.cipher.derive_user_key(hashed_password)

    # ------------------------------------------------------------------
    # Access lists
    # ------------------------------------------------------------------

    def _read_list(self, filename: str) -> List[str]:
        path = self.resolver.users_root / filename
        if not path.is_file():
            return []
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def may_sign_up(self, email: str) -> bool:
        """Whether /email offers a sign-up to this address"""
        return email in self._read_list(BETA_ACCESS_FILE) or email in self._read_list(TESTERS_FILE)

    def may_authenticate(self, email: str) -> bool:
        """Testers gate, checked on every sign-in and sign-up"""
        return email in self._read_list(TESTERS_FILE)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def user_exists(self, email: str) -> bool:
        try:
            return self.resolver.user_dir(email).is_dir()
        except Forbidden:
            return False

    def verify_password(self, email: str, hashed_password: str) -> bool:
        if self.settings.is_plain_account(email):
            return True

        path = self.resolver.user_dir(email) / VERIFICATION_FILE
        if not path.is_file() or not hashed_password:
            return False

        return self.cipher.read_json(path, self.user_key(email, hashed_password)) == PASSWORD_SENTINEL

    def create_user(self, email: str, hashed_password: str, name: Optional[str]) -> None:
        """Raises Refuse when the account already exists, e.g. a concurrent sign-up won"""
        user_dir = self.resolver.user_dir(email)
        try:
            user_dir.mkdir(parents=True)
        except FileExistsError:
            logger.warning(f"Sign-up for {email} lost a race with an existing account")
            raise Refuse()
        key = self.user_key(email, hashed_password)

        self.cipher.write_json(user_dir / VERIFICATION_FILE, PASSWORD_SENTINEL, key)
        self.cipher.write_json(user_dir / NAME_FILE, name or email.split("@")[0], key)
        self.cipher.write_json(user_dir / DEVICES_FILE, [], key)
        logger.info(f"Created account {email}")

    def read_name(self, email: str, hashed_password: str) -> Optional[str]:
        path = self.resolver.user_dir(email) / NAME_FILE
        if not path.is_file():
            return None

        name = self.cipher.read_json(path, self.user_key(email, hashed_password))
        if name is DECRYPT_FAILED:
            raise DecryptFailure()
        return name

    def list_devices(self, email: str, hashed_password: str) -> List[Device]:
        path = self.resolver.user_dir(email) / DEVICES_FILE
        if not path.is_file():
            return []

        devices = self.cipher.read_json(path, self.user_key(email, hashed_password))
        if devices is DECRYPT_FAILED:
            logger.warning(f"Device list of {email} does not decrypt")
            return []
        return [Device(**device) for device in devices]

    def has_device(self, email: str, device_id: str, hashed_password: str) -> bool:
        return any(device.id == device_id for device in self.list_devices(email, hashed_password))

    def add_device(self, email: str, device: Device, hashed_password: str) -> List[Device]:
        """Register a device, replacing any previous record with the same id"""
        devices = [d for d in self.list_devices(email, hashed_password) if d.id != device.id]
        devices.append(device)

        path = self.resolver.user_dir(email) / DEVICES_FILE
        self.cipher.write_json(
            path,
            [d.model_dump() for d in devices],
            self.user_key(email, hashed_password),
        )
        return devices

    def change_password(self, email: str, old_hash: str, new_hash: str) -> int:
        """
        Re-encrypt every file of the account under the key of the new password

        Outstanding tokens carry the old hash and stop verifying once the
        verification record is rewritten, which happens last. Returns the
        number of files re-encrypted.
        """
        if not self.verify_password(email, old_hash):
            raise Forbidden("Invalid password")
        if self.settings.is_plain_account(email):
            return 0

        user_dir = self.resolver.user_dir(email)
        old_key = self.user_key(email, old_hash)
        new_key = self.user_key(email, new_hash)
        verification = user_dir / VERIFICATION_FILE
        count = 0

        for dirpath, dirnames, filenames in os.walk(user_dir):
            for filename in filenames:
                path = Path(dirpath) / filename
                if path == verification or path.suffix == ".temp" or path.is_symlink():
                    continue

                plaintext = self.cipher.read_encrypted(path, old_key)
                if plaintext is None:
                    logger.warning(f"Skipping undecryptable file during password change of {email}")
                    continue

                self._replace(path, plaintext, new_key)
                count += 1

        self._replace(verification, json.dumps(PASSWORD_SENTINEL).encode("utf-8"), new_key)
        logger.info(f"Password changed for {email}, {count} files re-encrypted")
        return count + 1

    def _replace(self, path: Path, plaintext: bytes, key: bytes) -> None:
        tmp_path = path.with_name(path.name + ".rekey")
        self.cipher.write_encrypted(tmp_path, plaintext, key)
        os.replace(tmp_path, path)

    def reset_demo_account(self) -> None:
        """Recreate the demo account from the template account"""
        demo_dir = self.resolver.user_dir(self.settings.DEMO_ACCOUNT)
        template_dir = self.resolver.user_dir(self.settings.TEMPLATE_ACCOUNT)

        shutil.rmtree(demo_dir, ignore_errors=True)
        if template_dir.is_dir():
            shutil.copytree(template_dir, demo_dir)
        else:
            demo_dir.mkdir(parents=True)

        self.cipher.write_json(demo_dir / NAME_FILE, self.settings.DEMO_ACCOUNT_NAME, None)
        logger.info("Demo account reset from template")
