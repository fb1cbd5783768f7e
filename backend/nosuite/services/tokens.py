"""
Stateless bearer tokens

A token is the hex encoding of the master-key ciphertext of

    {email, scope, device, hashed_password, exp}

Nothing is stored server side. Because the token carries the password hash
and is checked against the current verification record on every use,
changing the password is the one way to revoke outstanding tokens.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

from nosuite.core.config import Settings
from nosuite.core.encryption import DECRYPT_FAILED, CipherEngine
from nosuite.schemas.auth import Device, TokenData
from nosuite.services.credentials import CredentialStore

logger = logging.getLogger(__name__)

DAY_MS = 86_400_000


@dataclass
class TokenCheck:
    """Outcome of validate_token; reason is for logs only"""

    valid: bool
    reason: str = ""
    data: Optional[TokenData] = None

    @property
    def email(self) -> Optional[str]:
        return self.data.email if self.data else None


def now_ms() -> int:
    return int(time.time() * 1000)


class TokenService:
    def __init__(self, settings: Settings, cipher: CipherEngine, credentials: CredentialStore):
        self.settings = settings
        self.cipher = cipher
        self.credentials = credentials

    def issue_token(
        self,
        email: str,
        scope: str,
        device: Optional[Device],
        ttl_days: float,
        hashed_password: str,
    ) -> str:
        data = TokenData(
            email=email,
            scope=scope,
            device=device,
            hashed_password=hashed_password,
            exp=now_ms() + int(ttl_days * DAY_MS),
        )
        key = self.cipher.derive_user_key(None)
        return self.cipher.encrypt_json(data.model_dump(), key).hex()

    def origin_authorized(self, origin: Optional[str]) -> bool:
        domain = self.settings.AUTHORIZED_DOMAIN
        if not origin or not isinstance(origin, str):
            return False
        return origin == domain or origin.endswith("." + domain)

    def _reject(self, reason: str, email: Optional[str] = None) -> TokenCheck:
        logger.info("Token rejected: %s%s", reason, f" ({email})" if email else "")
        return TokenCheck(valid=False, reason=reason)

    def validate_token(
        self,
        token: Optional[str],
        request_origin: Optional[str],
        request_device_id: Optional[str],
    ) -> TokenCheck:
        """Run every token check in order, stopping at the first failure"""
        if not token:
            return self._reject("missing")
        if not isinstance(token, str):
            return self._reject("not a string")

        try:
            raw = bytes.fromhex(token)
        except ValueError:
            return self._reject("not hex")

        payload = self.cipher.decrypt_json(raw, self.cipher.derive_user_key(None))
        if payload is DECRYPT_FAILED or not isinstance(payload, dict):
            return self._reject("does not decrypt")

        try:
            data = TokenData(**payload)
        except ValidationError:
            return self._reject("malformed payload")

        if not self.origin_authorized(request_origin):
            return self._reject(f"origin {request_origin!r} not authorized", data.email)

        if data.scope != request_origin:
            return self._reject(f"scope {data.scope!r} does not match origin {request_origin!r}", data.email)

        if now_ms() >= data.exp:
            return self._reject("expired", data.email)

        if not self.credentials.user_exists(data.email):
            return self._reject("unknown user", data.email)

        if not self.credentials.verify_password(data.email, data.hashed_password):
            return self._reject("password changed", data.email)

        if self.settings.ENFORCE_DEVICE_BINDING:
            device_id = data.device.id if data.device else None
            if not device_id or device_id != request_device_id:
                return self._reject("device mismatch", data.email)
            if not self.credentials.has_device(data.email, device_id, data.hashed_password):
                return self._reject("device not registered", data.email)

        return TokenCheck(valid=True, data=data)
