"""
Secret Hashing Module

One-way salted hashing with constant-time verification. SecretHasher is the
shared capability (PINs, passwords); PinVault restricts it to 6-digit PINs.
"""

import hashlib
import hmac
import re
import secrets
from typing import Optional, Union

from .config import LedgerConfig, get_config
from .errors import MalformedPinError


HASH_SCHEME = "scrypt"
PIN_PATTERN = re.compile(r"[1-9][0-9]{5}")
PIN_MIN = 100000
PIN_MAX = 999999


class SecretHasher:
    """
    scrypt hashing with a fresh random salt per call.
    
    Hashes are encoded as ``scrypt$n$r$p$salt$digest`` so cost parameters can
    change without invalidating stored hashes.
    """
    
    def __init__(self, n: int = 16384, r: int = 8, p: int = 1, salt_bytes: int = 16):
        self.n = n
        self.r = r
        self.p = p
        self.salt_bytes = salt_bytes
    
    @classmethod
    def from_config(cls, config: Optional[LedgerConfig] = None) -> 'SecretHasher':
        config = config or get_config()
        return cls(n=config.pin_hash_n, r=config.pin_hash_r, p=config.pin_hash_p)
    
    def hash(self, secret: str) -> str:
        """Hash a secret with a new random salt"""
        salt = secrets.token_hex(self.salt_bytes)
        digest = self._derive(secret, salt, self.n, self.r, self.p)
        return f"{HASH_SCHEME}${self.n}${self.r}${self.p}${salt}${digest}"
    
    def verify(self, secret: str, hashed: str) -> bool:
        """Check a secret against a stored hash in constant time"""
        parts = hashed.split("$") if isinstance(hashed, str) else []
        if len(parts) != 6 or parts[0] != HASH_SCHEME:
            return False
        
        _, n, r, p, salt, expected = parts
        try:
            digest = self._derive(secret, salt, int(n), int(r), int(p))
        except ValueError:
            return False
        
        return hmac.compare_digest(digest.encode(), expected.encode())
    
    def _derive(self, secret: str, salt: str, n: int, r: int, p: int) -> str:
        # scrypt needs 128 * n * r bytes of working memory
        return hashlib.scrypt(
            secret.encode(),
            salt=salt.encode(),
            n=n, r=r, p=p,
            maxmem=256 * n * r
        ).hex()


class PinVault(SecretHasher):
    """SecretHasher for 6-digit numeric PINs"""
    
    @staticmethod
    def normalize(pin: Union[str, int]) -> str:
        """
        Return the canonical string form of a PIN.
        
        Raises:
            MalformedPinError: If pin is not a 6-digit number in 100000-999999
        """
        if isinstance(pin, bool):
            raise MalformedPinError("PIN must be a 6-digit number")
        
        if isinstance(pin, int):
            if not PIN_MIN <= pin <= PIN_MAX:
                raise MalformedPinError("PIN must be a 6-digit number")
            return str(pin)
        
        if isinstance(pin, str) and PIN_PATTERN.fullmatch(pin):
            return pin
        
        raise MalformedPinError("PIN must be a 6-digit number")
    
    def hash(self, pin: Union[str, int]) -> str:
        return super().hash(self.normalize(pin))
    
    def verify(self, pin: Union[str, int], hashed: str) -> bool:
        return super().verify(self.normalize(pin), hashed)
