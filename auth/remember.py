"""
auth/remember.py -- Encrypted "remember me" cookie.

Two layers:

  RememberTokenCodec -- pure functions over strings. encode(username, hash)
      returns the cookie value; decode(token, hash) returns the username or
      None. No request, response or cookie jar involved, so it is trivially
      unit-testable.

  RememberCookie -- thin HTTP adapter that reads the cookie from a Starlette
      Request and writes/expires it on a Response.

Token format:
  mac       = hex(HMAC-SHA256(key=APP_KEY, msg=username || password_hash))
  plaintext = username || "|" || mac
  cookie    = base64(IV || AES-256-CTR(key=SHA-256(APP_KEY), IV, plaintext))

Security design decisions:
  [R1] The MAC covers the *current* password hash. Changing the password
       changes the expected MAC, so every outstanding token dies at once
       without any server-side revocation list.

  [R2] CTR mode is malleable, so the ciphertext alone proves nothing. The
       HMAC check after decryption is what authenticates the token; a flipped
       ciphertext bit changes either the username or the MAC and fails it.

  [R3] Every failure -- bad base64, short payload, non-UTF-8 plaintext,
       missing separator, MAC mismatch -- returns the same None. Callers
       cannot tell them apart, and neither can a network attacker.

  [R4] A fresh 16-byte IV per encode() means two tokens for the same user
       never share a keystream.

  [R5] An empty APP_KEY disables the codec: encode() issues nothing and
       decode() rejects everything (fail closed, see core/config.py [K2]).

Layer rule: no imports from api/, web/, session/, or inventory/.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import secrets

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from core.config import Settings

logger = logging.getLogger("rackguard.auth.remember")

# AES block size; CTR mode takes a full-block nonce/counter.
IV_LENGTH = 16
_SEPARATOR = "|"


class RememberTokenCodec:
    """Encrypt and verify remember-me assertions.

    Usage:
        codec = RememberTokenCodec(settings.app_key)
        token = codec.encode("rackadmin", password_hash)
        codec.decode(token, password_hash)   # -> "rackadmin"
        codec.decode(token, new_hash)        # -> None  [R1]
    """

    def __init__(self, key: str) -> None:
        self._mac_key = key.encode("utf-8")
        self._cipher_key = hashlib.sha256(self._mac_key).digest() if key else b""

    @property
    def enabled(self) -> bool:
        return bool(self._cipher_key)

    def encode(self, username: str, password_hash: str) -> str | None:
        """Return the cookie value, or None when the codec is disabled [R5]."""
        if not self.enabled:
            return None
        plaintext = f"{username}{_SEPARATOR}{self._mac(username, password_hash)}".encode("utf-8")
        iv = secrets.token_bytes(IV_LENGTH)
        encryptor = Cipher(algorithms.AES(self._cipher_key), modes.CTR(iv)).encryptor()
        ciphertext = encryptor.update(plaintext) + encryptor.finalize()
        return base64.b64encode(iv + ciphertext).decode("ascii")

    def decode(self, token: str | None, password_hash: str) -> str | None:
        """Return the username if the token is intact and bound to password_hash."""
        if not self.enabled or not token:
            return None

        try:
            raw = base64.b64decode(token, validate=True)
        except (binascii.Error, ValueError):
            return None
        # Non-canonical encodings (e.g. altered padding bits) decode to the same
        # bytes; rejecting them means any edit to the cookie text is fatal.
        if base64.b64encode(raw).decode("ascii") != token:
            return None
        if len(raw) <= IV_LENGTH:
            return None

        iv, ciphertext = raw[:IV_LENGTH], raw[IV_LENGTH:]
        decryptor = Cipher(algorithms.AES(self._cipher_key), modes.CTR(iv)).decryptor()
        try:
            plaintext = (decryptor.update(ciphertext) + decryptor.finalize()).decode("utf-8")
        except UnicodeDecodeError:
            return None

        username, sep, mac = plaintext.partition(_SEPARATOR)
        if not sep:
            return None
        expected = self._mac(username, password_hash)
        if not hmac.compare_digest(expected.encode("ascii"), mac.encode("utf-8")):
            return None
        return username

    def _mac(self, username: str, password_hash: str) -> str:
        return hmac.new(self._mac_key, (username + password_hash).encode("utf-8"), hashlib.sha256).hexdigest()


class RememberCookie:
    """HTTP binding for RememberTokenCodec.

    Cookie attributes mirror the session cookie (Secure, HttpOnly,
    SameSite=Lax, Path=/) with an independent lifetime in days.
    """

    def __init__(
        self,
        codec: RememberTokenCodec,
        cookie_name: str,
        lifetime_days: int = 30,
        secure: bool = False,
        httponly: bool = True,
    ) -> None:
        self.codec = codec
        self.cookie_name = cookie_name
        self._max_age = lifetime_days * 24 * 60 * 60
        self._secure = secure
        self._httponly = httponly

    def has_remember_token(self, request) -> bool:
        return bool(request.cookies.get(self.cookie_name))

    def create_remember_token(self, response, username: str, password_hash: str) -> bool:
        """Write the cookie. Returns False (and writes nothing) if the codec is disabled."""
        token = self.codec.encode(username, password_hash)
        if token is None:
            logger.warning("Remember-me requested but APP_KEY is not configured; cookie not issued")
            return False
        response.set_cookie(
            self.cookie_name,
            value=token,
            max_age=self._max_age,
            path="/",
            secure=self._secure,
            httponly=self._httponly,
            samesite="lax",
        )
        return True

    def validate_remember_token(self, request, password_hash: str) -> str | None:
        """Return the username carried by the request's cookie, or None.

        Does not touch the response -- on None the caller must call
        clear_remember_token() on whatever response it ends up sending.
        """
        return self.codec.decode(request.cookies.get(self.cookie_name), password_hash)

    def clear_remember_token(self, response) -> None:
        response.delete_cookie(
            self.cookie_name,
            path="/",
            secure=self._secure,
            httponly=self._httponly,
            samesite="lax",
        )


def build_remember_cookie(settings: Settings) -> RememberCookie:
    """RememberCookie wired from Settings: "<prefix>_remember", COOKIE_* flags."""
    return RememberCookie(
        RememberTokenCodec(settings.app_key),
        cookie_name=f"{settings.cookie_prefix}_remember",
        lifetime_days=settings.cookie_lifetime,
        secure=settings.cookie_secure,
        httponly=settings.cookie_httponly,
    )
