from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import time
from typing import Any, Optional

from cryptography.hazmat.decrepit.ciphers.algorithms import Blowfish
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, modes


logger = logging.getLogger(__name__)

SESSION_DAYSTAMP_HOURS = 48

# URL-safe alphabet used by the server: '+/=' travel as '-_~'
_TO_URL = str.maketrans("+/=", "-_~")
_FROM_URL = str.maketrans("-_~", "+/=")


def md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def session_day_stamp(now_ms: Optional[int] = None) -> int:
    """Day stamp the server uses for session hashes: 48-hour buckets since the epoch."""

    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return int(now_ms // (SESSION_DAYSTAMP_HOURS * 60 * 60 * 1000))


def session_make_hash(
    site_id: Any,
    user_id: Any,
    user_name: Any,
    site_user_id: Any,
    access_level: Any,
    site_key: Any,
    day_stamp: Optional[int] = None,
) -> str:
    if day_stamp is None:
        day_stamp = session_day_stamp()
    return md5(
        "s=" + _text(site_id)
        + "&u=" + _text(user_id)
        + "&d=" + _text(day_stamp)
        + "&n=" + _text(user_name)
        + "&i=" + _text(site_user_id)
        + "&l=" + _text(access_level)
        + "&k=" + _text(site_key)
    )


def anonymous_user_hash(subscriber_email: Any, user_id: Any, user_name: Any, developer_key: Any) -> str:
    return md5(_text(subscriber_email) + _text(user_id) + _text(user_name) + _text(developer_key))


def _key_bytes(hex_key: str) -> bytes:
    if len(hex_key) % 2 == 1:
        hex_key += "0"
    return binascii.unhexlify(hex_key)


def _cipher(hex_key: str) -> Cipher:
    return Cipher(Blowfish(_key_bytes(hex_key)), modes.ECB())


def encrypt_string(plaintext: str, hex_key: str) -> Optional[str]:
    """Blowfish-ECB encrypt with PKCS#5 padding, return URL-safe base64.

    The key is a hex string (a session id). Returns None when the key is unusable.
    """

    try:
        cipher = _cipher(hex_key or "")
    except (ValueError, TypeError, binascii.Error) as exc:
        logger.debug("score key rejected: %s", exc)
        return None
    padder = padding.PKCS7(Blowfish.block_size).padder()
    data = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = cipher.encryptor()
    encrypted = encryptor.update(data) + encryptor.finalize()
    return base64.b64encode(encrypted).decode("ascii").translate(_TO_URL)


def decrypt_string(ciphertext: str, hex_key: str) -> Optional[str]:
    try:
        cipher = _cipher(hex_key or "")
        raw = base64.b64decode(ciphertext.translate(_FROM_URL))
        decryptor = cipher.decryptor()
        data = decryptor.update(raw) + decryptor.finalize()
        unpadder = padding.PKCS7(Blowfish.block_size).unpadder()
        return (unpadder.update(data) + unpadder.finalize()).decode("utf-8")
    except (ValueError, TypeError, binascii.Error) as exc:
        logger.debug("cannot decrypt payload: %s", exc)
        return None


def encrypt_score_submit(
    site_id: int,
    user_id: int,
    game_id: int,
    score: Any,
    game_data: Any,
    time_played: Any,
    session_id: str,
) -> Optional[str]:
    raw = (
        f"site_id={site_id}&user_id={user_id}&game_id={game_id}"
        f"&score={score}&game_data={_text(game_data)}&time_played={time_played}"
    )
    return encrypt_string(raw, session_id)


__all__ = [
    "anonymous_user_hash",
    "decrypt_string",
    "encrypt_score_submit",
    "encrypt_string",
    "md5",
    "session_day_stamp",
    "session_make_hash",
]
