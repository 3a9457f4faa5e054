"""
Encryption Gate
===============
Detects PDF encryption, grades its strictness and unlocks documents with
candidate passwords.

The encryption dictionary is read straight from the trailer, so detection
works before any password is known.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

import fitz  # PyMuPDF

from .document import DocumentHandle, xref_number
from .models import ALL_PERMISSIONS, EncryptionInfo, Permission, SecurityLevel

logger = logging.getLogger(__name__)

# Tried in this order when the caller supplies no candidates
DEFAULT_COMMON_PASSWORDS: tuple[str, ...] = (
    "",
    "password",
    "123456",
    "admin",
    "user",
    "test",
    "pdf",
    "document",
)

_ALGORITHMS = {
    1: "RC4 40-bit",
    2: "RC4 variable length",
    4: "AES",
    5: "AES-256",
}

_ENCRYPT_KEYS = ("Filter", "V", "R", "Length", "P")

_CONTENT_RESTRICTIONS = Permission.MODIFY | Permission.ANNOTATE | Permission.COPY


def decode_permissions(p_value: int) -> int:
    """Reduce a raw /P value (a signed 32-bit int) to the known bits."""
    return int(p_value) & int(ALL_PERMISSIONS)


def grade_security(
    is_encrypted: bool,
    permissions: int,
    strong_cipher: bool = False,
) -> SecurityLevel:
    """
    Grade a document's protection.

    No encryption → NONE; encrypted without restrictions → LOW; copy or
    print restricted → MEDIUM; modify, annotate and copy all restricted, or
    a strong cipher → HIGH.
    """
    if not is_encrypted:
        return SecurityLevel.NONE
    restricted = int(ALL_PERMISSIONS) & ~permissions
    if strong_cipher or restricted & _CONTENT_RESTRICTIONS == _CONTENT_RESTRICTIONS:
        return SecurityLevel.HIGH
    if restricted & (Permission.COPY | Permission.PRINT):
        return SecurityLevel.MEDIUM
    return SecurityLevel.LOW


def read_encrypt_dictionary(doc: fitz.Document) -> Optional[dict[str, str]]:
    """
    Return the raw entries of the trailer's /Encrypt dictionary, or None if
    the document has none.
    """
    try:
        kind, value = doc.xref_get_key(-1, "Encrypt")
    except (RuntimeError, ValueError):
        return None
    if kind in ("null", None):
        return None

    entries: dict[str, str] = {}
    if kind == "xref":
        xref = xref_number(value)
        for key in _ENCRYPT_KEYS:
            k, v = doc.xref_get_key(xref, key)
            if k != "null":
                entries[key] = v
    else:
        # Inline dictionary, e.g. "<</Filter/Standard/V 2/P -4>>"
        for key in _ENCRYPT_KEYS:
            match = re.search(rf"/{key}\s*(/?[\w.+-]+)", value)
            if match:
                entries[key] = match.group(1)
    return entries


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class EncryptionGate:
    """
    Resolves access to a document.

    ``detect`` is idempotent: the first result is cached on the handle and
    only its ``authenticated`` flag can change, after ``authenticate``
    succeeds.
    """

    def detect(self, handle: DocumentHandle) -> EncryptionInfo:
        if handle.encryption is not None:
            return handle.encryption

        doc = handle.document
        entries = read_encrypt_dictionary(doc)

        if entries is None and not handle.is_locked:
            info = EncryptionInfo()
            logger.debug(f"{handle.source}: not encrypted")
            handle.encryption = info
            return info

        entries = entries or {}
        version = _to_int(entries.get("V"))
        key_length = _to_int(entries.get("Length"))
        if key_length is None and version is not None:
            key_length = {1: 40, 5: 256}.get(version)

        p_value = _to_int(entries.get("P"))
        if p_value is not None:
            permissions = decode_permissions(p_value)
        elif not handle.is_locked:
            permissions = decode_permissions(doc.permissions)
        else:
            permissions = 0

        strong = (version is not None and version >= 5) or (key_length or 0) >= 256
        info = EncryptionInfo(
            is_encrypted=True,
            security_level=grade_security(True, permissions, strong),
            permissions=permissions,
            authenticated=not handle.is_locked,
            security_handler=(entries.get("Filter") or "").lstrip("/") or None,
            algorithm=(
                _ALGORITHMS.get(version, f"Unknown ({version})")
                if version is not None else None
            ),
            key_length=key_length,
        )
        logger.info(
            f"{handle.source}: encrypted ({info.algorithm or 'unknown cipher'}, "
            f"security={info.security_level.value}, "
            f"authenticated={info.authenticated})"
        )
        handle.encryption = info
        return info

    def authenticate(
        self,
        handle: DocumentHandle,
        candidates: Iterable[str],
    ) -> Optional[str]:
        """
        Try candidates in order and stop at the first that unlocks the
        document.

        Returns:
            The accepted password, or None when none worked or the document
            needs no password.
        """
        if handle.password is not None:
            return handle.password
        if not handle.is_locked:
            logger.debug(f"{handle.source}: no password needed")
            return None

        info = self.detect(handle)
        attempts = 0
        for password in candidates:
            attempts += 1
            if handle.document.authenticate(password):
                logger.info(
                    f"{handle.source}: password accepted on attempt {attempts}"
                )
                handle.password = password
                handle.encryption = info.model_copy(update={"authenticated": True})
                return password
            logger.debug(f"{handle.source}: password attempt {attempts} rejected")

        logger.warning(
            f"{handle.source}: no password accepted after {attempts} attempt(s)"
        )
        return None

    def try_common_passwords(
        self,
        handle: DocumentHandle,
        candidates: Optional[Iterable[str]] = None,
    ) -> Optional[str]:
        if candidates is None:
            candidates = DEFAULT_COMMON_PASSWORDS
        return self.authenticate(handle, candidates)
