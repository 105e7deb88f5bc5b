"""
Key material resolution for transcript_bridge.

Obtains the RSA private key used to unwrap notification content keys.
The key lives in a PKCS#12 certificate container whose password is not
reliably known, so a configured, ordered list of candidate passwords is
tried until one opens it. The derived key is then written next to the
container as PEM so later processes can skip the search.

The derived PEM file is a cache: deleting it only costs a re-derivation.
"""

import logging
import os
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12

from .config import Settings
from .errors import KeyUnavailable
from .logging_config import event_log
from .util import sha1_thumbprint

logger = logging.getLogger(__name__)

_PRIVATE_KEY_PEM = re.compile(
    r"-----BEGIN (?:RSA )?PRIVATE KEY-----[\s\S]*?-----END (?:RSA )?PRIVATE KEY-----"
)
_CERTIFICATE_PEM = re.compile(r"-----BEGIN CERTIFICATE-----[\s\S]*?-----END CERTIFICATE-----")


@dataclass(frozen=True)
class KeyMaterial:
    """An RSA private key and, when the container had one, its certificate."""
    private_key: rsa.RSAPrivateKey
    certificate: Optional[x509.Certificate] = None
    source: str = "container"

    def thumbprint(self) -> Optional[str]:
        """SHA-1 thumbprint of the certificate, uppercase hex."""
        if self.certificate is None:
            return None
        return sha1_thumbprint(self.certificate.public_bytes(serialization.Encoding.DER))

    def to_pem(self) -> bytes:
        pem = self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
        if self.certificate is not None:
            pem += b"\n" + self.certificate.public_bytes(serialization.Encoding.PEM)
        return pem


class PasswordCandidates:
    """
    Ordered, de-duplicated container password candidates.

    The configured password comes first, then the fallback list in the
    order given. Duplicates keep their first position. An empty string
    means "no password".
    """

    def __init__(self, candidates: Iterable[Optional[str]]):
        ordered: List[str] = []
        for candidate in candidates:
            if candidate is None or candidate in ordered:
                continue
            ordered.append(candidate)
        self._candidates: Tuple[str, ...] = tuple(ordered)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordCandidates":
        return cls([settings.cert_password, *settings.cert_password_fallbacks])

    def __iter__(self) -> Iterator[str]:
        return iter(self._candidates)

    def __len__(self) -> int:
        return len(self._candidates)

    def __repr__(self) -> str:
        # never render the values
        return f"PasswordCandidates(count={len(self._candidates)})"


class KeyMaterialResolver:
    """
    Lazily resolves and caches KeyMaterial for the process lifetime.

    Thread-safe. Once resolved, reads do not take the lock. A failed
    resolution is cached too, so dependent requests fail fast instead of
    re-running the password search; the failure is forgotten when the
    container file changes or invalidate() is called.
    """

    def __init__(
        self,
        container_path: str,
        candidates: PasswordCandidates,
        derived_key_path: Optional[str] = None,
        persist_derived: bool = True,
    ):
        self._container_path = Path(container_path)
        self._derived_key_path = Path(derived_key_path) if derived_key_path else self._container_path.with_suffix(".pem")
        self._candidates = candidates
        self._persist_derived = persist_derived
        self._lock = threading.RLock()
        self._material: Optional[KeyMaterial] = None
        self._failure: Optional[KeyUnavailable] = None
        self._failure_stamp: Optional[float] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeyMaterialResolver":
        return cls(
            container_path=settings.cert_container_path,
            candidates=PasswordCandidates.from_settings(settings),
            derived_key_path=settings.resolved_derived_key_path,
        )

    @property
    def is_resolved(self) -> bool:
        return self._material is not None

    @property
    def has_failed(self) -> bool:
        return self._failure is not None

    def resolve(self) -> KeyMaterial:
        """
        Return the cached KeyMaterial, deriving it on first use.

        Raises:
            KeyUnavailable: If neither the derived key nor any candidate
                password yields a usable RSA private key
        """
        material = self._material
        if material is not None:
            return material

        with self._lock:
            if self._material is not None:
                return self._material

            if self._failure is not None and self._failure_stamp == self._container_stamp():
                raise KeyUnavailable(self._failure.message, detail="cached failure")

            try:
                material = self._load_derived() or self._derive_from_container()
            except KeyUnavailable as e:
                self._failure = e
                self._failure_stamp = self._container_stamp()
                raise

            self._material = material
            self._failure = None
            self._failure_stamp = None
            return material

    def invalidate(self) -> None:
        """Forget cached material and any cached failure."""
        with self._lock:
            self._material = None
            self._failure = None
            self._failure_stamp = None

    # ------------------------------------------------------------

    def _container_stamp(self) -> Optional[float]:
        try:
            return self._container_path.stat().st_mtime
        except OSError:
            return None

    def _load_derived(self) -> Optional[KeyMaterial]:
        """Fast path: a previously derived PEM file."""
        if not self._derived_key_path.exists():
            return None

        try:
            content = self._derived_key_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Derived key file unreadable, re-deriving: %s", type(e).__name__)
            return None

        key_match = _PRIVATE_KEY_PEM.search(content)
        if not key_match:
            logger.warning("Derived key file holds no private key, re-deriving")
            return None

        try:
            private_key = serialization.load_pem_private_key(key_match.group(0).encode("ascii"), password=None)
        except (ValueError, TypeError) as e:
            logger.warning("Derived key file could not be loaded, re-deriving: %s", type(e).__name__)
            return None

        if not isinstance(private_key, rsa.RSAPrivateKey):
            logger.warning("Derived key is not an RSA key, re-deriving")
            return None

        certificate = None
        cert_match = _CERTIFICATE_PEM.search(content)
        if cert_match:
            try:
                certificate = x509.load_pem_x509_certificate(cert_match.group(0).encode("ascii"))
            except ValueError:
                logger.warning("Derived key file has an unreadable certificate block; continuing without it")

        event_log.key_resolution("success", "derived_key")
        return KeyMaterial(private_key=private_key, certificate=certificate, source="derived_key")

    def _derive_from_container(self) -> KeyMaterial:
        if not self._container_path.exists():
            event_log.key_resolution("failure", "container_missing")
            raise KeyUnavailable("Certificate container not found", detail=str(self._container_path))

        try:
            data = self._container_path.read_bytes()
        except OSError as e:
            event_log.key_resolution("failure", "container_unreadable")
            raise KeyUnavailable("Certificate container unreadable", detail=type(e).__name__) from e

        for attempt, candidate in enumerate(self._candidates):
            password = candidate.encode("utf-8") if candidate else None
            try:
                private_key, certificate, _ = pkcs12.load_key_and_certificates(data, password)
            except (ValueError, TypeError):
                logger.debug("Container password candidate %d rejected", attempt)
                continue

            if not isinstance(private_key, rsa.RSAPrivateKey):
                event_log.key_resolution("failure", "container_no_rsa_key", attempt=attempt)
                raise KeyUnavailable("Certificate container holds no RSA private key")

            event_log.key_resolution("success", "container", attempt=attempt)
            material = KeyMaterial(private_key=private_key, certificate=certificate, source="container")
            if self._persist_derived:
                self._persist(material)
            return material

        event_log.key_resolution("failure", "container", attempt=len(self._candidates))
        raise KeyUnavailable(
            "No candidate password opened the certificate container",
            detail=f"{len(self._candidates)} candidates tried",
        )

    def _persist(self, material: KeyMaterial) -> None:
        path = self._derived_key_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(material.to_pem())
            logger.info("Derived key written to %s", path)
        except OSError as e:
            # resolution still succeeds; the next process re-derives
            logger.warning("Could not persist derived key: %s", type(e).__name__)
