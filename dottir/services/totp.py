"""
Moteur TOTP (RFC 6238) pour Dottir.

Generation de secrets, construction de l'URI otpauth:// et verification
des codes avec tolerance de derive d'horloge (+/- valid_window pas).

Le calcul des codes repose sur pyotp. La comparaison se fait en temps
constant (hmac.compare_digest).
"""
import binascii
import hashlib
import hmac
import re
from datetime import datetime
from typing import Optional, Union

import pyotp

from dottir.core.crypto import SecureRandom, get_secure_random

AtTime = Union[int, float, datetime]

# Longueur du secret base32: 32 caracteres = 160 bits
SECRET_LENGTH = 32

_DIGESTS = {
    "SHA1": hashlib.sha1,
    "SHA256": hashlib.sha256,
    "SHA512": hashlib.sha512,
}


class TOTPEngine:
    """
    Generation et verification de codes TOTP.

    Args:
        random: Fournisseur d'alea pour la generation des secrets
        period: Duree d'un pas en secondes (defaut 30)
        digits: Nombre de chiffres du code (defaut 6)
        valid_window: Tolerance en nombre de pas de chaque cote (defaut 1)
        algorithm: SHA1 (defaut), SHA256 ou SHA512
    """

    DEFAULT_PERIOD = 30
    DEFAULT_DIGITS = 6
    DEFAULT_ALGORITHM = "SHA1"

    def __init__(
        self,
        random: Optional[SecureRandom] = None,
        period: int = DEFAULT_PERIOD,
        digits: int = DEFAULT_DIGITS,
        valid_window: int = 1,
        algorithm: str = DEFAULT_ALGORITHM,
    ):
        if algorithm.upper() not in _DIGESTS:
            raise ValueError(f"Algorithme TOTP non supporte: {algorithm}")
        self.random = random or get_secure_random()
        self.period = period
        self.digits = digits
        self.valid_window = valid_window
        self.algorithm = algorithm.upper()
        self._code_pattern = re.compile(rf"^[0-9]{{{digits}}}$")

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(
            secret,
            digits=self.digits,
            digest=_DIGESTS[self.algorithm],
            interval=self.period,
        )

    # ========================================================================
    # Secrets et provisioning
    # ========================================================================

    def generate_secret(self) -> str:
        """
        Genere un nouveau secret TOTP en base32 (160 bits).
        """
        return self.random.base32(SECRET_LENGTH)

    def build_provisioning_uri(self, identity_label: str, issuer_label: str, secret: str) -> str:
        """
        Construit l'URI otpauth:// scannable par les applications TOTP.

        Format: otpauth://totp/<issuer>:<label>?secret=<secret>&issuer=<issuer>
        Les parametres algorithm/digits/period ne sont ajoutes que s'ils
        different des valeurs par defaut.
        """
        return self._totp(secret).provisioning_uri(
            name=identity_label,
            issuer_name=issuer_label,
        )

    # ========================================================================
    # Verification
    # ========================================================================

    def time_step(self, at_time: AtTime) -> int:
        """Numero du pas de temps contenant at_time."""
        if isinstance(at_time, datetime):
            at_time = at_time.timestamp()
        return int(at_time // self.period)

    def code_at(self, secret: str, at_time: AtTime) -> str:
        """Code attendu a l'instant at_time."""
        return self._totp(secret).at(at_time)

    def match_step(self, secret: str, submitted_code: str, at_time: AtTime) -> Optional[int]:
        """
        Cherche le pas de temps correspondant au code soumis.

        Tous les pas de la fenetre sont calcules, sans sortie anticipee.

        Returns:
            Le pas reconnu, ou None (code faux ou malforme)
        """
        if not isinstance(submitted_code, str):
            return None
        code = submitted_code.strip()
        if not self._code_pattern.match(code):
            return None

        try:
            totp = self._totp(secret)
            current = self.time_step(at_time)
            matched = None
            for offset in range(-self.valid_window, self.valid_window + 1):
                step = current + offset
                expected = totp.generate_otp(step)
                if hmac.compare_digest(expected.encode("ascii"), code.encode("ascii")) and matched is None:
                    matched = step
            return matched
        except (binascii.Error, ValueError, TypeError):
            # Secret base32 invalide
            return None

    def verify(self, secret: str, submitted_code: str, at_time: AtTime) -> bool:
        """
        Verifie un code TOTP a l'instant at_time (+/- valid_window pas).

        Returns:
            True si le code correspond, False sinon (jamais d'exception
            sur une entree malformee)
        """
        return self.match_step(secret, submitted_code, at_time) is not None
