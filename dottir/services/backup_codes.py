"""
Gestion des codes de secours MFA.

Format: quatre groupes de quatre caracteres hexadecimaux
(xxxx-xxxx-xxxx-xxxx), tires de 8 octets aleatoires.

Le jeu de codes est modelise par BackupCodeSet, immuable: consume()
retourne un nouveau jeu. La persistance atomique est assuree par
MFARecoveryCodeRepository.mark_code_as_used (UPDATE conditionnel).
"""
import re
from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Optional, Tuple

from dottir.core.crypto import SecureRandom, get_secure_random
from dottir.core.security import hash_password, verify_password
from dottir.models.base import utc_now

BACKUP_CODE_PATTERN = re.compile(r"^[0-9a-f]{4}(-[0-9a-f]{4}){3}$", re.IGNORECASE)

DEFAULT_CODES_COUNT = 8
BACKUP_CODE_BYTES = 8

# Cout bcrypt des codes de secours (entropie de 64 bits par code)
BACKUP_CODE_BCRYPT_ROUNDS = 10


@dataclass(frozen=True)
class BackupCode:
    """Un code de secours persiste (hash uniquement)."""
    code_hash: str
    id: Optional[int] = None
    used_at: Optional[datetime] = None

    @property
    def is_used(self) -> bool:
        return self.used_at is not None


@dataclass(frozen=True)
class BackupCodeSet:
    """Jeu ordonne de codes de secours d'une identite."""
    codes: Tuple[BackupCode, ...] = ()

    @property
    def remaining(self) -> int:
        return sum(1 for code in self.codes if not code.is_used)

    @classmethod
    def from_records(cls, records) -> "BackupCodeSet":
        """Construit le jeu depuis des MFARecoveryCode."""
        return cls(tuple(
            BackupCode(code_hash=r.code_hash, id=r.id, used_at=r.used_at)
            for r in records
        ))


class BackupCodeManager:
    """
    Generation, normalisation, hash et consommation des codes de secours.
    """

    def __init__(
        self,
        random: Optional[SecureRandom] = None,
        rounds: int = BACKUP_CODE_BCRYPT_ROUNDS,
    ):
        self.random = random or get_secure_random()
        self.rounds = rounds

    def _new_code(self) -> str:
        raw = self.random.token_bytes(BACKUP_CODE_BYTES).hex()
        return "-".join(raw[i:i + 4] for i in range(0, len(raw), 4))

    def generate(self, n: int = DEFAULT_CODES_COUNT) -> List[str]:
        """
        Genere n codes uniques dans le jeu.

        Returns:
            Codes en clair (affiches une seule fois a l'utilisateur)
        """
        if n < 1:
            raise ValueError("Le nombre de codes doit etre positif")

        codes: List[str] = []
        while len(codes) < n:
            code = self._new_code()
            if code not in codes:
                codes.append(code)
        return codes

    @staticmethod
    def validate_format(code: str) -> bool:
        """Verification purement syntaxique (insensible a la casse)."""
        if not isinstance(code, str):
            return False
        return bool(BACKUP_CODE_PATTERN.match(code.strip()))

    @staticmethod
    def normalize(code: str) -> str:
        return code.strip().lower()

    def hash_code(self, code: str) -> str:
        """Hash bcrypt du code normalise."""
        return hash_password(self.normalize(code), rounds=self.rounds)

    def verify_hash(self, code: str, code_hash: str) -> bool:
        if not self.validate_format(code):
            return False
        return verify_password(self.normalize(code), code_hash)

    def find_unused(self, code_set: BackupCodeSet, code: str) -> Optional[BackupCode]:
        """
        Retourne le code non utilise correspondant, ou None.

        Tous les codes non utilises sont compares, sans sortie anticipee.
        """
        if not self.validate_format(code):
            return None
        found = None
        for candidate in code_set.codes:
            if candidate.is_used:
                continue
            if self.verify_hash(code, candidate.code_hash) and found is None:
                found = candidate
        return found

    def consume(
        self,
        code_set: BackupCodeSet,
        code: str,
        at: Optional[datetime] = None,
    ) -> Tuple[bool, BackupCodeSet]:
        """
        Consomme un code du jeu.

        Returns:
            (True, nouveau jeu avec le code marque utilise) si le code est
            present et non utilise, sinon (False, jeu inchange)
        """
        match = self.find_unused(code_set, code)
        if match is None:
            return False, code_set

        used = replace(match, used_at=at or utc_now())
        new_codes = tuple(used if c is match else c for c in code_set.codes)
        return True, BackupCodeSet(new_codes)
