"""
Service MFA pour Dottir.

Machine a etats de l'enrolement:
    disabled -> setup_pending -> verify_pending -> enabled
    enabled -> disabled

L'etat est derive du stockage:
- pas de secret: disabled
- secret avec enabled=False: verify_pending
- secret avec enabled=True: enabled
(setup_pending n'existe que pendant l'execution de begin_setup)

Les echecs de verification sont des booleens, jamais des exceptions.
Les erreurs de stockage remontent en StoreUnavailableError.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from dottir.core.crypto import decrypt_totp_secret, encrypt_totp_secret
from dottir.models.base import utc_now
from dottir.models.mfa import MFASecret
from dottir.models.user import User
from dottir.repositories.base import translate_store_errors
from dottir.repositories.mfa import MFARecoveryCodeRepository, MFASecretRepository
from dottir.repositories.user import UserRepository
from dottir.services.backup_codes import BackupCodeManager, BackupCodeSet
from dottir.services.exceptions import (
    MFAAlreadyEnabledError,
    MFANotConfiguredError,
    StoreUnavailableError,
)
from dottir.services.totp import TOTPEngine

logger = logging.getLogger(__name__)


class MFAState:
    """Etats observables de l'enrolement MFA."""
    DISABLED = "disabled"
    VERIFY_PENDING = "verify_pending"
    ENABLED = "enabled"


@dataclass(frozen=True)
class MFASetupResult:
    """
    Resultat de begin_setup, seul moment ou le secret et les codes
    de secours sont visibles en clair.
    """
    secret: str
    provisioning_uri: str
    backup_codes: Tuple[str, ...]


@dataclass(frozen=True)
class MFAStatus:
    state: str
    enabled: bool
    configured: bool
    backup_codes_remaining: int
    last_used_at: Optional[datetime] = None


class MFAService:
    """
    Service pour la gestion de l'authentification multi-facteur.

    Fonctionnalites:
    - Enrolement TOTP (begin_setup / confirm_setup)
    - Challenge au login (TOTP puis code de secours)
    - Desactivation et regeneration des codes de secours
    """

    # Configuration par defaut
    DEFAULT_ISSUER = "Dottir"
    BACKUP_CODES_COUNT = 8

    def __init__(
        self,
        user_repository: UserRepository,
        mfa_secret_repository: MFASecretRepository,
        mfa_recovery_code_repository: MFARecoveryCodeRepository,
        totp_engine: Optional[TOTPEngine] = None,
        backup_code_manager: Optional[BackupCodeManager] = None,
        issuer: Optional[str] = None,
        backup_codes_count: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialise le service MFA.

        Args:
            user_repository: Repository des identites (miroir mfa_enabled)
            mfa_secret_repository: Repository pour les secrets MFA
            mfa_recovery_code_repository: Repository pour les codes de secours
            totp_engine: Moteur TOTP (defaut: SHA1, 30s, 6 chiffres, +/-1 pas)
            backup_code_manager: Gestionnaire des codes de secours
            issuer: Nom de l'emetteur pour les URI TOTP (defaut: Dottir)
            clock: Source de temps UTC (injectable pour les tests)
        """
        self.user_repository = user_repository
        self.mfa_secret_repository = mfa_secret_repository
        self.mfa_recovery_code_repository = mfa_recovery_code_repository
        self.totp = totp_engine or TOTPEngine()
        self.backup_codes = backup_code_manager or BackupCodeManager()
        self.issuer = issuer or self.DEFAULT_ISSUER
        self.backup_codes_count = backup_codes_count or self.BACKUP_CODES_COUNT
        self.clock = clock

    # ========================================================================
    # Etat
    # ========================================================================

    @staticmethod
    def _state_of(mfa_secret: Optional[MFASecret]) -> str:
        if mfa_secret is None:
            return MFAState.DISABLED
        if mfa_secret.enabled:
            return MFAState.ENABLED
        return MFAState.VERIFY_PENDING

    @translate_store_errors
    def get_state(self, user_id: int) -> str:
        return self._state_of(self.mfa_secret_repository.get_by_user_id(user_id))

    def is_enabled(self, user_id: int) -> bool:
        return self.get_state(user_id) == MFAState.ENABLED

    @translate_store_errors
    def get_status(self, user_id: int) -> MFAStatus:
        """
        Retourne le statut MFA complet d'un utilisateur.
        """
        mfa_secret = self.mfa_secret_repository.get_by_user_id(user_id)
        state = self._state_of(mfa_secret)

        remaining = 0
        if state == MFAState.ENABLED:
            remaining = self.mfa_recovery_code_repository.count_valid_codes(user_id)

        return MFAStatus(
            state=state,
            enabled=state == MFAState.ENABLED,
            configured=mfa_secret is not None,
            backup_codes_remaining=remaining,
            last_used_at=mfa_secret.last_used_at if mfa_secret else None,
        )

    # ========================================================================
    # Helpers secrets
    # ========================================================================

    def _decrypt(self, mfa_secret: MFASecret) -> str:
        try:
            return decrypt_totp_secret(mfa_secret.secret)
        except ValueError as e:
            # Cle de chiffrement changee ou donnee corrompue
            logger.error(f"Secret MFA illisible pour user_id={mfa_secret.user_id}: {e}")
            raise StoreUnavailableError(reason="mfa_secret_unreadable") from e

    def _engine_for(self, mfa_secret: MFASecret) -> TOTPEngine:
        """Moteur TOTP aux parametres du secret stocke."""
        if (
            mfa_secret.period == self.totp.period
            and mfa_secret.digits == self.totp.digits
            and mfa_secret.algorithm == self.totp.algorithm
        ):
            return self.totp
        return TOTPEngine(
            random=self.totp.random,
            period=mfa_secret.period,
            digits=mfa_secret.digits,
            valid_window=self.totp.valid_window,
            algorithm=mfa_secret.algorithm,
        )

    def _replace_backup_codes(self, user_id: int) -> List[str]:
        codes = self.backup_codes.generate(self.backup_codes_count)
        self.mfa_recovery_code_repository.delete_all_for_user(user_id)
        self.mfa_recovery_code_repository.create_codes_for_user(
            user_id, [self.backup_codes.hash_code(code) for code in codes]
        )
        return codes

    # ========================================================================
    # Enrolement
    # ========================================================================

    @translate_store_errors
    def begin_setup(self, user: User) -> MFASetupResult:
        """
        Demarre (ou redemarre) l'enrolement MFA.

        Genere un nouveau secret et un nouveau jeu de codes de secours,
        stockes inactifs. Un enrolement en attente est ecrase: il ne reste
        toujours qu'un seul secret et un seul jeu de codes.

        Raises:
            MFAAlreadyEnabledError: Si MFA est deja active (desactiver d'abord)
        """
        existing = self.mfa_secret_repository.get_by_user_id(user.id)
        if existing is not None and existing.enabled:
            raise MFAAlreadyEnabledError(user_id=user.id)

        secret = self.totp.generate_secret()
        self.mfa_secret_repository.replace(
            user_id=user.id,
            secret=encrypt_totp_secret(secret),
            algorithm=self.totp.algorithm,
            period=self.totp.period,
            digits=self.totp.digits,
        )
        codes = self._replace_backup_codes(user.id)
        self.mfa_secret_repository.commit()

        logger.info(
            f"Enrolement MFA demarre pour user_id={user.id}",
            extra={"restart": existing is not None},
        )

        return MFASetupResult(
            secret=secret,
            provisioning_uri=self.totp.build_provisioning_uri(user.email, self.issuer, secret),
            backup_codes=tuple(codes),
        )

    @translate_store_errors
    def confirm_setup(self, user: User, code: str) -> bool:
        """
        Confirme l'enrolement avec un premier code TOTP.

        Returns:
            True si MFA est maintenant active. En cas d'echec l'etat
            reste verify_pending.
        """
        mfa_secret = self.mfa_secret_repository.get_by_user_id(user.id)
        if self._state_of(mfa_secret) != MFAState.VERIFY_PENDING:
            return False

        now = self.clock()
        step = self._engine_for(mfa_secret).match_step(self._decrypt(mfa_secret), code, now)
        if step is None:
            logger.info(f"Confirmation MFA refusee pour user_id={user.id}")
            return False

        if not self.mfa_secret_repository.enable(user.id, window=step, at=now):
            return False
        self.user_repository.set_mfa_enabled(user.id, True)
        self.mfa_secret_repository.commit()

        logger.info(f"MFA active pour user_id={user.id}")
        return True

    # ========================================================================
    # Challenge au login
    # ========================================================================

    def _challenge_totp(self, mfa_secret: MFASecret, code: str, now: datetime) -> bool:
        step = self._engine_for(mfa_secret).match_step(self._decrypt(mfa_secret), code, now)
        if step is None:
            return False

        # Anti-replay: un pas deja accepte ne peut plus servir
        if not self.mfa_secret_repository.record_totp_use(mfa_secret.user_id, step, at=now):
            logger.warning(f"Rejeu TOTP detecte pour user_id={mfa_secret.user_id}")
            return False
        return True

    def _challenge_backup_code(self, user_id: int, code: str, now: datetime) -> bool:
        if not self.backup_codes.validate_format(code):
            return False

        records = self.mfa_recovery_code_repository.get_valid_codes_for_user(user_id)
        match = self.backup_codes.find_unused(BackupCodeSet.from_records(records), code)
        if match is None:
            return False

        # UPDATE conditionnel: une seule consommation concurrente gagne
        if not self.mfa_recovery_code_repository.mark_code_as_used(match.id, at=now):
            logger.warning(f"Code de secours deja consomme pour user_id={user_id}")
            return False

        logger.info(f"Code de secours utilise pour user_id={user_id}")
        return True

    @translate_store_errors
    def challenge(self, user_id: int, code: str) -> bool:
        """
        Verifie un code MFA au login.

        Uniquement si l'etat est enabled: sinon retourne False sans rien
        modifier. Essaie d'abord TOTP, puis la consommation d'un code de
        secours. C'est le seul chemin qui consomme un code de secours.
        """
        mfa_secret = self.mfa_secret_repository.get_by_user_id(user_id)
        if self._state_of(mfa_secret) != MFAState.ENABLED:
            return False
        if not isinstance(code, str):
            return False

        now = self.clock()
        if self._challenge_totp(mfa_secret, code, now) or self._challenge_backup_code(user_id, code, now):
            self.mfa_secret_repository.commit()
            return True
        return False

    # ========================================================================
    # Desactivation / codes de secours
    # ========================================================================

    @translate_store_errors
    def disable(self, user_id: int) -> bool:
        """
        Desactive MFA: supprime le secret et les codes de secours.

        La re-authentification est a la charge de l'appelant.

        Returns:
            True si un secret existait
        """
        existed = self.mfa_secret_repository.delete_by_user_id(user_id)
        self.mfa_recovery_code_repository.delete_all_for_user(user_id)
        self.user_repository.set_mfa_enabled(user_id, False)
        self.mfa_secret_repository.commit()

        if existed:
            logger.info(f"MFA desactive pour user_id={user_id}")
        return existed

    @translate_store_errors
    def regenerate_backup_codes(self, user_id: int, code: str) -> Optional[List[str]]:
        """
        Remplace le jeu de codes de secours (MFA actif uniquement).

        Exige un code TOTP frais, un code de secours n'est pas accepte.

        Returns:
            Les nouveaux codes en clair, ou None si le code TOTP est refuse

        Raises:
            MFANotConfiguredError: Si MFA n'est pas active
        """
        mfa_secret = self.mfa_secret_repository.get_by_user_id(user_id)
        if self._state_of(mfa_secret) != MFAState.ENABLED:
            raise MFANotConfiguredError(user_id=user_id)

        if not self._challenge_totp(mfa_secret, code, self.clock()):
            return None

        codes = self._replace_backup_codes(user_id)
        self.mfa_secret_repository.commit()

        logger.info(f"Codes de secours regeneres pour user_id={user_id}")
        return codes
