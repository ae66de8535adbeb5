"""
Exceptions metier pour les Services Dottir

Les echecs de verification (code TOTP, code de secours, etat CSRF) ne sont
PAS des exceptions: ils sont rendus sous forme de booleens ou de statuts.
Les exceptions ci-dessous couvrent les erreurs d'usage, les erreurs
reseau vers les fournisseurs SSO et l'indisponibilite du stockage.
"""
from typing import Optional


class ServiceException(Exception):
    """Exception de base pour les services"""

    status_code: int = 400

    def __init__(self, message: str, code: str = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class InvalidCredentialsError(ServiceException):
    """Identifiants invalides"""

    status_code = 401

    def __init__(self):
        super().__init__(
            message="Email ou mot de passe invalide",
            code="INVALID_CREDENTIALS"
        )


class EmailAlreadyExistsError(ServiceException):
    """Email deja associe a une identite"""

    status_code = 409

    def __init__(self):
        super().__init__(
            message="Un compte existe deja pour cet email",
            code="EMAIL_EXISTS"
        )


class WeakPasswordError(ServiceException):
    """Mot de passe refuse par la politique de robustesse"""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message=message, code="WEAK_PASSWORD")


class InvalidRoleError(ServiceException):
    """Role non ouvert a l'inscription"""

    status_code = 400

    def __init__(self, role: str):
        super().__init__(
            message=f"Role invalide pour l'inscription: {role}",
            code="INVALID_ROLE"
        )
        self.role = role


class ReauthenticationRequiredError(ServiceException):
    """Re-authentification requise pour une operation sensible"""

    status_code = 401

    def __init__(self):
        super().__init__(
            message="Re-authentification requise (mot de passe et code MFA)",
            code="REAUTHENTICATION_REQUIRED"
        )


class MFARequiredError(ServiceException):
    """Un challenge MFA doit etre complete avant d'obtenir une session"""

    status_code = 401

    def __init__(self, challenge_token: Optional[str] = None):
        super().__init__(
            message="Verification MFA requise",
            code="MFA_REQUIRED"
        )
        self.challenge_token = challenge_token


class MFAVerificationFailedError(ServiceException):
    """Code MFA refuse"""

    status_code = 401

    def __init__(self, message: str = "Code MFA invalide"):
        super().__init__(message=message, code="MFA_VERIFICATION_FAILED")


class BackupCodeAlreadyUsedError(ServiceException):
    """Code de secours deja consomme"""

    status_code = 401

    def __init__(self):
        super().__init__(
            message="Ce code de secours a deja ete utilise",
            code="BACKUP_CODE_ALREADY_USED"
        )


class MFAAlreadyEnabledError(ServiceException):
    """MFA est deja active pour cet utilisateur"""

    status_code = 409

    def __init__(self, user_id: Optional[int] = None):
        super().__init__(
            message="MFA est deja active pour cet utilisateur",
            code="MFA_ALREADY_ENABLED"
        )
        self.user_id = user_id


class MFANotConfiguredError(ServiceException):
    """MFA n'est pas configure (ou pas encore active) pour cet utilisateur"""

    status_code = 400

    def __init__(self, user_id: Optional[int] = None):
        super().__init__(
            message="MFA n'est pas configure pour cet utilisateur",
            code="MFA_NOT_CONFIGURED"
        )
        self.user_id = user_id


class SessionNotFoundError(ServiceException):
    """Session non trouvee (ou appartenant a un autre utilisateur)"""

    status_code = 404

    def __init__(self, session_id=None):
        super().__init__(
            message="Session non trouvee",
            code="SESSION_NOT_FOUND"
        )
        self.session_id = session_id


class SessionExpiredError(ServiceException):
    """
    Session terminee.

    reason: "inactivity", "absolute" ou "revoked"
    """

    status_code = 401

    def __init__(self, reason: str = "inactivity"):
        super().__init__(
            message=f"Session expiree ({reason})",
            code="SESSION_EXPIRED"
        )
        self.reason = reason


class CSRFViolationError(ServiceException):
    """Etat OAuth2 absent, expire ou different de celui emis"""

    status_code = 403

    def __init__(self):
        super().__init__(
            message="Etat SSO invalide ou expire",
            code="CSRF_VIOLATION"
        )


class ProviderNotFoundError(ServiceException):
    """Fournisseur SSO inconnu"""

    status_code = 404

    def __init__(self, provider_id: str):
        super().__init__(
            message=f"Fournisseur SSO '{provider_id}' inconnu",
            code="PROVIDER_NOT_FOUND"
        )
        self.provider_id = provider_id


class ProviderDisabledError(ServiceException):
    """Fournisseur SSO desactive"""

    status_code = 403

    def __init__(self, provider_id: str):
        super().__init__(
            message=f"Fournisseur SSO '{provider_id}' desactive",
            code="PROVIDER_DISABLED"
        )
        self.provider_id = provider_id


class TokenExchangeFailedError(ServiceException):
    """Echec de l'echange du code d'autorisation (pas de retry)"""

    status_code = 502

    def __init__(self, reason: str = None):
        message = "Echec de l'echange du code d'autorisation"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message=message, code="TOKEN_EXCHANGE_FAILED")
        self.reason = reason


class UserInfoFailedError(ServiceException):
    """Echec de la recuperation du profil chez le fournisseur"""

    status_code = 502

    def __init__(self, reason: str = None):
        message = "Echec de la recuperation du profil SSO"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message=message, code="USERINFO_FAILED")
        self.reason = reason


class UnverifiedEmailError(ServiceException):
    """Le fournisseur declare l'email non verifie"""

    status_code = 403

    def __init__(self):
        super().__init__(
            message="L'email du compte SSO n'est pas verifie par le fournisseur",
            code="SSO_EMAIL_NOT_VERIFIED"
        )


class LastSignInMethodError(ServiceException):
    """Suppression du dernier moyen de connexion refusee"""

    status_code = 409

    def __init__(self, provider_id: str):
        super().__init__(
            message=(
                f"Impossible de delier '{provider_id}': "
                "c'est le dernier moyen de connexion du compte"
            ),
            code="LAST_SIGN_IN_METHOD"
        )
        self.provider_id = provider_id


class RateLimitedError(ServiceException):
    """Trop de requetes depuis cette adresse"""

    status_code = 429

    def __init__(self, retry_after: int = 60):
        super().__init__(
            message="Trop de requetes, reessayez plus tard",
            code="RATE_LIMITED"
        )
        self.retry_after = retry_after


class StoreUnavailableError(ServiceException):
    """
    Stockage indisponible.

    Fatal pour la requete courante, l'appelant peut reessayer avec backoff.
    """

    status_code = 503

    def __init__(self, reason: str = None):
        super().__init__(
            message="Service de stockage temporairement indisponible",
            code="STORE_UNAVAILABLE"
        )
        self.reason = reason
