"""
Router principal API v1 pour Dottir

Endpoints disponibles:
- /auth: Login (mot de passe + MFA), logout, re-authentification
- /mfa: Enrolement TOTP, statut, codes de secours
- /sessions: Sessions actives, touch, revocation
- /sso: Fournisseurs OAuth2, autorisation, callback, connexions
"""
from fastapi import APIRouter

from dottir.api.v1.endpoints import auth, mfa, sessions, sso

# Router principal v1
api_router = APIRouter()

api_router.include_router(auth.router)
api_router.include_router(mfa.router)
api_router.include_router(sessions.router)
api_router.include_router(sso.router)
