"""
Dottir - sous-systeme d'authentification

TOTP (RFC 6238), codes de secours, sessions a fenetre glissante et SSO OAuth2.
"""
__version__ = "0.1.0"
