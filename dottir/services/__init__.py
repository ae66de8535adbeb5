"""
Services metier de Dottir (MFA, sessions, SSO, orchestration du login)
"""
