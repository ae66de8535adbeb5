"""initial auth schema

Revision ID: a1c4e7f20b93
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = 'a1c4e7f20b93'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ============================================
    # Table: users
    # ============================================
    op.execute("""
        CREATE TABLE users (
            id BIGSERIAL PRIMARY KEY,
            email VARCHAR(255) NOT NULL UNIQUE,
            password_hash TEXT,
            full_name TEXT,
            avatar_url TEXT,
            role VARCHAR(32) NOT NULL DEFAULT 'member',
            mfa_enabled BOOLEAN NOT NULL DEFAULT FALSE,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );

        CREATE INDEX ix_users_email ON users (email);
    """)

    # ============================================
    # Tables: mfa_secrets, mfa_recovery_codes
    # ============================================
    op.execute("""
        CREATE TABLE mfa_secrets (
            user_id BIGINT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            secret TEXT NOT NULL,
            algorithm VARCHAR(16) NOT NULL DEFAULT 'SHA1',
            period INTEGER NOT NULL DEFAULT 30,
            digits INTEGER NOT NULL DEFAULT 6,
            enabled BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            last_used_at TIMESTAMPTZ,
            last_totp_window BIGINT
        );

        CREATE TABLE mfa_recovery_codes (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            code_hash TEXT NOT NULL,
            used_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );

        CREATE INDEX ix_mfa_recovery_codes_user_id ON mfa_recovery_codes (user_id);
        CREATE INDEX ix_mfa_recovery_codes_used_at ON mfa_recovery_codes (used_at);
    """)

    # ============================================
    # Table: sessions
    # ============================================
    op.execute("""
        CREATE TABLE sessions (
            id UUID PRIMARY KEY,
            token_hash VARCHAR(64) NOT NULL UNIQUE,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            last_activity_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            absolute_expiry TIMESTAMPTZ,
            device_info JSON,
            ip_address TEXT,
            revoked_at TIMESTAMPTZ,
            end_reason VARCHAR(32)
        );

        CREATE INDEX ix_sessions_token_hash ON sessions (token_hash);
        CREATE INDEX ix_sessions_user_id ON sessions (user_id);
        CREATE INDEX ix_sessions_absolute_expiry ON sessions (absolute_expiry);
        CREATE INDEX ix_sessions_revoked_at ON sessions (revoked_at);

        -- Sessions actives d'un utilisateur (liste, revoke-all)
        CREATE INDEX sessions_user_active_idx ON sessions (user_id, last_activity_at)
            WHERE revoked_at IS NULL;
    """)

    # ============================================
    # Tables: sso_providers, user_sso_connections
    # ============================================
    op.execute("""
        CREATE TABLE sso_providers (
            id VARCHAR(64) PRIMARY KEY,
            name TEXT NOT NULL,
            authorization_url TEXT NOT NULL,
            token_url TEXT NOT NULL,
            userinfo_url TEXT NOT NULL,
            client_id TEXT NOT NULL,
            client_secret TEXT NOT NULL,
            redirect_uri TEXT NOT NULL,
            scopes TEXT NOT NULL DEFAULT '',
            icon_url TEXT,
            description TEXT,
            enabled BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );

        CREATE TABLE user_sso_connections (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            provider_id VARCHAR(64) NOT NULL REFERENCES sso_providers(id) ON DELETE CASCADE,
            provider_user_id TEXT NOT NULL,
            access_token TEXT,
            refresh_token TEXT,
            expires_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_sso_connection_user_provider UNIQUE (user_id, provider_id)
        );

        CREATE INDEX ix_user_sso_connections_user_id ON user_sso_connections (user_id);
    """)


def downgrade() -> None:
    op.execute("""
        DROP TABLE IF EXISTS user_sso_connections CASCADE;
        DROP TABLE IF EXISTS sso_providers CASCADE;
        DROP TABLE IF EXISTS sessions CASCADE;
        DROP TABLE IF EXISTS mfa_recovery_codes CASCADE;
        DROP TABLE IF EXISTS mfa_secrets CASCADE;
        DROP TABLE IF EXISTS users CASCADE;
    """)
