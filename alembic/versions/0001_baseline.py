"""Baseline migration - clients, communications, alerts, HighLevel OAuth

Revision ID: 0001_baseline
Revises: 
Create Date: 2026-10-18

Creates the client communications tables and the HighLevel token store.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create portal tables."""

    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Clients
    # ==========================================================================
    op.execute('''
        CREATE TABLE clients (
            id UUID DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            contact_name VARCHAR(255),
            contact_email VARCHAR(320),
            status VARCHAR(20) NOT NULL DEFAULT 'active',
            highlevel_id VARCHAR(64),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT pk_clients PRIMARY KEY (id)
        )
    ''')

    # ==========================================================================
    # Client Communications
    # ==========================================================================
    op.execute('''
        CREATE TABLE client_communications (
            id UUID DEFAULT gen_random_uuid(),
            client_id UUID NOT NULL,
            comm_type VARCHAR(50) NOT NULL,
            title VARCHAR(500) NOT NULL,
            subject VARCHAR(500),
            body TEXT,
            status VARCHAR(20),
            metadata JSONB,
            highlight_type VARCHAR(50),
            recipient_email VARCHAR(320),
            opened_at TIMESTAMPTZ,
            clicked_at TIMESTAMPTZ,
            sent_at TIMESTAMPTZ,
            created_by VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT pk_client_communications PRIMARY KEY (id),
            CONSTRAINT fk_client_communications_client_id_clients
                FOREIGN KEY (client_id) REFERENCES clients(id) ON DELETE CASCADE
        )
    ''')
    op.execute('CREATE INDEX ix_client_communications_client_sent ON client_communications(client_id, sent_at)')
    op.execute('CREATE INDEX ix_client_communications_recipient ON client_communications(recipient_email)')

    # ==========================================================================
    # System Alerts
    # ==========================================================================
    op.execute('''
        CREATE TABLE system_alerts (
            id UUID DEFAULT gen_random_uuid(),
            severity VARCHAR(20) NOT NULL,
            category VARCHAR(50) NOT NULL,
            message TEXT NOT NULL,
            metadata JSONB,
            source_file VARCHAR(255),
            client_id UUID,
            user_id VARCHAR(64),
            resolved_at TIMESTAMPTZ,
            resolved_by VARCHAR(64),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT pk_system_alerts PRIMARY KEY (id),
            CONSTRAINT fk_system_alerts_client_id_clients
                FOREIGN KEY (client_id) REFERENCES clients(id) ON DELETE SET NULL
        )
    ''')
    op.execute('CREATE INDEX ix_system_alerts_severity_category ON system_alerts(severity, category)')
    op.execute('CREATE INDEX ix_system_alerts_created_at ON system_alerts(created_at)')

    # ==========================================================================
    # HighLevel OAuth (tokens Fernet-encrypted)
    # ==========================================================================
    op.execute('''
        CREATE TABLE highlevel_oauth (
            id UUID DEFAULT gen_random_uuid(),
            location_id VARCHAR(64) NOT NULL,
            access_token_encrypted TEXT NOT NULL,
            refresh_token_encrypted TEXT NOT NULL,
            expires_at TIMESTAMPTZ NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT pk_highlevel_oauth PRIMARY KEY (id),
            CONSTRAINT uq_highlevel_oauth_location_id UNIQUE (location_id)
        )
    ''')


def downgrade() -> None:
    """Drop portal tables."""
    op.execute('DROP TABLE IF EXISTS highlevel_oauth')
    op.execute('DROP TABLE IF EXISTS system_alerts')
    op.execute('DROP TABLE IF EXISTS client_communications')
    op.execute('DROP TABLE IF EXISTS clients')
