"""Stock change NOTIFY trigger

Learn: PostgreSQL LISTEN/NOTIFY turns every committed row change into a
push notification. The trigger fires pg_notify on the 'stock_changes'
channel with the operation and both row images. PgNotifyChangeSource
LISTENs on that channel.

NOTIFY is delivered on commit, in commit order, and only to sessions
listening at that moment — there is no replay. pg_notify payloads are
capped at 8000 bytes, which a stock row is nowhere near.

Revision ID: a84e5c61f2d3
Revises: 3f1c2a9d0b7e
Create Date: 2026-10-12 09:31:47.540117
"""
from typing import Sequence, Union

from alembic import op


revision: str = 'a84e5c61f2d3'
down_revision: Union[str, None] = '3f1c2a9d0b7e'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE OR REPLACE FUNCTION notify_stock_change()
        RETURNS TRIGGER AS $$
        BEGIN
            -- Updates that change nothing are not changes
            IF TG_OP = 'UPDATE' AND NEW IS NOT DISTINCT FROM OLD THEN
                RETURN NEW;
            END IF;
            PERFORM pg_notify('stock_changes', json_build_object(
                'op', TG_OP,
                'table', TG_TABLE_NAME,
                'new', CASE WHEN TG_OP = 'DELETE' THEN NULL ELSE row_to_json(NEW) END,
                'old', CASE WHEN TG_OP = 'INSERT' THEN NULL ELSE row_to_json(OLD) END
            )::text);
            RETURN COALESCE(NEW, OLD);
        END;
        $$ LANGUAGE plpgsql;
    """)

    op.execute("""
        CREATE TRIGGER stock_change_notify
            AFTER INSERT OR UPDATE OR DELETE ON stocks
            FOR EACH ROW
            EXECUTE FUNCTION notify_stock_change();
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS stock_change_notify ON stocks;")
    op.execute("DROP FUNCTION IF EXISTS notify_stock_change;")
