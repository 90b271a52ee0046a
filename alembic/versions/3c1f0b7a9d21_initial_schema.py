"""initial_schema

Revision ID: 3c1f0b7a9d21
Revises:
Create Date: 2026-10-19 09:12:44.218305

"""

from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "3c1f0b7a9d21"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Create extensions
    op.execute('CREATE EXTENSION IF NOT EXISTS "vector"')
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # Users and role permissions
    op.execute("""
        CREATE TABLE users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email TEXT UNIQUE NOT NULL,
            name TEXT NOT NULL,
            role TEXT NOT NULL DEFAULT 'customer'
                CHECK (role IN ('admin', 'supervisor', 'agent', 'customer')),
            custom_permissions TEXT[] NOT NULL DEFAULT '{}',
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.create_index("idx_users_role", "users", ["role"])

    op.execute("""
        CREATE TABLE role_permissions (
            role TEXT NOT NULL,
            permission TEXT NOT NULL,
            PRIMARY KEY (role, permission)
        )
    """)

    # Teams
    op.execute("""
        CREATE TABLE teams (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name TEXT UNIQUE NOT NULL,
            description TEXT,
            schedule JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )
    """)

    op.execute("""
        CREATE TABLE team_members (
            team_id UUID NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            role TEXT NOT NULL DEFAULT 'member',
            skills TEXT[] NOT NULL DEFAULT '{}',
            joined_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (team_id, user_id)
        )
    """)
    op.create_index("idx_team_members_user", "team_members", ["user_id"])

    # Knowledge base
    op.execute("""
        CREATE TABLE categories (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name TEXT NOT NULL,
            slug TEXT UNIQUE NOT NULL,
            description TEXT,
            parent_id UUID REFERENCES categories(id),
            sort_order INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.create_index("idx_categories_parent", "categories", ["parent_id"])

    op.execute("""
        CREATE TABLE articles (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            title TEXT NOT NULL,
            slug TEXT UNIQUE NOT NULL,
            content TEXT NOT NULL,
            excerpt TEXT,
            status TEXT NOT NULL DEFAULT 'draft'
                CHECK (status IN ('draft', 'published', 'archived')),
            category_id UUID REFERENCES categories(id) ON DELETE SET NULL,
            tags TEXT[] NOT NULL DEFAULT '{}',
            author_id UUID REFERENCES users(id) ON DELETE SET NULL,
            current_version INTEGER NOT NULL DEFAULT 1,
            view_count INTEGER NOT NULL DEFAULT 0,
            helpful_count INTEGER NOT NULL DEFAULT 0,
            not_helpful_count INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            published_at TIMESTAMP WITH TIME ZONE,
            search_vector tsvector GENERATED ALWAYS AS (
                setweight(to_tsvector('english', coalesce(title, '')), 'A') ||
                setweight(to_tsvector('english', coalesce(excerpt, '')), 'B') ||
                setweight(to_tsvector('english', coalesce(content, '')), 'C')
            ) STORED
        )
    """)
    op.create_index("idx_articles_status", "articles", ["status"])
    op.create_index("idx_articles_category", "articles", ["category_id"])
    op.execute("CREATE INDEX idx_articles_search_vector ON articles USING GIN (search_vector)")
    op.execute("CREATE INDEX idx_articles_tags ON articles USING GIN (tags)")

    op.execute("""
        CREATE TABLE article_versions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            article_id UUID NOT NULL REFERENCES articles(id) ON DELETE CASCADE,
            version INTEGER NOT NULL,
            title TEXT NOT NULL,
            content TEXT NOT NULL,
            changes TEXT,
            created_by UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (article_id, version)
        )
    """)

    op.execute("""
        CREATE TABLE article_feedback (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            article_id UUID NOT NULL REFERENCES articles(id) ON DELETE CASCADE,
            user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            is_helpful BOOLEAN NOT NULL,
            comment TEXT,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.create_index("idx_article_feedback_article", "article_feedback", ["article_id"])

    # Semantic search documents
    op.execute("""
        CREATE TABLE embeddings (
            id BIGSERIAL PRIMARY KEY,
            title TEXT NOT NULL,
            content TEXT NOT NULL,
            url TEXT,
            article_id UUID REFERENCES articles(id) ON DELETE CASCADE,
            embedding vector(1536) NOT NULL,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.create_index("idx_embeddings_article", "embeddings", ["article_id"])
    op.execute("""
        CREATE INDEX idx_embeddings_vector ON embeddings
        USING hnsw (embedding vector_cosine_ops)
    """)

    op.execute("""
        CREATE OR REPLACE FUNCTION match_embeddings(
            query_embedding vector(1536),
            match_threshold FLOAT,
            match_count INT
        )
        RETURNS TABLE (
            id BIGINT,
            title TEXT,
            content TEXT,
            url TEXT,
            article_id UUID,
            similarity FLOAT
        )
        LANGUAGE sql STABLE
        AS $$
            SELECT e.id, e.title, e.content, e.url, e.article_id,
                   1 - (e.embedding <=> query_embedding) AS similarity
            FROM embeddings e
            WHERE 1 - (e.embedding <=> query_embedding) > match_threshold
            ORDER BY e.embedding <=> query_embedding
            LIMIT match_count
        $$
    """)

    # Tickets
    op.execute("""
        CREATE TABLE tickets (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            title TEXT NOT NULL,
            description TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'open'
                CHECK (status IN ('open', 'in_progress', 'waiting', 'resolved', 'closed')),
            priority TEXT NOT NULL DEFAULT 'medium'
                CHECK (priority IN ('low', 'medium', 'high', 'urgent')),
            type TEXT NOT NULL DEFAULT 'question'
                CHECK (type IN ('question', 'problem', 'incident', 'task')),
            source TEXT NOT NULL DEFAULT 'web'
                CHECK (source IN ('email', 'web', 'phone', 'chat')),
            customer_id UUID NOT NULL REFERENCES users(id),
            assignee_id UUID REFERENCES users(id) ON DELETE SET NULL,
            team_id UUID REFERENCES teams(id) ON DELETE SET NULL,
            tags TEXT[] NOT NULL DEFAULT '{}',
            resolution TEXT,
            due_date TIMESTAMP WITH TIME ZONE,
            metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            status_changed_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            first_response_at TIMESTAMP WITH TIME ZONE,
            resolved_at TIMESTAMP WITH TIME ZONE
        )
    """)
    op.create_index("idx_tickets_status", "tickets", ["status"])
    op.create_index("idx_tickets_customer", "tickets", ["customer_id"])
    op.create_index("idx_tickets_assignee", "tickets", ["assignee_id"])
    op.create_index("idx_tickets_team", "tickets", ["team_id"])
    op.create_index("idx_tickets_created_at", "tickets", ["created_at"])

    op.execute("""
        CREATE TABLE ticket_comments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            ticket_id UUID NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
            author_id UUID NOT NULL REFERENCES users(id),
            content TEXT NOT NULL,
            is_internal BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.create_index("idx_ticket_comments_ticket", "ticket_comments", ["ticket_id"])

    op.execute("""
        CREATE TABLE ticket_status_history (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            ticket_id UUID NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
            from_status TEXT,
            to_status TEXT NOT NULL,
            changed_by UUID REFERENCES users(id) ON DELETE SET NULL,
            reason TEXT,
            automation_triggered BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.create_index("idx_status_history_ticket", "ticket_status_history", ["ticket_id"])

    op.execute("""
        CREATE TABLE ticket_assignment_history (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            ticket_id UUID NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
            from_assignee_id UUID REFERENCES users(id) ON DELETE SET NULL,
            to_assignee_id UUID REFERENCES users(id) ON DELETE SET NULL,
            changed_by UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.create_index("idx_assignment_history_ticket", "ticket_assignment_history", ["ticket_id"])

    op.execute("""
        CREATE TABLE ticket_relationships (
            ticket_id UUID NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
            related_ticket_id UUID NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
            relationship_type TEXT NOT NULL DEFAULT 'related',
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (ticket_id, related_ticket_id),
            CHECK (ticket_id <> related_ticket_id)
        )
    """)

    op.execute("""
        CREATE TABLE ticket_followers (
            ticket_id UUID NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (ticket_id, user_id)
        )
    """)

    op.execute("""
        CREATE TABLE sla_states (
            ticket_id UUID PRIMARY KEY REFERENCES tickets(id) ON DELETE CASCADE,
            config_id TEXT NOT NULL,
            started_at TIMESTAMP WITH TIME ZONE NOT NULL,
            paused_at TIMESTAMP WITH TIME ZONE,
            total_paused_minutes INTEGER NOT NULL DEFAULT 0,
            responded_at TIMESTAMP WITH TIME ZONE,
            response_breached BOOLEAN NOT NULL DEFAULT FALSE,
            resolution_breached BOOLEAN NOT NULL DEFAULT FALSE,
            breached_at TIMESTAMP WITH TIME ZONE,
            last_escalation_threshold INTEGER NOT NULL DEFAULT 0,
            last_escalation_at TIMESTAMP WITH TIME ZONE,
            stopped_at TIMESTAMP WITH TIME ZONE
        )
    """)

    # Audit, notifications, search analytics
    op.execute("""
        CREATE TABLE audit_logs (
            id BIGSERIAL PRIMARY KEY,
            actor_id UUID REFERENCES users(id) ON DELETE SET NULL,
            action TEXT NOT NULL,
            entity_type TEXT NOT NULL,
            entity_id TEXT,
            changes JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.create_index("idx_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_audit_logs_created_at", "audit_logs", ["created_at"])

    op.execute("""
        CREATE TABLE notifications (
            id BIGSERIAL PRIMARY KEY,
            recipient_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            ticket_id UUID REFERENCES tickets(id) ON DELETE CASCADE,
            kind TEXT NOT NULL,
            message TEXT NOT NULL,
            read_at TIMESTAMP WITH TIME ZONE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.create_index("idx_notifications_recipient", "notifications", ["recipient_id", "created_at"])

    op.execute("""
        CREATE TABLE search_logs (
            id BIGSERIAL PRIMARY KEY,
            query TEXT NOT NULL,
            method TEXT NOT NULL CHECK (method IN ('fulltext', 'semantic', 'chat')),
            result_count INTEGER NOT NULL DEFAULT 0,
            latency_ms INTEGER,
            user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.create_index("idx_search_logs_created_at", "search_logs", ["created_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("DROP TABLE IF EXISTS search_logs CASCADE")
    op.execute("DROP TABLE IF EXISTS notifications CASCADE")
    op.execute("DROP TABLE IF EXISTS audit_logs CASCADE")
    op.execute("DROP TABLE IF EXISTS sla_states CASCADE")
    op.execute("DROP TABLE IF EXISTS ticket_followers CASCADE")
    op.execute("DROP TABLE IF EXISTS ticket_relationships CASCADE")
    op.execute("DROP TABLE IF EXISTS ticket_assignment_history CASCADE")
    op.execute("DROP TABLE IF EXISTS ticket_status_history CASCADE")
    op.execute("DROP TABLE IF EXISTS ticket_comments CASCADE")
    op.execute("DROP TABLE IF EXISTS tickets CASCADE")
    op.execute("DROP FUNCTION IF EXISTS match_embeddings(vector, FLOAT, INT)")
    op.execute("DROP TABLE IF EXISTS embeddings CASCADE")
    op.execute("DROP TABLE IF EXISTS article_feedback CASCADE")
    op.execute("DROP TABLE IF EXISTS article_versions CASCADE")
    op.execute("DROP TABLE IF EXISTS articles CASCADE")
    op.execute("DROP TABLE IF EXISTS categories CASCADE")
    op.execute("DROP TABLE IF EXISTS team_members CASCADE")
    op.execute("DROP TABLE IF EXISTS teams CASCADE")
    op.execute("DROP TABLE IF EXISTS role_permissions CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
