"""Initial schema: listings, dealers, review queue, relisting patterns, dealer rules.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "listings",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("vin", sa.String(32), nullable=True),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("source_site", sa.String(), nullable=False),
        sa.Column("make", sa.String(), nullable=True),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("mileage", sa.Integer(), nullable=True),
        sa.Column("exterior_color", sa.String(), nullable=True),
        sa.Column("image_hash", sa.String(), nullable=True),
        sa.Column("city", sa.String(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("dealer_id", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("first_seen_at", sa.DateTime(), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(), nullable=False),
        sa.Column("deactivated_at", sa.DateTime(), nullable=True),
        sa.Column("days_on_market", sa.Integer(), nullable=True),
        sa.Column("relisted_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("previous_listing_id", sa.String(), nullable=True),
        sa.Column("duplicate_of_id", sa.String(), nullable=True),
        sa.Column("match_confidence", sa.Float(), nullable=True),
        sa.Column("match_method", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_listings_tenant_id", "listings", ["tenant_id"])
    op.create_index("ix_listings_dealer_id", "listings", ["dealer_id"])
    op.create_index("ix_listings_tenant_active", "listings", ["tenant_id", "is_active"])
    op.create_index(
        "ix_listings_tenant_external", "listings", ["tenant_id", "external_id", "source_site"]
    )

    op.create_table(
        "dealers",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("frequent_relister", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("frequent_relister_updated_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_dealers_tenant_id", "dealers", ["tenant_id"])

    op.create_table(
        "review_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("listing_id_a", sa.String(), nullable=False),
        sa.Column("listing_id_b", sa.String(), nullable=False),
        sa.Column("pair_key", sa.String(), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column("match_method", sa.String(), nullable=False),
        sa.Column("field_scores", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("resolution", sa.String(), nullable=False, server_default="unset"),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("resolved_by", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("listing_id_a <> listing_id_b", name="distinct_listings"),
        sa.CheckConstraint(
            "status IN ('pending', 'resolved', 'dismissed')", name="valid_review_status"
        ),
        sa.CheckConstraint(
            "resolution IN ('same_vehicle', 'different_vehicle', 'unset')",
            name="valid_resolution",
        ),
        sa.CheckConstraint(
            "match_method IN ('exact_vin', 'partial_vin', 'external_id', "
            "'fuzzy_attributes', 'none')",
            name="valid_review_method",
        ),
    )
    # At most one pending review per unordered pair
    op.create_index(
        "uq_review_items_pending_pair",
        "review_items",
        ["tenant_id", "pair_key"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )
    op.create_index("ix_review_items_tenant_status", "review_items", ["tenant_id", "status"])

    op.create_table(
        "relisting_patterns",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("current_listing_id", sa.String(), nullable=False),
        sa.Column("previous_listing_id", sa.String(), nullable=False),
        sa.Column("dealer_id", sa.String(), nullable=True),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("match_confidence", sa.Float(), nullable=False),
        sa.Column("match_method", sa.String(), nullable=False),
        sa.Column("previous_price", sa.Float(), nullable=True),
        sa.Column("current_price", sa.Float(), nullable=True),
        sa.Column("price_change", sa.Float(), nullable=True),
        sa.Column("price_change_percent", sa.Float(), nullable=True),
        sa.Column("previous_deactivated_at", sa.DateTime(), nullable=False),
        sa.Column("current_listed_at", sa.DateTime(), nullable=False),
        sa.Column("days_between_listings", sa.Integer(), nullable=False),
        sa.Column("time_off_market_days", sa.Float(), nullable=False),
        sa.Column("previous_days_on_market", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("vin", sa.String(), nullable=True),
        sa.Column("make", sa.String(), nullable=True),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("is_suspicious", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("suspicious_reason", sa.Text(), nullable=True),
        sa.Column("detected_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "tenant_id", "current_listing_id", "previous_listing_id",
            name="uq_relisting_patterns_pair",
        ),
        sa.CheckConstraint(
            "type IN ('vin_match', 'external_id_match', 'fuzzy_match', 'combined_match')",
            name="valid_relisting_type",
        ),
    )
    op.create_index(
        "ix_relisting_patterns_dealer", "relisting_patterns", ["tenant_id", "dealer_id"]
    )

    op.create_table(
        "dealer_dedup_rules",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("dealer_id", sa.String(), nullable=False),
        sa.Column("rule_name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("auto_match_threshold", sa.Float(), nullable=True),
        sa.Column("review_threshold", sa.Float(), nullable=True),
        sa.Column("make_model_weight", sa.Float(), nullable=True),
        sa.Column("year_weight", sa.Float(), nullable=True),
        sa.Column("mileage_weight", sa.Float(), nullable=True),
        sa.Column("price_weight", sa.Float(), nullable=True),
        sa.Column("location_weight", sa.Float(), nullable=True),
        sa.Column("image_weight", sa.Float(), nullable=True),
        sa.Column("mileage_tolerance", sa.Float(), nullable=True),
        sa.Column("price_tolerance", sa.Float(), nullable=True),
        sa.Column("year_tolerance", sa.Integer(), nullable=True),
        sa.Column("enable_vin_matching", sa.Boolean(), nullable=True),
        sa.Column("enable_fuzzy_matching", sa.Boolean(), nullable=True),
        sa.Column("enable_image_matching", sa.Boolean(), nullable=True),
        sa.Column("require_exact_vin_match", sa.Boolean(), nullable=True),
        sa.Column("min_price", sa.Float(), nullable=True),
        sa.Column("max_price", sa.Float(), nullable=True),
        sa.Column("min_year", sa.Integer(), nullable=True),
        sa.Column("max_year", sa.Integer(), nullable=True),
        sa.Column("make_filter", sa.String(), nullable=True),
        sa.Column("model_filter", sa.String(), nullable=True),
        sa.Column("times_applied", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_applied_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("updated_by", sa.String(), nullable=True),
    )
    op.create_index(
        "ix_dealer_dedup_rules_dealer",
        "dealer_dedup_rules",
        ["tenant_id", "dealer_id", "is_active"],
    )


def downgrade() -> None:
    op.drop_table("dealer_dedup_rules")
    op.drop_table("relisting_patterns")
    op.drop_table("review_items")
    op.drop_table("dealers")
    op.drop_table("listings")
