from alembic import op
import sqlalchemy as sa

revision = "20261018120000"
down_revision = "20261018090000"

NOW = sa.text("(now() at time zone 'utc')")

def upgrade():
    op.add_column('products', sa.Column('rating', sa.Float(), nullable=False, server_default='0'))
    op.add_column('products', sa.Column('review_count', sa.Integer(), nullable=False, server_default='0'))
    op.create_table(
        'addresses',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('full_name', sa.String(length=160), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=False),
        sa.Column('street', sa.String(length=255), nullable=False),
        sa.Column('ward', sa.String(length=120), nullable=True),
        sa.Column('district', sa.String(length=120), nullable=True),
        sa.Column('province', sa.String(length=120), nullable=False),
        sa.Column('postal_code', sa.String(length=16), nullable=True),
        sa.Column('country', sa.String(length=64), nullable=False, server_default='Vietnam'),
        sa.Column('address_type', sa.String(length=16), nullable=False, server_default='home'),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=NOW),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=NOW),
    )
    op.create_index('ix_addresses_user_id', 'addresses', ['user_id'])
    op.create_index('ix_addresses_user_default', 'addresses', ['user_id', 'is_default'])
    op.create_table(
        'wishlist_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=NOW),
        sa.UniqueConstraint('user_id', 'product_id', name='uq_wishlist_user_product'),
    )
    op.create_index('ix_wishlist_items_user_id', 'wishlist_items', ['user_id'])
    op.create_table(
        'reviews',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('comment', sa.Text(), nullable=False),
        sa.Column('images', sa.JSON(), nullable=False),
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('helpful', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('not_helpful', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=NOW),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=NOW),
        sa.UniqueConstraint('product_id', 'user_id', name='uq_reviews_product_user'),
        sa.CheckConstraint('rating >= 1 AND rating <= 5', name='ck_reviews_rating_range'),
    )
    op.create_index('ix_reviews_user_id', 'reviews', ['user_id'])
    op.create_index('ix_reviews_product_created', 'reviews', ['product_id', 'created_at'])
    op.create_table(
        'review_feedbacks',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('review_id', sa.Integer(), sa.ForeignKey('reviews.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('helpful', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=NOW),
        sa.UniqueConstraint('review_id', 'user_id', name='uq_review_feedbacks_review_user'),
    )
    op.create_index('ix_review_feedbacks_review_id', 'review_feedbacks', ['review_id'])

def downgrade():
    for table in ('review_feedbacks', 'reviews', 'wishlist_items', 'addresses'):
        op.drop_table(table)
    op.drop_column('products', 'review_count')
    op.drop_column('products', 'rating')
