"""create_users_and_vlogs

Revision ID: 3f1c2a7b9d10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f1c2a7b9d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=30), nullable=False, comment='用户名'),
        sa.Column('email', sa.String(length=100), nullable=False, comment='邮箱'),
        sa.Column('avatar', sa.String(length=512), nullable=True, comment='头像URL'),
        sa.Column('bio', sa.Text(), nullable=True, comment='个人简介'),
        sa.Column('hashed_password', sa.String(length=255), nullable=False, comment='密码哈希'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true(), comment='是否激活'),
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.false(), comment='邮箱是否已验证'),
        sa.Column('verification_token_hash', sa.String(length=64), nullable=True, comment='邮箱验证令牌哈希'),
        sa.Column('token_family_id', sa.String(length=64), nullable=False, server_default='', comment='令牌家族ID'),
        sa.Column('token_version', sa.Integer(), nullable=False, server_default='0', comment='令牌版本号'),
        sa.Column('refresh_token_hash', sa.String(length=255), nullable=False, server_default='', comment='当前刷新令牌哈希'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True, comment='会话撤销时间'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, comment='更新时间'),
        sa.Column('last_login', sa.DateTime(timezone=True), nullable=True, comment='最后登录时间'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_users')),
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
    op.create_index(op.f('ix_users_username'), 'users', ['username'], unique=True)
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_verification_token_hash'), 'users', ['verification_token_hash'], unique=False)

    op.create_table(
        'vlogs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('author_id', sa.Integer(), nullable=False, comment='作者ID'),
        sa.Column('title', sa.String(length=200), nullable=False, comment='标题'),
        sa.Column('views', sa.Integer(), nullable=False, server_default='0', comment='浏览量'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='创建时间'),
        sa.CheckConstraint('views >= 0', name=op.f('ck_vlogs_views_non_negative')),
        sa.ForeignKeyConstraint(['author_id'], ['users.id'], name=op.f('fk_vlogs_author_id_users'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_vlogs')),
    )
    op.create_index(op.f('ix_vlogs_id'), 'vlogs', ['id'], unique=False)
    op.create_index(op.f('ix_vlogs_author_id'), 'vlogs', ['author_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_vlogs_author_id'), table_name='vlogs')
    op.drop_index(op.f('ix_vlogs_id'), table_name='vlogs')
    op.drop_table('vlogs')
    op.drop_index(op.f('ix_users_verification_token_hash'), table_name='users')
    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_index(op.f('ix_users_username'), table_name='users')
    op.drop_index(op.f('ix_users_id'), table_name='users')
    op.drop_table('users')
