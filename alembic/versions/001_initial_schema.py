"""Initial schema for takeoff import system

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-09-28

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


COMPONENT_TYPES = (
    'spool', 'field_weld', 'valve', 'instrument', 'support', 'pipe', 'fitting',
    'flange', 'tubing', 'hose', 'misc_component', 'threaded_pipe'
)


def _reference_table(name: str, comment: str) -> None:
    op.create_table(
        name,
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False,
                  comment='Reference value as it appears in imports'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'),
                  nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'name', name=f'uq_{name}_project_name'),
        comment=comment
    )


def upgrade() -> None:
    # Create projects table
    op.create_table(
        'projects',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False, comment='User-friendly project name'),
        sa.Column('description', sa.Text(), nullable=True, comment='Optional project description'),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'),
                  nullable=False, comment='Project creation timestamp'),
        sa.PrimaryKeyConstraint('id'),
        comment='Project owning imported takeoff data'
    )
    op.create_index('idx_projects_created_at', 'projects', ['created_at'])

    # Create drawings table
    op.create_table(
        'drawings',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('drawing_no_raw', sa.String(length=255), nullable=False,
                  comment='Drawing number as first seen in an import'),
        sa.Column('drawing_no_norm', sa.String(length=255), nullable=False,
                  comment='Uppercased, whitespace-collapsed drawing number'),
        sa.Column('is_retired', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'),
                  nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'drawing_no_norm', name='uq_drawings_project_norm'),
        comment='Drawings referenced by components'
    )
    op.create_index('idx_drawings_project', 'drawings', ['project_id'])

    # Create metadata reference tables
    _reference_table('areas', 'Project areas')
    _reference_table('systems', 'Project systems')
    _reference_table('test_packages', 'Project test packages')

    # Create import_batches table
    op.create_table(
        'import_batches',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('column_mappings', postgresql.JSONB(astext_type=sa.Text()), server_default='[]',
                  nullable=False, comment='Column mappings used for the import'),
        sa.Column('summary', postgresql.JSONB(astext_type=sa.Text()), server_default='{}',
                  nullable=False, comment='Created counts and per-type counts'),
        sa.Column('row_count', sa.Integer(), nullable=False, comment='Number of payload rows'),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'),
                  nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        comment='Audit trail of committed imports'
    )
    op.create_index('idx_import_batches_project', 'import_batches', ['project_id'])

    # Create components table
    op.create_table(
        'components',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('component_type', sa.String(length=50), nullable=False,
                  comment='Lowercased component type'),
        sa.Column('identity_key', sa.String(length=512), nullable=False,
                  comment='Natural key: type, drawing, size, commodity code and sequence'),
        sa.Column('drawing_id', sa.Integer(), nullable=False),
        sa.Column('area_id', sa.Integer(), nullable=True),
        sa.Column('system_id', sa.Integer(), nullable=True),
        sa.Column('test_package_id', sa.Integer(), nullable=True),
        sa.Column('import_batch_id', sa.Integer(), nullable=True),
        sa.Column('attributes', postgresql.JSONB(astext_type=sa.Text()), server_default='{}',
                  nullable=False,
                  comment='Spec, description, size, commodity code, comments and unmapped columns'),
        sa.Column('current_milestones', postgresql.JSONB(astext_type=sa.Text()), server_default='{}',
                  nullable=False, comment='Milestone state, maintained by progress tracking'),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'),
                  nullable=False),
        sa.CheckConstraint(
            "component_type IN (" + ", ".join(f"'{t}'" for t in COMPONENT_TYPES) + ")",
            name='components_component_type_check'
        ),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['drawing_id'], ['drawings.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['area_id'], ['areas.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['system_id'], ['systems.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['test_package_id'], ['test_packages.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['import_batch_id'], ['import_batches.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'identity_key', name='uq_components_project_identity'),
        comment='Tracked components created by takeoff imports'
    )

    # Create indexes on components table
    op.create_index('idx_components_project_type', 'components', ['project_id', 'component_type'])
    op.create_index('idx_components_drawing', 'components', ['drawing_id'])
    op.create_index('idx_components_attributes_gin', 'components', ['attributes'],
                    postgresql_using='gin')


def downgrade() -> None:
    # Drop components table and indexes
    op.drop_index('idx_components_attributes_gin', table_name='components')
    op.drop_index('idx_components_drawing', table_name='components')
    op.drop_index('idx_components_project_type', table_name='components')
    op.drop_table('components')

    op.drop_index('idx_import_batches_project', table_name='import_batches')
    op.drop_table('import_batches')

    op.drop_table('test_packages')
    op.drop_table('systems')
    op.drop_table('areas')

    op.drop_index('idx_drawings_project', table_name='drawings')
    op.drop_table('drawings')

    op.drop_index('idx_projects_created_at', table_name='projects')
    op.drop_table('projects')
