"""
Alembic migration environment
"""

from logging.config import fileConfig

# PyPI:
from alembic import context
from sqlalchemy import engine_from_config, pool

# local:
from feeder.config import conf, fix_database_url
from feeder.database.models import Base

config = context.config

# scripts/migrate.py has already set up logging
if config.config_file_name is not None and \
        config.attributes.get('configure_logger', True):
    fileConfig(config.config_file_name)

# NOTE! ConfigParser interpolation: escape any "%" in password
config.set_main_option(
    'sqlalchemy.url',
    fix_database_url(conf.SQLALCHEMY_DATABASE_URI).replace('%', '%%'))

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """emit SQL to stdout (alembic upgrade --sql)"""
    context.configure(
        url=config.get_main_option('sqlalchemy.url'),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix='sqlalchemy.',
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection,
                          target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
