"""
Create (or upgrade) database tables by running alembic migrations.
"""

import logging

# PyPI
from alembic import command
from alembic.config import Config

from feeder.logargparse import LogArgumentParser
from feeder.path import ALEMBIC_INI

SCRIPT = 'create_tables'
logger = logging.getLogger(SCRIPT)

if __name__ == '__main__':
    p = LogArgumentParser(SCRIPT, 'Create/upgrade database tables')
    p.add_argument('revision', nargs='?', default='head',
                   help='target revision [default: head]')
    args = p.my_parse_args()

    logger.info(f"upgrading to {args.revision}")
    command.upgrade(Config(ALEMBIC_INI), args.revision)
