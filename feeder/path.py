"""
paths/dirs for feeder
"""

import os

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# Mount point for stable storage.
STORAGE_DIR = os.path.join(BASE_DIR, 'storage')

# call check_dir (below) before using!
LOG_DIR = os.path.join(STORAGE_DIR, 'logs')

# alembic.ini lives at the top of the tree
ALEMBIC_INI = os.path.join(BASE_DIR, 'alembic.ini')


def check_dir(dir: str) -> None:
    """
    call before trying to create files in a directory
    """
    # XXX error if exists and not a dir (symlink to dir is ok)
    if not os.path.exists(dir):
        os.makedirs(dir, exist_ok=True)
