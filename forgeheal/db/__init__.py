"""
Database Package
================

Exports key database components.
"""

from forgeheal.db.models import Base, KVBlob, TaskRecord
from forgeheal.db.connection import init_db, get_session_maker, dispose_db
