from .connection import (
    Base, create_engine_from_settings, create_session_factory, init_db, check_db
)

__all__ = [
    'Base', 'create_engine_from_settings', 'create_session_factory',
    'init_db', 'check_db',
]
