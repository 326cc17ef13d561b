# =============================================================================
# Database Package
# =============================================================================
# Async SQLAlchemy engine and session dependency, ORM models, and the
# Repository interface the services depend on.
# =============================================================================
