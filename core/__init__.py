# Core package - foundational components
#
# Modules:
# - config: Application settings
# - logging: Structured logging
# - errors: Typed CRUD errors
# - storage: Persistence contracts and the SQLAlchemy backend
