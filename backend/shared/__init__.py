"""
Shared module for common utilities across the REST API, the WebSocket
channel and the CLI.

STRUCTURE:
- shared.infrastructure: Database and request correlation
  - db.py: SQLAlchemy engine, sessions, safe_commit()
  - correlation.py: X-Request-ID propagation into logs

- shared.config: Configuration
  - settings.py: Environment config (Pydantic)
  - logging.py: Structured logging, masking, signature audit trail
  - constants.py: PaymentStatus, StatusSource, Limits

- shared.utils: Utilities
  - exceptions.py: HTTP exceptions with auto-logging
  - schemas.py: Shared Pydantic schemas

- shared.rate_limit: slowapi limiter for payment creation

IMPORT EXAMPLES:
    from shared.infrastructure.db import SessionLocal, safe_commit
    from shared.config.settings import settings
    from shared.config.constants import PaymentStatus, StatusSource
    from shared.utils.exceptions import NotFoundError, ValidationError
"""
