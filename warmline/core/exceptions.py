"""Warmline Exception Hierarchy.

All custom exceptions inherit from WarmlineError.
Oracle failures are their own branch because the decision layer
must fail safe on them rather than propagate.

Exception Hierarchy:
    WarmlineError (base)
    ├── ConfigurationError
    ├── ValidationError
    ├── DatabaseError
    ├── NotFoundError
    ├── PipelineError
    │   └── RankingUnavailableError
    ├── OracleError
    │   ├── OracleTimeoutError
    │   └── OracleUnavailableError
    └── IntegrityWarning
"""


class WarmlineError(Exception):
    """Base exception for all Warmline errors.

    All custom exceptions in Warmline inherit from this class,
    allowing for broad exception handling when needed.
    """

    pass


class ConfigurationError(WarmlineError):
    """Configuration is invalid or missing.

    Raised when:
        - Required environment variable is missing
        - Numeric setting cannot be parsed
        - Path is not writable
    """

    pass


class ValidationError(WarmlineError):
    """Data validation failed.

    Raised when:
        - Required field is missing
        - Field value is outside its allowed set
        - Opportunity kind does not match its fields
    """

    pass


class DatabaseError(WarmlineError):
    """Database operation failed.

    Raised when:
        - Database file cannot be opened
        - Database is locked past the busy timeout
        - Query execution fails
    """

    pass


class NotFoundError(WarmlineError):
    """Referenced record does not exist.

    Raised when:
        - Opportunity id is unknown for its item type
        - User id is unknown

    The operation is rejected before any mutation happens.
    """

    pass


class PipelineError(WarmlineError):
    """Pipeline operation failed.

    Raised when:
        - Invalid opportunity transition attempted
        - Business rule violation occurs
    """

    pass


class RankingUnavailableError(PipelineError):
    """Ranking refresh could not complete.

    Raised when:
        - Ranking recompute exceeds its time budget
        - Ranking projection cannot be swapped in
    """

    pass


class OracleError(WarmlineError):
    """Decision Oracle failed.

    Base class for oracle-specific errors.
    """

    pass


class OracleTimeoutError(OracleError):
    """Decision Oracle did not answer in time.

    Raised when:
        - API call exceeds the configured timeout
    """

    pass


class OracleUnavailableError(OracleError):
    """Decision Oracle cannot produce a usable decision.

    Raised when:
        - API key is not configured
        - API call fails
        - Response cannot be parsed into a decision
    """

    pass


class IntegrityWarning(WarmlineError):
    """Oracle output referenced something the engine does not know.

    Logged, never raised: the offending thread is dropped and the
    remaining threads are still processed.
    """

    pass
