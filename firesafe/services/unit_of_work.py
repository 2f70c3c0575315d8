"""
Atomic unit-of-work helpers.

Every multi-entity workflow (approve, ad-hoc approve, clone, payment batch,
invoice closure) runs inside ``transaction()``: all writes commit together or
none do.  Nested ``transaction()`` blocks join the outermost one, so services
can call each other freely and only the outermost block commits.

State-machine preconditions that must survive concurrent callers are
enforced with ``compare_and_set_status()``: an UPDATE guarded by the expected
status inside the same transaction.  The losing caller sees rowcount 0 and
gets ConflictError; it never double-creates dependent rows.
"""

import logging
from contextlib import contextmanager

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from firesafe.core.exceptions import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TransactionError,
    ValidationError,
)
from firesafe.models import db

logger = logging.getLogger(__name__)

_DOMAIN_ERRORS = (
    AuthenticationError,
    PermissionDeniedError,
    NotFoundError,
    ValidationError,
    ConflictError,
)

_DEPTH_KEY = "firesafe_tx_depth"


@contextmanager
def transaction():
    """Run the enclosed block as one atomic unit.

    Raises:
        ConflictError: the store rejected a uniqueness / integrity constraint.
        TransactionError: any other store failure.
        Domain errors raised inside the block propagate unchanged.
    """
    session = db.session
    depth = session.info.get(_DEPTH_KEY, 0)
    session.info[_DEPTH_KEY] = depth + 1
    try:
        yield session
        if depth == 0:
            session.commit()
        else:
            session.flush()
    except _DOMAIN_ERRORS:
        if depth == 0:
            session.rollback()
        raise
    except IntegrityError as exc:
        if depth == 0:
            session.rollback()
        logger.warning("Integrity error, unit rolled back: %s", exc.orig)
        raise ConflictError("Duplicate or constraint violation") from exc
    except SQLAlchemyError as exc:
        if depth == 0:
            session.rollback()
        logger.error("Database error, unit rolled back", exc_info=True)
        raise TransactionError(cause=exc) from exc
    except Exception:
        if depth == 0:
            session.rollback()
        logger.error("Unexpected error, unit rolled back", exc_info=True)
        raise
    finally:
        session.info[_DEPTH_KEY] = depth


def compare_and_set_status(model, pk, expected, new_status, *, field="status", **values):
    """Move ``model[pk].<field>`` from ``expected`` to ``new_status`` atomically.

    ``expected`` may be a single value or a collection of values.
    Extra column values are written in the same UPDATE.

    Raises:
        NotFoundError: no row with that primary key.
        ConflictError: the row exists but is not in an expected status.
    """
    allowed = [expected] if isinstance(expected, str) else list(expected)
    column = getattr(model, field)
    stmt = (
        update(model)
        .where(model.id == pk, column.in_(allowed))
        .values({field: new_status, **values})
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    obj = db.session.get(model, pk)
    if obj is not None:
        db.session.refresh(obj)
    if result.rowcount == 1:
        return obj

    if obj is None:
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    current = getattr(obj, field)
    raise ConflictError(
        f"{model.__name__} {field} must be {' or '.join(allowed)} (currently {current})",
        resource=model.__name__,
        current_status=current,
    )
