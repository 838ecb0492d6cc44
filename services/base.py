from contextlib import contextmanager
import logging

from services.results import OutcomeError


class BaseService:
    """
    Common plumbing for the settlement services.

    Services hold the (scoped) SQLAlchemy session and their collaborators;
    they keep no per-request state, so one instance serves every request.
    """

    def __init__(self, session):
        self.db = session
        self.logger = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def transaction(self):
        """
        Usage:
            with self.transaction():
                ...  # every write in here commits or rolls back together
        """
        try:
            yield self.db
            self.db.commit()
        except OutcomeError as e:
            # expected business outcome, not a failure worth an error log
            self.logger.info("Transaction rolled back: %s", e.kind.value)
            self.db.rollback()
            raise
        except Exception as e:
            self.logger.error("Transaction failed: %s", e)
            self.db.rollback()
            raise
