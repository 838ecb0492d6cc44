from sqlalchemy.orm.util import identity_key


class BaseRepository:

    def __init__(self, db):
        self.db = db

    def _execute_guarded(self, model, pk, stmt) -> bool:
        """
        Run a conditional UPDATE and report whether it hit exactly one row.

        The statement runs without ORM synchronization so rowcount stays
        reliable; a copy of the row already loaded in the session is expired
        so the next attribute access re-reads the committed state.
        """
        matched = self.db.execute(stmt.execution_options(synchronize_session=False)).rowcount == 1
        cached = self.db.identity_map.get(identity_key(model, pk))
        if cached is not None:
            self.db.expire(cached)
        return matched
