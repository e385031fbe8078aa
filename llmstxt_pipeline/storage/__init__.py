"""
SQLAlchemy-backed storage: subjects, content-addressed store, snapshots and
the summary cache.
"""
