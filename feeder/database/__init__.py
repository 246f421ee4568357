"""
database access.

NOTE! importing feeder.database.session creates the engine
(and requires DATABASE_URL); models and repository do not.
"""
