import sqlalchemy.orm as orm

from feeder.database.engine import engine

SessionType = orm.Session

# factory for SessionType with presupplied parameters.
# objects returned by FeedRepository are used after the session closes:
Session = orm.sessionmaker(bind=engine, expire_on_commit=False)
