from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# Reference schedule tables are owned by the external GTFS import process;
# they are described here for querying only and never created by this service.
reference_metadata = MetaData()
