"""Registry of feed categories and their table handles.

Each category is an independent GTFS dataset with its own stops/routes/trips/
stop_times/shapes tables and, where the provider publishes one, a realtime
vehicle-position table. Table identifiers are only ever derived from
registered, validated category names.
"""

import logging
import re
from dataclasses import dataclass, field

from sqlalchemy import MetaData, Table, inspect

from transitplan.core.errors import ValidationError
from transitplan.models import tables
from transitplan.models.base import Base, reference_metadata

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[a-z][a-z0-9-]*$")

KIND_BUS = "bus"
KIND_RAIL = "rail"


@dataclass(frozen=True)
class FeedCategory:
    name: str  # e.g. "rapid-bus-kl"
    kind: str = KIND_BUS
    has_schedule: bool = True
    realtime_provider: str | None = None  # "prasarana", "ktmb"
    realtime_query_category: bool = True  # provider URL takes ?category=<name>

    @property
    def suffix(self) -> str:
        return self.name.replace("-", "_")

    @property
    def is_rail(self) -> bool:
        return self.kind == KIND_RAIL


@dataclass
class CategoryTables:
    stops: Table
    routes: Table
    trips: Table
    stop_times: Table
    shapes: Table
    vehicle_positions: Table | None = None


DEFAULT_CATEGORIES = (
    FeedCategory("rapid-bus-kl", KIND_BUS, realtime_provider="prasarana"),
    FeedCategory("rapid-bus-mrtfeeder", KIND_BUS, realtime_provider="prasarana"),
    FeedCategory("rapid-rail-kl", KIND_RAIL),
    FeedCategory("ktmb", KIND_RAIL, realtime_provider="ktmb", realtime_query_category=False),
)


@dataclass
class CategoryRegistry:
    """Maps each known category to its validated table handles."""

    categories: tuple[FeedCategory, ...] = DEFAULT_CATEGORIES
    schema: str | None = None
    reference: MetaData = field(default=reference_metadata)
    realtime: MetaData = field(default=Base.metadata)

    def __post_init__(self) -> None:
        self._by_name: dict[str, FeedCategory] = {}
        self._tables: dict[str, CategoryTables] = {}
        self._disabled: set[str] = set()
        for cat in self.categories:
            if not _NAME_RE.match(cat.name):
                raise ValidationError(f"Invalid feed category name: {cat.name!r}")
            if cat.name in self._by_name:
                raise ValidationError(f"Duplicate feed category: {cat.name!r}")
            self._by_name[cat.name] = cat
            self._tables[cat.name] = CategoryTables(
                stops=self._table(self.reference, tables.stops_table, cat.suffix),
                routes=self._table(self.reference, tables.routes_table, cat.suffix),
                trips=self._table(self.reference, tables.trips_table, cat.suffix),
                stop_times=self._table(self.reference, tables.stop_times_table, cat.suffix),
                shapes=self._table(self.reference, tables.shapes_table, cat.suffix),
                vehicle_positions=(
                    self._table(self.realtime, tables.vehicle_positions_table, cat.suffix)
                    if cat.realtime_provider else None
                ),
            )

    def _table(self, metadata: MetaData, factory, suffix: str) -> Table:
        name = factory.__name__.removesuffix("_table")
        key = f"{self.schema}.{name}_{suffix}" if self.schema else f"{name}_{suffix}"
        # Registries built twice over the same metadata share the table objects
        if key in metadata.tables:
            return metadata.tables[key]
        return factory(metadata, suffix, self.schema)

    def get(self, name: str) -> FeedCategory:
        """Look up a category by hyphenated or underscored name."""
        cat = self._by_name.get(name) or self._by_name.get(str(name).replace("_", "-"))
        if cat is None:
            raise ValidationError(
                f"Invalid category: {name}. Available: {', '.join(self._by_name)}"
            )
        return cat

    def tables(self, name: str) -> CategoryTables:
        return self._tables[self.get(name).name]

    def schedule_categories(self) -> list[FeedCategory]:
        return [c for c in self.categories if c.has_schedule and c.name not in self._disabled]

    def realtime_categories(self) -> list[FeedCategory]:
        return [c for c in self.categories if c.realtime_provider]

    def vehicle_table(self, name: str) -> Table:
        cat = self.get(name)
        table = self._tables[cat.name].vehicle_positions
        if table is None:
            raise ValidationError(f"Category {cat.name} has no realtime feed")
        return table

    def verify_schema(self, sync_conn) -> dict[str, list[str]]:
        """Check that every reference table exists; disable categories missing any.

        Runs inside ``AsyncConnection.run_sync``. Returns category -> missing tables.
        """
        existing = set(inspect(sync_conn).get_table_names(schema=self.schema))
        missing: dict[str, list[str]] = {}
        for cat in self.categories:
            if not cat.has_schedule:
                continue
            t = self._tables[cat.name]
            absent = [
                tbl.name for tbl in (t.stops, t.routes, t.trips, t.stop_times, t.shapes)
                if tbl.name not in existing
            ]
            if absent:
                missing[cat.name] = absent
                self._disabled.add(cat.name)
                logger.warning("Category %s disabled, missing tables: %s", cat.name, absent)
            else:
                self._disabled.discard(cat.name)
        return missing
