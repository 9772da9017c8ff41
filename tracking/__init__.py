#Marks tracking as a package.
#Re-exports the public API (estimator math, location store, tracker, scheduler, ETA feed)
#so other modules import from tracking without knowing internal file names.
#No business logic.

from .estimator import (
    DistanceEtaEstimator,
    EtaEstimate,
    current_anchor,
    distance_km,
    eta_minutes,
    format_distance,
    format_eta,
)
from .eta_feed import EtaFeed
from .location_store import InMemoryLocationStore, LocationStore
from .location_tracker import LocationTracker, PositionSource
from .scheduler import ErrandScheduler, PeriodicJob

__all__ = [
    "DistanceEtaEstimator",
    "ErrandScheduler",
    "EtaEstimate",
    "EtaFeed",
    "InMemoryLocationStore",
    "LocationStore",
    "LocationTracker",
    "PeriodicJob",
    "PositionSource",
    "current_anchor",
    "distance_km",
    "eta_minutes",
    "format_distance",
    "format_eta",
]
