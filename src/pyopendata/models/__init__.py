"""Data models for open data portal responses."""

from pyopendata.models._base import OpenDataBaseModel
from pyopendata.models.dataset import DatasetMetadata, DatasetResolution, DatasetResource
from pyopendata.models.listing import DatasetListing
from pyopendata.models.payload import FetchedPayload, PayloadSource

__all__ = [
    "DatasetListing",
    "DatasetMetadata",
    "DatasetResolution",
    "DatasetResource",
    "FetchedPayload",
    "OpenDataBaseModel",
    "PayloadSource",
]
