"""Persisted sync state models.

Older state files used camelCase keys (``titleAr``, ``updatedAt``,
``syncedAt``, ``file``, ``lastSync``); every field accepts them so an
existing file keeps its history after an upgrade.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field


class DatasetRecordState(BaseModel):
    """What is known locally about one dataset."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str
    title_primary: str = Field(default="", validation_alias=AliasChoices("title_primary", "titlePrimary", "titleAr"))
    title_secondary: str = Field(
        default="",
        validation_alias=AliasChoices("title_secondary", "titleSecondary", "titleEn"),
    )
    provider_name: str = Field(
        default="",
        validation_alias=AliasChoices("provider_name", "providerName", "provider", "providerNameAr"),
    )
    category: str = ""
    update_frequency: str = Field(default="", validation_alias=AliasChoices("update_frequency", "updateFrequency"))
    last_known_update: str | None = Field(
        default=None,
        validation_alias=AliasChoices("last_known_update", "lastKnownUpdate", "updatedAt"),
    )
    """Opaque version token of the last successful materialization."""
    last_sync_time: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("last_sync_time", "lastSyncTime", "syncedAt"),
    )
    local_resource_ref: str | None = Field(
        default=None,
        validation_alias=AliasChoices("local_resource_ref", "localResourceRef", "file"),
    )
    """File name under the data directory; set only after a successful write."""
    format: str = "CSV"
    last_error: str | None = Field(default=None, validation_alias=AliasChoices("last_error", "lastError"))
    last_error_time: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("last_error_time", "lastErrorTime"),
    )


class SyncState(BaseModel):
    """Singleton aggregate persisted by :class:`~pyopendata.state.store.SyncStateStore`."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    datasets: dict[str, DatasetRecordState] = Field(default_factory=dict)
    last_full_sync: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("last_full_sync", "lastFullSync", "lastSync"),
    )
    last_discovery: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("last_discovery", "lastDiscovery"),
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_datasets(self) -> int:
        return len(self.datasets)
