"""Dataset metadata and resource models.

The portal exposes the same concepts through three JSON shapes (the
dataset-by-id API, the catalog API and the CKAN action API). Each field
lists every known upstream spelling so one model normalizes all of them.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from pyopendata.ingestion.normalize import first_text, safe_str
from pyopendata.models._base import OpenDataBaseModel


class DatasetResource(OpenDataBaseModel):
    """One downloadable artifact belonging to a dataset."""

    id: str = Field(default="", validation_alias=AliasChoices("id", "resourceID", "resourceId"))
    name: str = Field(default="", validation_alias=AliasChoices("name", "titleAr", "titleEn", "title"))
    format: str = Field(default="", validation_alias=AliasChoices("format", "fileFormat", "file_format"))
    """Format tag as sent upstream (e.g. ``"CSV"``). Not case-normalized."""
    download_url: str = Field(default="", validation_alias=AliasChoices("downloadUrl", "download_url", "url"))
    columns: list[str] = Field(default_factory=list, validation_alias=AliasChoices("columns", "fields"))

    @field_validator("id", "name", "format", "download_url", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> str:
        return safe_str(value) or ""

    @field_validator("columns", mode="before")
    @classmethod
    def _flatten_columns(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        names: list[str] = []
        for item in value:
            name = first_text(item, "name", "nameEn", "nameAr", "id")
            if name:
                names.append(name)
        return names


class DatasetMetadata(OpenDataBaseModel):
    """Canonical dataset metadata, independent of the upstream shape."""

    id: str = Field(default="", validation_alias=AliasChoices("id", "datasetID", "datasetId", "dataset_id"))
    title_ar: str = Field(default="", validation_alias=AliasChoices("titleAr", "title_ar", "title"))
    """Primary (Arabic) display title."""
    title_en: str = Field(default="", validation_alias=AliasChoices("titleEn", "title_en"))
    """Secondary (English) display title."""
    provider_name: str = Field(
        default="",
        validation_alias=AliasChoices(
            "providerNameAr",
            "providerName",
            "providerNameEn",
            "publisherNameAr",
            "organization",
        ),
    )
    updated_at: str | None = Field(
        default=None,
        validation_alias=AliasChoices("updatedAt", "updated_at", "lastUpdated", "metadata_modified"),
    )
    """Opaque version token. Compared for equality only, never parsed."""
    update_frequency: str = Field(default="", validation_alias=AliasChoices("updateFrequency", "frequency"))
    category: str = Field(default="", validation_alias=AliasChoices("category", "categoryName", "groups"))
    description_ar: str = Field(
        default="",
        validation_alias=AliasChoices("descriptionAr", "description_ar", "notes", "description"),
    )
    resources: list[DatasetResource] = Field(default_factory=list, validation_alias=AliasChoices("resources"))

    @field_validator("provider_name", mode="before")
    @classmethod
    def _flatten_provider(cls, value: Any) -> str:
        return first_text(value, "title", "titleAr", "nameAr", "name") or ""

    @field_validator("category", mode="before")
    @classmethod
    def _flatten_category(cls, value: Any) -> str:
        return first_text(value, "title", "titleAr", "nameAr", "name") or ""

    @field_validator("id", "title_ar", "title_en", "update_frequency", "description_ar", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> str:
        return safe_str(value) or ""

    @field_validator("updated_at", mode="before")
    @classmethod
    def _coerce_token(cls, value: Any) -> str | None:
        # Numeric epochs are kept verbatim as text so equality stays exact.
        return safe_str(value)

    @field_validator("resources", mode="before")
    @classmethod
    def _drop_non_dict_resources(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    @property
    def display_title(self) -> str:
        return self.title_ar or self.title_en or self.id


class DatasetResolution(BaseModel):
    """Metadata plus the resource list resolved for one dataset id."""

    model_config = ConfigDict(frozen=True)

    metadata: DatasetMetadata
    resources: list[DatasetResource] = Field(default_factory=list)
