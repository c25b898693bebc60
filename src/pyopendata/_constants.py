"""Internal constants shared across the library."""

PORTAL_URL = "https://open.data.gov.sa"
API_BASE_URL = f"{PORTAL_URL}/data/api"
CATALOG_BASE_URL = f"{PORTAL_URL}/api"
CKAN_BASE_URL = f"{PORTAL_URL}/api/3/action"

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

#: Canonical resource format tag for tabular downloads (compared case-sensitively).
TABULAR_FORMAT = "CSV"

#: Phrases of the upstream anti-bot interstitial. Leading HTML tags are detected separately.
BLOCK_PAGE_MARKERS: tuple[str, ...] = (
    "Request Rejected",
    "The requested URL was rejected",
)

DATASET_CACHE_PREFIX = "dataset_cache_"
LISTING_CACHE_PREFIX = "datasets_list_"

DATASET_CACHE_TTL = 24 * 3600.0
LISTING_CACHE_TTL = 6 * 3600.0

# ------------------------------------------------------------------
# Datasets tracked when no explicit id list is configured
# ------------------------------------------------------------------

DEFAULT_DATASET_IDS: tuple[str, ...] = (
    "1e7e8621-fd39-42fb-b78f-3c50b0be4f2e",
    "5948497a-d84f-45a4-944c-50c59cff9629",
    "ad218919-2014-4917-a85d-d4ec1a43c050",
    "b748181e-4c9f-4521-8144-1f48f7cb945c",
    "c8ae6fea-4f68-436a-accc-2d83d14f0cd4",
    "2a265aaf-fd1d-4aab-808e-74d8a3088594",
    "66e8cee3-0495-4d78-bbad-00654e63aec8",
    "2746ab4f-0700-425f-9b5c-618944a8cada",
    "2c2a3203-0671-4692-b030-628001b80d46",
    "38ef9473-f5f4-4fbf-83a7-1a4bf0c7ccec",
    "3d44d00e-5aa6-4937-981d-bd0548606109",
    "cc856462-5d59-481c-8ceb-29007c2b5525",
    "40fd0d4e-76e1-4fb2-afd3-42a56698e5af",
    "308744fe-60db-47f5-9ddb-691a51506a09",
    "68098400-520c-48d5-8d26-bd8855bf7572",
    "0e0d56bc-c8fe-44cd-bbc9-9fc3f6651799",
    "099d92d7-050f-494a-ba11-175e358bc121",
    "7645e1f8-aed3-4038-9f74-090d015a13d6",
    "2b13bef4-8c0d-40d3-b071-00bd089fb610",
    "8fc9e19e-ed3a-4c8a-a768-58d9d04814f5",
    "79998ff6-63b6-436e-9703-0430b440f3e6",
    "e54350f5-4121-4007-a7d8-1938373d0bd1",
    "e8ed3887-59a5-4504-8316-e9cece8f2249",
    "ba7b4224-da7d-4419-bbd3-1c6f586da49e",
    "932edccb-b985-4fd0-bca6-5badf9d14300",
    "c02f10db-06ef-4528-aabb-264f63d163c9",
    "6d54ae82-7736-4ccf-b662-31844233f5b5",
    "e6e5bd44-95d5-4381-98c0-fa2b8c938b8b",
    "b22e5e7c-2183-4115-bcd3-d6b955f24137",
    "db0596fb-ff37-41a3-b6f2-cf15d7b724a4",
    "0662ed73-d555-45e2-814a-898d368ab4ef",
    "9396bbd8-4283-4485-ac2a-c6743b74980c",
    "b6dc46f4-9de0-4039-82f5-b5db3897883d",
    "ea90c3d0-cb8d-4c34-9892-ea0aa35ad9a3",
    "c3e2b0a2-06b2-4a73-bb77-1e57fcb35365",
    "3a3ea3cc-dbf3-4d69-99db-a5c2f0165ae6",
    "4b7b45cb-e8b2-4864-a80d-6d9110865b99",
    "526237a0-c089-4003-939f-05dd827da9d1",
    "43f82be8-7298-48fb-840d-eb176e51abc9",
    "4a64b777-1db8-482d-b99a-5a0a76836d36",
    "30243301-2f50-4134-a967-a24dd5d9dfbf",
    "6dfb5c0b-0557-485d-be98-a39ea9b2e387",
    "40892c84-c7ec-48c9-b89c-da6caf178e96",
)
