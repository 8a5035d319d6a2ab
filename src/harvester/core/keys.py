"""Shared record keys to avoid magic strings across harvester modules."""

from __future__ import annotations

# Flattened / metadata record keys
K_ID = "id"
K_UUID = "uuid"
K_NAME = "name"
K_VERSION = "version"
K_CATEGORY = "category"
K_SUBCATEGORY = "subcategory"
K_SUB_SUBCATEGORY = "sub_subcategory"
K_LIGHT = "light"
K_DARK = "dark"
K_SYSTEM = "system"
K_META = "meta"

# Merged tree leaf keys
K_SNIPPET = "snippet"
K_CODE = "code"
K_PREVIEW = "preview"

# Outcome log keys
K_URL = "url"
K_PATH = "path"
K_STATUS = "status"
K_ERROR = "error"

MODES = (K_LIGHT, K_DARK, K_SYSTEM)
