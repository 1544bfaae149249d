# src/mindflow_console/environments.py

import enum
from typing import Optional
from urllib.parse import urlparse


class Environment(str, enum.Enum):
    LOCAL = "local"
    DEV = "dev"
    STAGING = "staging"

    @property
    def label(self) -> str:
        return f"Use {self.name.capitalize()} API"


# Published API documentation pages; only their origin is used.
_DEV_DOCS_URL = "https://mindflowai-dev-g8g3eqd9avgscgc5.centralindia-01.azurewebsites.net/swagger/index.html"
_STAGING_DOCS_URL = "https://mindflowai-ducfdehcc0cqaebq.centralindia-01.azurewebsites.net/swagger/index.html"


def sanitize_docs_url(url: str) -> str:
    """
    Reduces a URL (typically a Swagger page) to its origin: scheme, host and port,
    without a trailing slash. Values that do not parse as an absolute URL only
    lose their trailing slash.
    """
    try:
        parsed = urlparse(url)
        # Accessing .port validates it
        parsed.port
    except ValueError:
        return url.rstrip("/")
    if not parsed.scheme or not parsed.netloc:
        return url.rstrip("/")
    return f"{parsed.scheme}://{parsed.netloc}"


_BASE_URLS = {
    Environment.LOCAL: "https://localhost:7046",
    Environment.DEV: sanitize_docs_url(_DEV_DOCS_URL),
    Environment.STAGING: sanitize_docs_url(_STAGING_DOCS_URL),
}


def base_url_for(environment) -> str:
    """Canonical base URL for an environment (enum member or its name)."""
    return _BASE_URLS[Environment(environment)]


def environment_for(base_url: Optional[str]) -> Optional[Environment]:
    if not base_url:
        return None
    for environment, url in _BASE_URLS.items():
        if url == base_url:
            return environment
    return None
