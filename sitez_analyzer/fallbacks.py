from __future__ import annotations

from .models import MetadataRecord
from .urls import hostname_of


class FallbackProvider:
    """Default title/description/image used when a page declares none.

    Only the orchestrator calls this, after extraction, so extracted records
    never contain invented values.
    """

    def __init__(self, title: str | None = None, description: str | None = None, image: str | None = None):
        self.title = title
        self.description = description
        self.image = image

    def fallback_title(self, url: str) -> str:
        if self.title:
            return self.title
        host = hostname_of(url)
        if host.startswith("www."):
            host = host[4:]
        name = host.split(".")[0] if host else ""
        if name:
            return f"{name.capitalize()} - Website Analysis"
        return "Website Analysis Report"

    def fallback_description(self, url: str) -> str:
        if self.description:
            return self.description
        host = hostname_of(url)
        if host:
            return (
                f"Detailed analysis of {host} including metadata extraction, contact details, "
                "social profiles and security evaluation."
            )
        return "Website analysis including metadata extraction, security assessment and content quality analysis."

    def fallback_image(self, metadata: MetadataRecord) -> str | None:
        return self.image or metadata.favicon

    def apply(self, metadata: MetadataRecord, url: str) -> MetadataRecord:
        """Return a copy of ``metadata`` with empty display fields backfilled."""
        update: dict = {}
        used: list[str] = []
        if not metadata.title:
            update["title"] = self.fallback_title(url)
            used.append("title")
        if not metadata.description:
            update["description"] = self.fallback_description(url)
            used.append("description")
        if not metadata.image:
            image = self.fallback_image(metadata)
            if image:
                update["image"] = image
                used.append("image")
        if not used:
            return metadata
        update["fallbacks_used"] = metadata.fallbacks_used + used
        return metadata.model_copy(update=update)
