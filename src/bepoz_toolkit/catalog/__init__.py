"""Remote tool catalog: manifest model, HTTP fetcher and manifest source."""

from bepoz_toolkit.catalog.fetcher import (
    ArtifactFetcher,
    FetchError,
    HttpArtifactFetcher,
)
from bepoz_toolkit.catalog.manifest import (
    CategoryDefinition,
    Manifest,
    ManifestError,
    ModuleDefinition,
    ParameterError,
    ToolDefinition,
    ToolParameter,
    coerce_parameters,
    parse_manifest,
)
from bepoz_toolkit.catalog.source import CatalogSource

__all__ = [
    "ArtifactFetcher",
    "CatalogSource",
    "CategoryDefinition",
    "FetchError",
    "HttpArtifactFetcher",
    "Manifest",
    "ManifestError",
    "ModuleDefinition",
    "ParameterError",
    "ToolDefinition",
    "ToolParameter",
    "coerce_parameters",
    "parse_manifest",
]
