import json
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import unquote

from registry_core.domain.exceptions import ManifestDecodeException
from registry_core.domain.models import (
    DependencyEdge, ModuleKeyword, ModuleStar, ModuleSummary, ModuleVersion, Tag,
)

# URL-encoded form of '{"'. Manifests written by older releases were
# JSON-serialized and then percent-encoded; newer ones are plain JSON.
LEGACY_MANIFEST_PREFIX = '%7B%22'


def encode_manifest(package: Dict[str, Any]) -> str:
    return json.dumps(package, ensure_ascii=False)


def decode_manifest(raw: str) -> Dict[str, Any]:
    """
    Parses a stored manifest, accepting both the legacy percent-encoded
    format and plain JSON.

    Raises:
        ManifestDecodeException: If the payload is not valid JSON or its
            legacy percent-encoding does not decode to UTF-8.
    """
    if raw.startswith(LEGACY_MANIFEST_PREFIX):
        try:
            raw = unquote(raw, errors='strict')
        except UnicodeDecodeError as e:
            raise ManifestDecodeException(str(e)) from e
    try:
        package = json.loads(raw)
    except ValueError as e:
        raise ManifestDecodeException(str(e)) from e
    if not isinstance(package, dict):
        raise ManifestDecodeException(f"Manifest must be a JSON object, got {type(package).__name__}.")
    return package


def normalize_keywords(keywords: Any) -> List[str]:
    """Accepts a single string or a list of strings; trims and drops empty entries."""
    if isinstance(keywords, str):
        keywords = [keywords]
    if not isinstance(keywords, (list, tuple)):
        return []
    words = []
    for word in keywords:
        if isinstance(word, str):
            word = word.strip()
            if word:
                words.append(word)
    return words


class ModuleRowTranslator:
    """
    Anti-corruption layer that translates raw store rows into domain models.
    """

    @staticmethod
    def to_module(row: Mapping[str, Any]) -> ModuleVersion:
        """
        Transforms a module row into a ModuleVersion.

        The manifest is decoded here; callers that need to tolerate bad
        payloads should catch ManifestDecodeException and use
        to_module_without_manifest instead.
        """
        raw_package = row.get('package')
        package: Optional[Dict[str, Any]] = None
        if raw_package:
            package = decode_manifest(raw_package)
        return ModuleRowTranslator._build_module(row, package)

    @staticmethod
    def to_module_without_manifest(row: Mapping[str, Any]) -> ModuleVersion:
        return ModuleRowTranslator._build_module(row, None)

    @staticmethod
    def _build_module(row: Mapping[str, Any], package: Optional[Dict[str, Any]]) -> ModuleVersion:
        return ModuleVersion(
            id=row['id'],
            name=row['name'],
            version=row['version'],
            author=row.get('author'),
            description=row.get('description') or '',
            package=package,
            dist_tarball=row.get('dist_tarball'),
            dist_shasum=row.get('dist_shasum'),
            dist_size=row.get('dist_size'),
            publish_time=row.get('publish_time'),
            gmt_create=row.get('gmt_create'),
            gmt_modified=row.get('gmt_modified'),
        )

    @staticmethod
    def to_summary(row: Mapping[str, Any]) -> ModuleSummary:
        return ModuleSummary(name=row['name'], description=row.get('description'))

    @staticmethod
    def to_tag(row: Mapping[str, Any]) -> Tag:
        return Tag(
            id=row['id'],
            name=row['name'],
            tag=row['tag'],
            module_id=row['module_id'],
            version=row['version'],
            gmt_modified=row.get('gmt_modified'),
        )

    @staticmethod
    def to_dependency(row: Mapping[str, Any]) -> DependencyEdge:
        return DependencyEdge(id=row['id'], name=row['name'], dependency=row['dependency'])

    @staticmethod
    def to_keyword(row: Mapping[str, Any]) -> ModuleKeyword:
        return ModuleKeyword(
            id=row['id'],
            name=row['name'],
            keyword=row['keyword'],
            description=row.get('description'),
        )

    @staticmethod
    def to_star(row: Mapping[str, Any]) -> ModuleStar:
        return ModuleStar(id=row['id'], name=row['name'], user=row['user'])
