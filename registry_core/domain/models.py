from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict

class ModuleVersion(BaseModel):
    """
    One published version of a package.
    The manifest is kept as an open document so unknown fields survive round-trips.
    """
    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Row id of the version record")
    name: str = Field(..., description="Package name, possibly scoped (@scope/name)")
    version: str = Field(..., description="Semver string")
    author: Optional[str] = Field(None, description="Username of whoever published this version")
    description: str = Field("", description="Denormalized copy of package.description")
    package: Optional[Dict[str, Any]] = Field(
        None,
        description="Decoded manifest, or None when the stored payload could not be decoded"
    )
    dist_tarball: Optional[str] = None
    dist_shasum: Optional[str] = None
    dist_size: Optional[int] = None
    publish_time: Optional[datetime] = None
    gmt_create: Optional[datetime] = None
    gmt_modified: Optional[datetime] = None

class ModuleInput(BaseModel):
    """Payload accepted by ModuleStore.save."""
    name: str
    version: str
    author: Optional[str] = None
    package: Dict[str, Any] = Field(default_factory=dict)
    description: Optional[str] = None
    publish_time: Optional[datetime] = None

class SaveResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    gmt_modified: datetime

class ModuleSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: Optional[str] = None

class Tag(BaseModel):
    """A dist-tag pointer, e.g. latest -> 1.2.3."""
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    tag: str
    module_id: int
    version: str
    gmt_modified: Optional[datetime] = None

class TagAssignment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    module_id: int
    gmt_modified: datetime

class DependencyEdge(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str = Field(..., description="Dependent package")
    dependency: str = Field(..., description="Package it depends on")

class ModuleKeyword(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    keyword: str
    description: Optional[str] = None

class ModuleStar(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    user: str

class MaintainerInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    email: Optional[str] = None

class MaintainerUpdate(BaseModel):
    """Membership delta produced by replacing a maintainer list."""
    model_config = ConfigDict(frozen=True)

    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)

class AuthorizationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_maintainer: bool
    maintainers: List[str] = Field(default_factory=list)

class SearchResult(BaseModel):
    """
    Search output. Keyword hits and name hits are kept apart so callers can
    present "found by keyword" and "found by name" separately.
    """
    model_config = ConfigDict(frozen=True)

    keyword_matches: List[ModuleSummary] = Field(default_factory=list)
    search_matches: List[ModuleSummary] = Field(default_factory=list)
