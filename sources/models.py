"""Source and file records."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union


class SourceType(str, Enum):
    """Closed set of source variants."""
    GITHUB = "github"
    MOTIF = "motif"
    WEBSITE = "website"
    FILE_UPLOAD = "file-upload"
    API_UPLOAD = "api-upload"


@dataclass(frozen=True)
class GitHubSourceData:
    url: str
    branch: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'url': self.url}
        if self.branch:
            data['branch'] = self.branch
        return data


@dataclass(frozen=True)
class MotifSourceData:
    project_domain: str

    def to_dict(self) -> Dict[str, Any]:
        return {'projectDomain': self.project_domain}


@dataclass(frozen=True)
class WebsiteSourceData:
    url: str

    def to_dict(self) -> Dict[str, Any]:
        return {'url': self.url}


@dataclass(frozen=True)
class UploadSourceData:
    """File and API uploads carry no payload."""

    def to_dict(self) -> Dict[str, Any]:
        return {}


SourceData = Union[GitHubSourceData, MotifSourceData, WebsiteSourceData, UploadSourceData]


def parse_source_data(source_type: SourceType, data: Optional[Dict[str, Any]]) -> SourceData:
    """Build the typed payload of a source from its wire form."""
    data = data or {}
    if source_type == SourceType.GITHUB:
        if not data.get('url'):
            raise ValueError("GitHub source requires a url")
        return GitHubSourceData(url=data['url'], branch=data.get('branch') or None)
    if source_type == SourceType.MOTIF:
        domain = data.get('projectDomain') or data.get('project_domain')
        if not domain:
            raise ValueError("Motif source requires a projectDomain")
        return MotifSourceData(project_domain=domain)
    if source_type == SourceType.WEBSITE:
        if not data.get('url'):
            raise ValueError("Website source requires a url")
        return WebsiteSourceData(url=data['url'])
    return UploadSourceData()


@dataclass(frozen=True)
class Source:
    """A content source owned by a project. Immutable once created."""
    id: str
    type: SourceType
    data: SourceData = field(default_factory=UploadSourceData)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Source':
        source_type = SourceType(data['type'])
        return cls(
            id=str(data['id']),
            type=source_type,
            data=parse_source_data(source_type, data.get('data'))
        )

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'type': self.type.value, 'data': self.data.to_dict()}


@dataclass(frozen=True)
class FileData:
    """A unit of content submitted to the embedding processor."""
    path: str
    name: str
    content: str


@dataclass(frozen=True)
class FileRecord:
    """Last successfully ingested version of a file, keyed by (source_id, path)."""
    source_id: str
    path: str
    name: str
    content: str
    checksum: str
