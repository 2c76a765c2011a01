"""Sources package.

Provides source records and project configuration
loading.
"""

from .models import (
    SourceType,
    Source,
    GitHubSourceData,
    MotifSourceData,
    WebsiteSourceData,
    UploadSourceData,
    FileData,
    FileRecord
)
from .loader import ProjectConfig, ProjectLoader, load_project_file

__all__ = [
    'SourceType',
    'Source',
    'GitHubSourceData',
    'MotifSourceData',
    'WebsiteSourceData',
    'UploadSourceData',
    'FileData',
    'FileRecord',
    'ProjectConfig',
    'ProjectLoader',
    'load_project_file'
]
