"""部署编排模块"""

from .artifacts import ArtifactFetcher, replace_directory, unpack_archive
from .backup import BackupManager, hash_directory, read_version
from .orchestrator import DeploymentOrchestrator
from .prechecks import Prechecker, PrecheckReport

__all__ = [
    'ArtifactFetcher',
    'BackupManager',
    'DeploymentOrchestrator',
    'Prechecker',
    'PrecheckReport',
    'hash_directory',
    'read_version',
    'replace_directory',
    'unpack_archive'
]
