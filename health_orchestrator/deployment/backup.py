"""回滚点管理

部署前将应用目录与配置文件完整复制到唯一命名的备份目录，并持久化清单；
回滚时按清单整体恢复，保证恢复结果与快照完全一致。
"""

import hashlib
import json
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, List, Optional

from .artifacts import replace_directory
from ..models.deployment import DeploymentSpec, RollbackPoint
from ..utils.exceptions import BackupError
from ..utils.log_manager import get_logger

MANIFEST_NAME = 'manifest.json'
APP_SNAPSHOT_DIR = 'app'
CONFIG_SNAPSHOT_DIR = 'config'


def hash_directory(path: str) -> str:
    """按相对路径排序计算目录内容的 SHA-256"""
    root = Path(path)
    hasher = hashlib.sha256()

    for file_path in sorted(root.rglob('*')):
        if file_path.is_file():
            hasher.update(file_path.relative_to(root).as_posix().encode())
            with open(file_path, 'rb') as f:
                for chunk in iter(lambda: f.read(8192), b''):
                    hasher.update(chunk)

    return hasher.hexdigest()


def read_version(app_dir: str, version_file: str = 'VERSION') -> Optional[str]:
    """读取应用目录中的版本文件，不存在时返回 None"""
    version_path = Path(app_dir) / version_file
    try:
        return version_path.read_text(encoding='utf-8').strip() or None
    except FileNotFoundError:
        return None


def _fsync_directory(path: Path):
    # Windows 上无法对目录执行 fsync
    if os.name != 'posix':
        return
    fd = os.open(str(path), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class BackupManager:
    """回滚点的创建、恢复与清理"""

    def __init__(self):
        self.logger = get_logger('deployment.backup')

    def create_rollback_point(self, spec: DeploymentSpec, deployment_id: str) -> RollbackPoint:
        """
        为当前版本创建回滚点

        清单写入并刷盘后才返回，此后才允许执行破坏性步骤。

        Raises:
            BackupError: 应用目录不存在或复制失败
        """
        app_dir = Path(spec.app_dir)
        if not app_dir.is_dir():
            raise BackupError(f"应用目录不存在: {app_dir}", service_name=spec.service_name)

        timestamp = datetime.now()
        name = f"{spec.service_name}-{timestamp:%Y%m%d%H%M%S%f}-{deployment_id.rsplit('-', 1)[-1]}"
        location = Path(spec.backup_dir) / name

        try:
            location.mkdir(parents=True, exist_ok=False)
        except FileExistsError:
            raise BackupError(f"备份目录已存在: {location}", service_name=spec.service_name)
        except OSError as e:
            raise BackupError(f"无法创建备份目录 {location}: {e}",
                              service_name=spec.service_name, cause=e)

        try:
            artifact_hash = hash_directory(str(app_dir))
            shutil.copytree(app_dir, location / APP_SNAPSHOT_DIR, symlinks=True)

            config_entries = self._snapshot_config_files(spec, location)
            previous_version = read_version(str(app_dir), spec.version_file)

            copied_hash = hash_directory(str(location / APP_SNAPSHOT_DIR))
            if copied_hash != artifact_hash:
                raise BackupError(f"备份内容校验失败: {location}", service_name=spec.service_name)

            manifest = {
                'service_name': spec.service_name,
                'deployment_id': deployment_id,
                'created_at': timestamp.isoformat(),
                'app_dir': str(app_dir),
                'previous_version': previous_version,
                'artifact_hash': artifact_hash,
                'config_files': config_entries,
            }
            self._write_manifest(location, manifest)

        except BackupError:
            shutil.rmtree(location, ignore_errors=True)
            raise
        except OSError as e:
            shutil.rmtree(location, ignore_errors=True)
            raise BackupError(f"创建回滚点失败: {e}", service_name=spec.service_name, cause=e)

        point = RollbackPoint(
            timestamp=timestamp,
            backup_location=str(location),
            previous_version=previous_version,
            config_snapshot_refs=tuple(entry['source'] for entry in config_entries),
            artifact_hash=artifact_hash,
        )
        self.logger.info(
            f"服务 {spec.service_name} 回滚点已创建: {location} "
            f"(版本: {previous_version}, 哈希: {artifact_hash[:12]})")
        return point

    def _snapshot_config_files(self, spec: DeploymentSpec, location: Path) -> List[Dict[str, str]]:
        entries = []
        if not spec.config_files:
            return entries

        config_dir = location / CONFIG_SNAPSHOT_DIR
        config_dir.mkdir()
        for index, source in enumerate(spec.config_files):
            source_path = Path(source)
            if not source_path.is_file():
                raise BackupError(f"配置文件不存在: {source}", service_name=spec.service_name)
            snapshot_name = f"{index:03d}_{source_path.name}"
            shutil.copy2(source_path, config_dir / snapshot_name)
            entries.append({'source': str(source_path), 'snapshot': snapshot_name})
        return entries

    def _write_manifest(self, location: Path, manifest: Dict[str, Any]):
        tmp_path = location / f"{MANIFEST_NAME}.tmp"
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(manifest, f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, location / MANIFEST_NAME)
        _fsync_directory(location)

    def load_manifest(self, point: RollbackPoint) -> Dict[str, Any]:
        """
        读取回滚点清单

        Raises:
            BackupError: 清单不存在或格式错误
        """
        manifest_path = Path(point.backup_location) / MANIFEST_NAME
        try:
            with open(manifest_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise BackupError(f"回滚点清单不可用 {manifest_path}: {e}", cause=e)

    def restore(self, spec: DeploymentSpec, point: RollbackPoint) -> str:
        """
        将应用目录与配置文件整体恢复为回滚点快照

        Returns:
            str: 恢复后应用目录的哈希

        Raises:
            BackupError: 快照缺失、复制失败或恢复后校验不一致
        """
        manifest = self.load_manifest(point)
        location = Path(point.backup_location)
        snapshot_dir = location / APP_SNAPSHOT_DIR
        if not snapshot_dir.is_dir():
            raise BackupError(f"回滚点缺少应用快照: {snapshot_dir}", service_name=spec.service_name)

        app_dir = Path(spec.app_dir)

        try:
            replace_directory(snapshot_dir, app_dir)

            for entry in manifest.get('config_files', []):
                target = Path(entry['source'])
                tmp_target = target.with_name(f".{target.name}.restore")
                shutil.copy2(location / CONFIG_SNAPSHOT_DIR / entry['snapshot'], tmp_target)
                os.replace(tmp_target, target)

        except OSError as e:
            raise BackupError(f"恢复回滚点失败: {e}", service_name=spec.service_name, cause=e)

        restored_hash = hash_directory(str(app_dir))
        if point.artifact_hash and restored_hash != point.artifact_hash:
            raise BackupError(
                f"恢复后内容校验失败: 期望 {point.artifact_hash[:12]}, 实际 {restored_hash[:12]}",
                service_name=spec.service_name)

        self.logger.info(f"服务 {spec.service_name} 已恢复到回滚点 {location.name} "
                         f"(版本: {point.previous_version})")
        return restored_hash

    def list_backups(self, spec: DeploymentSpec) -> List[Path]:
        """列出服务的全部备份目录（按创建时间从新到旧）"""
        backup_root = Path(spec.backup_dir)
        if not backup_root.is_dir():
            return []

        prefix = f"{spec.service_name}-"
        backups = [
            path for path in backup_root.iterdir()
            if path.is_dir() and path.name.startswith(prefix)
            and path.name[len(prefix):len(prefix) + 1].isdigit()
            and (path / MANIFEST_NAME).is_file()
        ]
        # 目录名中的时间戳保证字典序即时间序
        return sorted(backups, key=lambda p: p.name, reverse=True)

    def prune(self, spec: DeploymentSpec, keep: Optional[int] = None) -> List[str]:
        """
        删除超出保留数量的旧备份，保留最新的 keep 个

        Returns:
            List[str]: 被删除的备份目录
        """
        keep = spec.backup_retention if keep is None else keep
        if keep < 1:
            raise ValueError("至少需要保留一个备份")

        removed = []
        for path in self.list_backups(spec)[keep:]:
            shutil.rmtree(path)
            removed.append(str(path))
            self.logger.info(f"已删除旧备份: {path}")
        return removed
