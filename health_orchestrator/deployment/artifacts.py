"""部署制品的获取、解包与替换"""

import asyncio
import os
import shutil
import tarfile
import zipfile
from pathlib import Path
from urllib.parse import urlparse

import aiohttp

from ..utils.error_handler import retry_on_error, RetryStrategy
from ..utils.exceptions import ArtifactError
from ..utils.log_manager import get_logger

DOWNLOAD_CHUNK_SIZE = 64 * 1024
TAR_SUFFIXES = ('.tar.gz', '.tgz', '.tar')


def render_artifact_source(template: str, version: str) -> str:
    """替换制品地址中的 {version} 占位符"""
    return template.replace('{version}', version)


def replace_directory(source: Path, target: Path):
    """用 source 的内容整体替换 target 目录

    先复制到 target 旁的临时目录，再删除旧目录并原子重命名，
    避免留下新旧文件混合的目录。
    """
    staging = target.with_name(f".{target.name}.incoming")
    if staging.exists():
        shutil.rmtree(staging)
    shutil.copytree(source, staging, symlinks=True)
    if target.exists():
        shutil.rmtree(target)
    os.replace(staging, target)


def _ensure_within(root: Path, member_name: str):
    destination = (root / member_name).resolve()
    if destination != root.resolve() and root.resolve() not in destination.parents:
        raise ArtifactError(f"制品包含越界路径: {member_name}")


def unpack_archive(archive: Path, destination: Path) -> Path:
    """
    解包 tar/tar.gz/zip 制品

    Returns:
        Path: 解包后的根目录（只有一个顶层目录时返回该目录）

    Raises:
        ArtifactError: 格式不支持或内容无效
    """
    destination.mkdir(parents=True, exist_ok=True)
    name = archive.name.lower()

    try:
        if name.endswith(TAR_SUFFIXES):
            with tarfile.open(archive) as tar:
                for member in tar.getmembers():
                    _ensure_within(destination, member.name)
                if hasattr(tarfile, 'data_filter'):
                    tar.extractall(destination, filter='data')
                else:
                    tar.extractall(destination)
        elif name.endswith('.zip'):
            with zipfile.ZipFile(archive) as zf:
                for member_name in zf.namelist():
                    _ensure_within(destination, member_name)
                zf.extractall(destination)
        else:
            raise ArtifactError(f"不支持的制品格式: {archive.name}")
    except (tarfile.TarError, zipfile.BadZipFile, OSError) as e:
        raise ArtifactError(f"制品解包失败 {archive.name}: {e}", cause=e)

    entries = list(destination.iterdir())
    if len(entries) == 1 and entries[0].is_dir():
        return entries[0]
    return destination


class ArtifactFetcher:
    """将目标版本制品获取到临时目录，返回可直接替换应用目录的内容根目录"""

    def __init__(self, download_timeout: float = 300.0):
        self.download_timeout = download_timeout
        self.logger = get_logger('deployment.artifact')

    async def fetch(self, source_template: str, version: str, staging_dir: str) -> Path:
        """
        获取指定版本的制品

        Args:
            source_template: 制品地址模板（URL 或本地路径，包含 {version}）
            version: 目标版本
            staging_dir: 本次部署的临时目录

        Returns:
            Path: 制品内容根目录

        Raises:
            ArtifactError: 下载、复制或解包失败
        """
        source = render_artifact_source(source_template, version)
        staging = Path(staging_dir)
        staging.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"获取制品: {source}")

        if urlparse(source).scheme in ('http', 'https'):
            archive = staging / (Path(urlparse(source).path).name or 'artifact.download')
            try:
                await self._download(source, archive)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise ArtifactError(f"制品下载失败 {source}: {e}", cause=e)
            return await asyncio.to_thread(self._prepare_file, archive, staging)

        local_path = Path(source)
        if local_path.is_dir():
            target = staging / 'artifact'
            try:
                await asyncio.to_thread(shutil.copytree, local_path, target, symlinks=True)
            except OSError as e:
                raise ArtifactError(f"复制制品目录失败 {source}: {e}", cause=e)
            return target
        if local_path.is_file():
            return await asyncio.to_thread(self._prepare_file, local_path, staging)

        raise ArtifactError(f"制品不存在: {source}")

    def _prepare_file(self, archive: Path, staging: Path) -> Path:
        root = unpack_archive(archive, staging / 'artifact')
        if not any(root.iterdir()):
            raise ArtifactError(f"制品内容为空: {archive.name}")
        return root

    @retry_on_error(max_attempts=3, base_delay=1.0,
                    strategy=RetryStrategy.EXPONENTIAL_BACKOFF,
                    retryable_errors=[aiohttp.ClientError, asyncio.TimeoutError])
    async def _download(self, url: str, destination: Path):
        timeout = aiohttp.ClientTimeout(total=self.download_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url) as response:
                if response.status >= 500:
                    response.raise_for_status()
                if response.status != 200:
                    raise ArtifactError(f"制品下载返回状态码 {response.status}: {url}")

                size = 0
                with open(destination, 'wb') as f:
                    async for chunk in response.content.iter_chunked(DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
                        size += len(chunk)

        self.logger.info(f"制品下载完成: {url} ({size} 字节)")
