"""外部命令执行模块

恢复动作（重启、清缓存、扩缩容）和部署阶段（停止、启动、安装依赖、切流）
都通过 CommandRunner 执行外部命令，每次执行都带有超时约束。
"""

import asyncio
import logging
import os
import shlex
import time
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from ..utils.exceptions import CommandError, ErrorCode


@dataclass
class CommandResult:
    """命令执行结果"""
    command: str
    exit_code: int
    stdout: str
    stderr: str
    duration: float

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class CommandRunner:
    """异步命令执行器"""

    def __init__(self, default_timeout: float = 60.0):
        """
        Args:
            default_timeout: 未指定超时时使用的默认超时（秒）
        """
        self.default_timeout = default_timeout
        self.logger = logging.getLogger(__name__)

    async def run(self, command: Sequence[str], timeout: Optional[float] = None,
                  cwd: Optional[str] = None,
                  env: Optional[Dict[str, str]] = None) -> CommandResult:
        """
        执行命令并返回退出码与输出

        Args:
            command: 命令及参数
            timeout: 超时时间（秒）
            cwd: 工作目录
            env: 追加的环境变量

        Returns:
            CommandResult: 执行结果（非零退出码同样返回）

        Raises:
            CommandError: 命令不存在、无法启动或执行超时
        """
        if not command:
            raise CommandError("命令不能为空")

        timeout = timeout or self.default_timeout
        command_str = shlex.join(command)
        process_env = None
        if env:
            process_env = os.environ.copy()
            process_env.update(env)

        self.logger.info(f"执行命令: {command_str}")
        start_time = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=process_env
            )
        except FileNotFoundError as e:
            raise CommandError(f"命令不存在: {command[0]}", ErrorCode.COMMAND_NOT_FOUND,
                               command=command_str, cause=e, recoverable=False)
        except OSError as e:
            raise CommandError(f"命令启动失败: {e}", command=command_str, cause=e)

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise CommandError(f"命令执行超时 ({timeout}s): {command_str}",
                               ErrorCode.COMMAND_TIMEOUT, command=command_str)
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        result = CommandResult(
            command=command_str,
            exit_code=process.returncode,
            stdout=stdout.decode('utf-8', errors='replace'),
            stderr=stderr.decode('utf-8', errors='replace'),
            duration=time.monotonic() - start_time
        )

        if result.succeeded:
            self.logger.debug(f"命令执行成功 ({result.duration:.2f}s): {command_str}")
        else:
            self.logger.warning(
                f"命令退出码 {result.exit_code} ({result.duration:.2f}s): {command_str}, "
                f"stderr: {result.stderr[:200]}")

        return result

    async def run_checked(self, command: Sequence[str], timeout: Optional[float] = None,
                          cwd: Optional[str] = None,
                          env: Optional[Dict[str, str]] = None) -> CommandResult:
        """执行命令，非零退出码时抛出 CommandError"""
        result = await self.run(command, timeout=timeout, cwd=cwd, env=env)
        if not result.succeeded:
            raise CommandError(
                f"命令执行失败，退出码 {result.exit_code}: {result.command}",
                command=result.command,
                exit_code=result.exit_code,
                stderr=result.stderr
            )
        return result
