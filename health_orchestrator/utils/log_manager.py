"""
日志管理器模块

统一管理编排系统的日志记录器。记录器按组件分层命名（probe.http、
tracker.<服务名>、notifier.email.<名称>、deployment.<服务名>），
全局级别之外可以按组件前缀单独设置级别，例如只把 deployment 调到 DEBUG。
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional, Dict, Any
from enum import Enum


class LogLevel(Enum):
    """日志级别枚举"""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL

    @classmethod
    def parse(cls, value: Any) -> 'LogLevel':
        """从字符串解析日志级别，大小写不敏感"""
        if isinstance(value, LogLevel):
            return value
        level_str = str(value).upper()
        if level_str not in cls.__members__:
            raise ValueError(f"无效的日志级别: {level_str}")
        return cls[level_str]


class LogManager:
    """
    日志管理器（单例）

    组件级别按最长前缀匹配：配置 {'tracker': 'WARNING', 'tracker.api': 'DEBUG'}
    时，tracker.api 使用 DEBUG，tracker.db 使用 WARNING，其余使用全局级别。
    """

    _instance: Optional['LogManager'] = None
    _initialized: bool = False

    def __new__(cls) -> 'LogManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._loggers: Dict[str, logging.Logger] = {}
        self._file_format = (
            '%(asctime)s - %(name)s - %(levelname)s - '
            '[%(filename)s:%(lineno)d] - %(message)s'
        )
        self._console_format = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'
        self._date_format = '%Y-%m-%d %H:%M:%S'

        self._log_level = LogLevel.INFO
        self._component_levels: Dict[str, LogLevel] = {}
        self._log_file: Optional[str] = None
        self._max_file_size = 10 * 1024 * 1024  # 10MB
        self._backup_count = 5
        self._enable_console = True

        # 所有记录器共用同一个文件处理器，避免多个 RotatingFileHandler 争抢轮转
        self._file_handler: Optional[logging.Handler] = None

        self._initialized = True

    def configure(self, config: Dict[str, Any]) -> None:
        """
        配置日志管理器，并对已创建的记录器重新装配处理器

        Args:
            config: 日志配置字典，可选键：
                - log_level: DEBUG / INFO / WARNING / ERROR / CRITICAL
                - component_levels: {组件前缀: 级别}
                - log_file: 日志文件路径，提供即启用文件输出
                - max_file_size: 单个日志文件最大字节数
                - backup_count: 轮转保留的文件数量
                - enable_console: 是否输出到控制台
        """
        if 'log_level' in config:
            self._log_level = LogLevel.parse(config['log_level'])

        if 'component_levels' in config:
            self._component_levels = {
                prefix: LogLevel.parse(level)
                for prefix, level in (config['component_levels'] or {}).items()
            }

        if config.get('log_file'):
            self._log_file = config['log_file']

        if 'max_file_size' in config:
            self._max_file_size = config['max_file_size']

        if 'backup_count' in config:
            self._backup_count = config['backup_count']

        if 'enable_console' in config:
            self._enable_console = config['enable_console']

        self._close_file_handler()
        for name, logger in self._loggers.items():
            self._attach_handlers(name, logger)

    def get_logger(self, name: str) -> logging.Logger:
        """
        获取指定名称的日志记录器

        Args:
            name: 日志记录器名称

        Returns:
            配置好的日志记录器实例
        """
        if name in self._loggers:
            return self._loggers[name]

        logger = logging.getLogger(name)
        self._attach_handlers(name, logger)
        logger.propagate = False

        self._loggers[name] = logger
        return logger

    def level_for(self, name: str) -> LogLevel:
        """按最长组件前缀匹配记录器的生效级别"""
        best_prefix = None
        for prefix in self._component_levels:
            if name == prefix or name.startswith(prefix + '.'):
                if best_prefix is None or len(prefix) > len(best_prefix):
                    best_prefix = prefix
        if best_prefix is None:
            return self._log_level
        return self._component_levels[best_prefix]

    def _attach_handlers(self, name: str, logger: logging.Logger) -> None:
        """按当前配置重建记录器的处理器"""
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            if handler is not self._file_handler:
                handler.close()

        # 处理器不设级别，过滤只在记录器上进行
        logger.setLevel(self.level_for(name).value)

        if self._enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(
                logging.Formatter(self._console_format, datefmt=self._date_format))
            logger.addHandler(console_handler)

        if self._log_file:
            logger.addHandler(self._get_file_handler())

    def _get_file_handler(self) -> logging.Handler:
        if self._file_handler is None:
            Path(self._log_file).parent.mkdir(parents=True, exist_ok=True)
            self._file_handler = logging.handlers.RotatingFileHandler(
                self._log_file,
                maxBytes=self._max_file_size,
                backupCount=self._backup_count,
                encoding='utf-8'
            )
            self._file_handler.setFormatter(
                logging.Formatter(self._file_format, datefmt=self._date_format))
        return self._file_handler

    def _close_file_handler(self) -> None:
        if self._file_handler is not None:
            for logger in self._loggers.values():
                logger.removeHandler(self._file_handler)
            self._file_handler.close()
            self._file_handler = None

    def set_level(self, level: LogLevel, component: Optional[str] = None) -> None:
        """
        设置日志级别

        Args:
            level: 日志级别
            component: 组件前缀；为空时设置全局级别
        """
        if component:
            self._component_levels[component] = level
        else:
            self._log_level = level

        for name, logger in self._loggers.items():
            logger.setLevel(self.level_for(name).value)

    def get_log_stats(self) -> Dict[str, Any]:
        """获取日志统计信息"""
        stats = {
            'loggers_count': len(self._loggers),
            'log_level': self._log_level.name,
            'component_levels': {
                prefix: level.name for prefix, level in self._component_levels.items()
            },
            'file_logging_enabled': self._log_file is not None,
            'console_logging_enabled': self._enable_console,
            'log_file': self._log_file,
            'max_file_size': self._max_file_size,
            'backup_count': self._backup_count
        }

        if self._log_file and os.path.exists(self._log_file):
            stats['current_log_size'] = os.path.getsize(self._log_file)

        return stats

    def cleanup(self) -> None:
        """关闭所有处理器并清空记录器缓存"""
        for logger in self._loggers.values():
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
                if handler is not self._file_handler:
                    handler.close()

        self._close_file_handler()
        self._loggers.clear()


# 全局日志管理器实例
log_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """获取日志记录器的便捷函数"""
    return log_manager.get_logger(name)


def configure_logging(config: Dict[str, Any]) -> None:
    """配置日志系统的便捷函数"""
    log_manager.configure(config)
