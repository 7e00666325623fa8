#!/usr/bin/env python3
"""
健康监控与部署编排系统主应用程序入口

集成所有组件，实现应用程序启动和优雅关闭，
添加信号处理和异常捕获。
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from typing import Optional, Dict, Any

from health_orchestrator.deployment.orchestrator import DeploymentOrchestrator
from health_orchestrator.models.deployment import DeploymentPhase
from health_orchestrator.models.health_check import NotificationEvent, EventType, Severity
from health_orchestrator.notifications.dispatcher import NotificationDispatcher
from health_orchestrator.services.command_runner import CommandRunner
from health_orchestrator.services.config_manager import ConfigManager
from health_orchestrator.services.health_monitor import HealthMonitor
from health_orchestrator.services.recovery_executor import RecoveryActionExecutor
from health_orchestrator.utils.exceptions import OrchestratorError, ConfigError
from health_orchestrator.utils.log_manager import log_manager, get_logger

# 版本信息
__version__ = "1.0.0"


class OrchestratorApp:
    """健康监控与部署编排主应用程序类"""

    def __init__(self, config_path: str, log_overrides: Optional[Dict[str, Any]] = None):
        """初始化应用程序

        Args:
            config_path: 配置文件路径
            log_overrides: 命令行指定的日志配置，覆盖配置文件
        """
        self.config_path = config_path
        self.log_overrides = log_overrides or {}
        self.logger: Optional[logging.Logger] = None
        self.is_running = False
        self.shutdown_event = asyncio.Event()

        # 核心组件
        self.config_manager: Optional[ConfigManager] = None
        self.dispatcher: Optional[NotificationDispatcher] = None
        self.command_runner: Optional[CommandRunner] = None
        self.executor: Optional[RecoveryActionExecutor] = None
        self.monitor: Optional[HealthMonitor] = None
        self.orchestrator: Optional[DeploymentOrchestrator] = None

    async def initialize(self):
        """初始化应用程序组件"""
        try:
            self.config_manager = ConfigManager(self.config_path)
            self.config_manager.load_config()

            log_config = self.config_manager.get_log_config()
            log_config.update(self.log_overrides)
            log_manager.configure(log_config)
            self.logger = get_logger('main')
            self.logger.info("开始初始化健康监控与部署编排系统")

            global_config = self.config_manager.get_global_config()

            self.dispatcher = NotificationDispatcher(
                self.config_manager.build_notifiers(),
                sink_timeout=float(global_config['notification_timeout']))
            self.command_runner = CommandRunner()
            self.executor = RecoveryActionExecutor(self.command_runner, self.dispatcher)

            self.monitor = HealthMonitor(
                executor=self.executor,
                dispatcher=self.dispatcher,
                check_interval=float(global_config['check_interval']),
                max_concurrent_checks=int(global_config['max_concurrent_checks']))
            for spec in self.config_manager.build_service_specs():
                self.monitor.register_service(spec)

            self.orchestrator = DeploymentOrchestrator(self.command_runner, self.dispatcher)

            self.logger.info("应用程序组件初始化完成")

        except Exception as e:
            if self.logger:
                self.logger.error(f"应用程序初始化失败: {e}",
                                  exc_info=not isinstance(e, OrchestratorError))
            else:
                print(f"应用程序初始化失败: {e}", file=sys.stderr)
            raise

    async def start(self):
        """启动健康监控并等待关闭信号"""
        if self.is_running:
            self.logger.warning("应用程序已经在运行")
            return

        try:
            self.is_running = True
            self.logger.info("启动健康监控与部署编排系统")
            await self.monitor.start()
            await self.shutdown_event.wait()
        finally:
            await self.stop()

    async def stop(self):
        """停止应用程序"""
        if not self.is_running:
            return

        self.logger.info("正在停止健康监控与部署编排系统...")
        self.is_running = False

        if self.monitor:
            await self.monitor.stop()

        self.logger.info("健康监控与部署编排系统已停止")
        log_manager.cleanup()

    def shutdown(self):
        """触发应用程序关闭"""
        if self.logger:
            self.logger.info("收到关闭信号")
        self.shutdown_event.set()

    def get_status(self) -> Dict[str, Any]:
        """获取应用程序状态

        Returns:
            应用程序状态信息
        """
        status: Dict[str, Any] = {
            'is_running': self.is_running,
            'config_path': self.config_path,
        }

        if self.monitor:
            status['services'] = {
                name: snapshot.to_dict() for name, snapshot in self.monitor.get_status().items()
            }
            status['monitor_stats'] = self.monitor.get_stats()

        if self.orchestrator:
            status['active_deployments'] = self.orchestrator.get_active_deployments()
            status['deployment_history'] = [
                result.to_dict() for result in self.orchestrator.get_history(limit=10)
            ]

        if self.dispatcher:
            status['notification_stats'] = self.dispatcher.get_stats()

        return status


# 全局应用程序实例
app: Optional[OrchestratorApp] = None


def signal_handler(signum, frame):
    """信号处理器"""
    signal_name = signal.Signals(signum).name
    print(f"\n收到信号 {signal_name} ({signum})")

    if app:
        app.shutdown()
    else:
        print("应用程序未初始化，直接退出")
        sys.exit(0)


def create_argument_parser() -> argparse.ArgumentParser:
    """创建命令行参数解析器"""
    parser = argparse.ArgumentParser(
        prog='health-orchestrator',
        description='健康监控与部署编排系统 - 持续探测服务健康、自动恢复，并安全地执行部署与回滚',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例用法:
  %(prog)s config.yaml                                  # 启动持续监控
  %(prog)s --validate config.yaml                       # 验证配置文件格式
  %(prog)s --check-once config.yaml                     # 执行一次健康检查
  %(prog)s --test-notifications config.yaml             # 测试通知渠道
  %(prog)s --deploy api --version 1.4.2 config.yaml     # 部署指定版本
  %(prog)s --status config.yaml                         # 输出状态 JSON

配置文件格式请参考 config/example.yaml
        """
    )

    # 位置参数：配置文件路径
    parser.add_argument(
        'config_file',
        nargs='?',
        help='YAML配置文件路径'
    )

    parser.add_argument(
        '-V', '--program-version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        '--validate',
        action='store_true',
        help='验证配置文件格式并退出'
    )

    parser.add_argument(
        '--test-notifications',
        action='store_true',
        help='向所有通知渠道发送测试消息并退出'
    )

    parser.add_argument(
        '--check-once',
        action='store_true',
        help='执行一次健康检查后退出'
    )

    parser.add_argument(
        '--status',
        action='store_true',
        help='执行一次健康检查并以 JSON 输出状态后退出'
    )

    parser.add_argument(
        '--deploy',
        metavar='SERVICE',
        help='部署指定服务（需要同时指定 --version）'
    )

    parser.add_argument(
        '--version',
        dest='target_version',
        metavar='VERSION',
        help='部署的目标版本'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='设置日志级别（覆盖配置文件设置）'
    )

    parser.add_argument(
        '--log-file',
        help='日志文件路径（覆盖配置文件设置）'
    )

    return parser


def validate_config_file(config_path: str) -> bool:
    """验证配置文件

    Args:
        config_path: 配置文件路径

    Returns:
        验证是否成功
    """
    try:
        print(f"正在验证配置文件: {config_path}")

        config_manager = ConfigManager(config_path)
        config_manager.load_config()

        # 构建一次全部对象，确保恢复动作、通知渠道和部署参数都有效
        specs = config_manager.build_service_specs()
        notifiers = config_manager.build_notifiers()
        deployments = [
            config_manager.build_deployment_spec(name)
            for name in config_manager.get_deployments_config()
        ]

        print("✅ 配置文件验证成功!")
        print(f"   - 服务数量: {len(specs)}")
        for spec in specs:
            actions = ', '.join(action.kind for action in spec.recovery_actions) or '无'
            print(f"     * {spec.name} ({spec.health_check_url}) 恢复动作: {actions}")
        print(f"   - 通知渠道数量: {len(notifiers)}")
        for notifier in notifiers:
            print(f"     * {notifier.name} ({notifier.notifier_type})")
        print(f"   - 部署配置数量: {len(deployments)}")
        for deployment in deployments:
            print(f"     * {deployment.service_name} -> {deployment.app_dir}")

        return True

    except ConfigError as e:
        print(f"❌ 配置文件验证失败: {e.message}")
        return False


async def run_notification_test(config_path: str) -> bool:
    """向所有通知渠道发送测试消息

    Args:
        config_path: 配置文件路径

    Returns:
        是否所有渠道都发送成功
    """
    print(f"正在测试通知渠道: {config_path}")

    test_app = OrchestratorApp(config_path)
    await test_app.initialize()

    event = NotificationEvent(
        event_type=EventType.TEST,
        service_name='test-service',
        status='TEST',
        severity=Severity.INFO,
        title='通知渠道测试',
        error_message='这是一条测试消息'
    )
    results = await test_app.dispatcher.notify(event)

    if not results:
        print("⚠️ 没有配置任何通知渠道")
        return False

    for result in results:
        mark = '✅' if result['success'] else '❌'
        detail = '' if result['success'] else f" - {result['error'] or '发送失败'}"
        print(f"   {mark} {result['notifier']}{detail}")

    return all(result['success'] for result in results)


async def check_once(config_path: str) -> bool:
    """执行一次健康检查

    Args:
        config_path: 配置文件路径

    Returns:
        是否所有服务都健康
    """
    print(f"正在执行健康检查: {config_path}")

    check_app = OrchestratorApp(config_path)
    await check_app.initialize()
    results = await check_app.monitor.run_cycle()

    print(f"✅ 健康检查完成，共检查 {len(results)} 个服务:")

    all_healthy = True
    for service_name, result in results.items():
        if result is None:
            print(f"   ❌ {service_name}: 检查失败")
            all_healthy = False
        elif result.healthy:
            print(f"   ✅ {service_name}: 健康 (响应时间: {result.latency:.3f}s)")
        else:
            print(f"   ❌ {service_name}: 不健康 - {result.error}")
            all_healthy = False

    return all_healthy


async def show_status(config_path: str) -> bool:
    """执行一次健康检查并输出状态 JSON"""
    status_app = OrchestratorApp(config_path)
    await status_app.initialize()
    await status_app.monitor.check_all_now()
    print(json.dumps(status_app.get_status(), ensure_ascii=False, indent=2, default=str))
    return True


async def run_deploy(config_path: str, service_name: str, version: str,
                     log_overrides: Optional[Dict[str, Any]] = None) -> int:
    """执行一次部署

    Returns:
        退出码：0 部署完成，2 已回滚，1 失败
    """
    deploy_app = OrchestratorApp(config_path, log_overrides)
    await deploy_app.initialize()
    spec = deploy_app.config_manager.build_deployment_spec(service_name)

    # 部署期间的中断信号转为阶段边界取消，由编排器回滚后正常结束
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, deploy_app.orchestrator.request_cancel, service_name)

    print(f"开始部署 {service_name} -> {version}")
    try:
        result = await deploy_app.orchestrator.deploy(spec, version)
    finally:
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(signum)

    phases = ' -> '.join(phase.value for phase, _ in result.phase_history)
    print(f"部署 {result.deployment_id} 结束: {result.final_phase.value} ({result.duration:.1f}s)")
    print(f"   阶段: {phases}")
    if result.error:
        print(f"   错误: {result.error}")
    if result.escalated:
        print("   ❗ 回滚失败，需要人工介入")

    if result.final_phase == DeploymentPhase.COMPLETED:
        return 0
    if result.final_phase == DeploymentPhase.ROLLED_BACK:
        return 2
    return 1


async def main():
    """主函数"""
    global app

    parser = create_argument_parser()
    args = parser.parse_args()

    if not args.config_file:
        parser.print_help()
        sys.exit(1)

    config_path = args.config_file

    if not os.path.exists(config_path):
        print(f"配置文件不存在: {config_path}", file=sys.stderr)
        sys.exit(1)

    log_overrides = {}
    if args.log_level:
        log_overrides['log_level'] = args.log_level
    if args.log_file:
        log_overrides['log_file'] = args.log_file

    try:
        # 处理特殊模式
        if args.validate:
            sys.exit(0 if validate_config_file(config_path) else 1)

        if args.test_notifications:
            sys.exit(0 if await run_notification_test(config_path) else 1)

        if args.check_once:
            sys.exit(0 if await check_once(config_path) else 1)

        if args.status:
            sys.exit(0 if await show_status(config_path) else 1)

        if args.deploy:
            if not args.target_version:
                parser.error('--deploy 需要同时指定 --version')
            sys.exit(await run_deploy(config_path, args.deploy, args.target_version,
                                      log_overrides))

        app = OrchestratorApp(config_path, log_overrides)

        signal.signal(signal.SIGINT, signal_handler)  # Ctrl+C
        signal.signal(signal.SIGTERM, signal_handler)  # 终止信号

        await app.initialize()

        print(f"健康监控与部署编排系统 v{__version__} 已启动")
        print(f"配置文件: {config_path}")
        print("按 Ctrl+C 停止程序")

        await app.start()

    except KeyboardInterrupt:
        print("\n用户中断程序")
    except ConfigError as e:
        print(f"配置错误: {e.message}", file=sys.stderr)
        sys.exit(1)
    except OrchestratorError as e:
        print(f"系统错误: {e.format_error()}", file=sys.stderr)
        sys.exit(1)
    finally:
        if app:
            await app.stop()


def cli():
    """命令行入口"""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
