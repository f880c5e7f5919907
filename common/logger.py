# =============================================================================
# 模块: common/logger.py
# 功能: 日志系统初始化的便捷封装
# 架构角色: main.py 与 scripts/ 下的命令行工具在启动时调用 setup_logging，
#   实际的 YAML 加载逻辑委托给 config_loader.setup_logging_from_yaml。
# =============================================================================
"""Logging setup for PaperPulse.

Uses YAML-based configuration from /config/logging.yaml with optional
runtime overrides for log level and log file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from common.config_loader import setup_logging_from_yaml


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    verbose: bool = False,
) -> None:
    """Setup logging using YAML config with optional overrides.

    Args:
        log_level: Override the root logger level (default: INFO).
        log_file: Override the file handler's filename (optional).
        verbose: Force DEBUG regardless of ``log_level`` (CLI ``-v``).
    """
    setup_logging_from_yaml(
        log_level_override="DEBUG" if verbose else log_level,
        log_file_override=log_file,
    )
