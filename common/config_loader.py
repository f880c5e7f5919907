# =============================================================================
# 模块: common/config_loader.py
# 功能: YAML 配置文件加载工具模块
# 架构角色: 作为配置基础设施层，为 settings.py 与日志初始化提供 YAML 读取能力。
#   支持两级配置合并机制：
#   - 项目默认配置：/config/defaults.yaml
#   - 部署本地覆盖：/config/local.yaml（可选，不纳入版本管理）
#   本地覆盖以深度合并的方式作用于默认配置。
# =============================================================================
"""YAML configuration loader for PaperPulse.

Configuration precedence (highest to lowest):
1. Environment variables (runtime override)
2. .env file (secrets)
3. /config/local.yaml (deployment overrides)
4. /config/defaults.yaml (project defaults)
5. Hardcoded Python defaults (fallback)
"""

from __future__ import annotations

import logging
import logging.config
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

# 项目根目录：从 common/ 目录向上一级
BASE_DIR = Path(__file__).resolve().parents[1]
CONFIG_DIR = BASE_DIR / "config"

# 模块级配置缓存；None 表示尚未加载
_config_cache: Optional[Dict[str, Any]] = None


def load_yaml(file_path: Path) -> Dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    文件不存在或为空时返回空字典。

    Args:
        file_path: Path to the YAML file.

    Returns:
        Dictionary containing the YAML contents, or empty dict if file doesn't exist.
    """
    if not file_path.exists():
        return {}
    with open(file_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries. Override values take precedence.

    对于嵌套字典递归合并，非字典值由 override 直接替换。

    示例:
        base = {"fetch": {"timeout": 30, "enabled": True}}
        override = {"fetch": {"timeout": 10}}
        结果 = {"fetch": {"timeout": 10, "enabled": True}}
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def get_config(config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """Load and cache defaults.yaml merged with the optional local.yaml.

    Args:
        config_dir: Alternative config directory (bypasses the cache).

    Returns:
        Merged configuration dictionary.
    """
    global _config_cache
    if config_dir is not None:
        return deep_merge(
            load_yaml(config_dir / "defaults.yaml"),
            load_yaml(config_dir / "local.yaml"),
        )
    if _config_cache is None:
        _config_cache = deep_merge(
            load_yaml(CONFIG_DIR / "defaults.yaml"),
            load_yaml(CONFIG_DIR / "local.yaml"),
        )
    return _config_cache


def setup_logging_from_yaml(
    config_path: Optional[Path] = None,
    log_level_override: Optional[str] = None,
    log_file_override: Optional[Path] = None,
) -> None:
    """Configure logging from YAML with optional overrides.

    从 YAML 配置文件初始化 Python 日志系统。
    如果 YAML 配置文件不存在，回退到 basicConfig 基础配置。

    Args:
        config_path: Path to logging YAML config. Defaults to /config/logging.yaml.
        log_level_override: Override the root logger level.
        log_file_override: Override the file handler's filename.
    """
    config_path = config_path or CONFIG_DIR / "logging.yaml"
    config = load_yaml(config_path)

    if not config:
        logging.basicConfig(
            level=log_level_override or "INFO",
            format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        )
        return

    if log_level_override:
        config.setdefault("root", {})["level"] = log_level_override.upper()

    if log_file_override:
        if "handlers" in config and "file" in config["handlers"]:
            config["handlers"]["file"]["filename"] = str(log_file_override)

    # 文件型 handler：相对路径基于项目根目录解析，并确保目录存在
    for handler in config.get("handlers", {}).values():
        if "filename" in handler:
            filename = Path(handler["filename"])
            if not filename.is_absolute():
                filename = BASE_DIR / filename
            filename.parent.mkdir(parents=True, exist_ok=True)
            handler["filename"] = str(filename)

    logging.config.dictConfig(config)


def clear_config_cache() -> None:
    """Clear the configuration cache. Useful for testing."""
    global _config_cache
    _config_cache = None
