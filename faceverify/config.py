"""
Configuration Management Module

This module provides a centralized way to load and access configuration settings
from the config.yaml file. It uses the Singleton pattern to ensure only one
configuration instance exists throughout the application.

Usage:
    from faceverify.config import get_config
    config = get_config()
    capture_config = config["capture"]
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

# Store the singleton instance (module-level variable)
_config_instance: Optional[Dict[str, Any]] = None


def get_project_root() -> Path:
    """
    Find the project root directory.

    The project root is identified by the presence of config.yaml file.
    This function walks up the directory tree from this file's location
    until it finds config.yaml.

    Returns:
        Path: The absolute path to the project root directory.

    Raises:
        FileNotFoundError: If config.yaml cannot be found in any parent directory.
    """
    current_dir = Path(__file__).resolve().parent

    while current_dir != current_dir.parent:
        config_path = current_dir / "config.yaml"
        if config_path.exists():
            return current_dir
        current_dir = current_dir.parent

    raise FileNotFoundError(
        "Could not find config.yaml in any parent directory. "
        "Make sure you're running from within the project directory."
    )


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Optional path to the config file.
                     If not provided, uses the default config.yaml in project root.

    Returns:
        Dict containing all configuration values.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the config file contains invalid YAML.
    """
    if config_path is None:
        config_path = get_project_root() / "config.yaml"
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    logger.debug(f"Loaded configuration from {config_path}: sections={list(config.keys())}")
    return config


def get_config(reload: bool = False) -> Dict[str, Any]:
    """
    Get the configuration singleton.

    Args:
        reload: If True, forces reloading the configuration from disk.
                Useful for testing or if the config file has changed.

    Returns:
        Dict containing all configuration values.

    Example:
        config = get_config()
        good_threshold = config["capture"]["quality_good_threshold"]
    """
    global _config_instance

    if _config_instance is None or reload:
        _config_instance = load_config()

    return _config_instance


def get_section(section_name: str) -> Dict[str, Any]:
    """
    Get a specific section from the configuration.

    Args:
        section_name: Name of the configuration section
                      (e.g., "capture", "quality", "matching")

    Returns:
        Dict containing the section's configuration values.

    Raises:
        KeyError: If the section doesn't exist in the configuration.
    """
    config = get_config()

    if section_name not in config:
        raise KeyError(
            f"Configuration section '{section_name}' not found. "
            f"Available sections: {list(config.keys())}"
        )

    return config[section_name]


# Convenience functions for commonly used configuration sections
def get_capture_config() -> Dict[str, Any]:
    """Get capture session configuration."""
    return get_section("capture")


def get_quality_config() -> Dict[str, Any]:
    """Get image quality scoring configuration."""
    return get_section("quality")


def get_heuristic_detector_config() -> Dict[str, Any]:
    """Get heuristic face pattern test configuration."""
    return get_section("heuristic_detector")


def get_fingerprint_config() -> Dict[str, Any]:
    """Get fingerprint extraction configuration."""
    return get_section("fingerprint")


def get_matching_config() -> Dict[str, Any]:
    """Get matching threshold configuration."""
    return get_section("matching")


def get_model_config() -> Dict[str, Any]:
    """Get external face model configuration."""
    return get_section("model")


def get_api_config() -> Dict[str, Any]:
    """Get verification API configuration."""
    return get_section("api")


def get_optional_section(section_name: str) -> Dict[str, Any]:
    """
    Get a configuration section, or an empty dict if it is unavailable.

    Components fall back to their built-in defaults when the project has
    no config.yaml (e.g. when installed as a library).
    """
    try:
        return get_section(section_name)
    except (FileNotFoundError, KeyError) as e:
        logger.debug(f"Using defaults for '{section_name}': {e}")
        return {}


if __name__ == "__main__":
    print("Testing configuration loader...")

    config = get_config()
    print(f"Successfully loaded config with sections: {list(config.keys())}")

    capture = get_capture_config()
    print(f"Strategy: {capture['strategy']}")
    print(f"Good quality threshold: {capture['quality_good_threshold']}")
