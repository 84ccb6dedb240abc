"""
Switchboard Capability Loader

Auto-discovers and imports capability modules from switchboard/tools. Importing
a module runs its ``@capability`` decorators and populates the registry.

Usage:
    from switchboard.core.loader import load_capabilities

    # Call at startup before routing any query
    load_capabilities()
"""

import importlib
import logging
from pathlib import Path
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

TOOLS_PACKAGE = "switchboard.tools"


def _discover_modules(package_path: Path, package_name: str) -> List[str]:
    """Discover all Python modules in a package directory.

    Args:
        package_path: Path to the package directory
        package_name: Fully qualified package name (e.g., 'switchboard.tools')

    Returns:
        List of fully qualified module names
    """
    modules = []

    if not package_path.exists():
        logger.warning(f"Package path does not exist: {package_path}")
        return modules

    for py_file in sorted(package_path.glob("*.py")):
        if py_file.name.startswith("_"):
            continue
        modules.append(f"{package_name}.{py_file.stem}")

    return modules


def _import_module_safe(module_name: str) -> Tuple[bool, str]:
    """Import a module, reporting failure instead of raising.

    Args:
        module_name: Fully qualified module name

    Returns:
        Tuple of (success: bool, message: str)
    """
    try:
        importlib.import_module(module_name)
        return True, f"Loaded: {module_name}"
    except Exception as e:
        error_msg = f"Failed to load {module_name}: {e}"
        logger.error(error_msg)
        return False, error_msg


def load_capabilities(only_modules: Optional[List[str]] = None) -> List[str]:
    """Load capability modules from switchboard/tools.

    Args:
        only_modules: Optional list of module names to load (e.g., ['gitlab'])

    Returns:
        List of successfully loaded module names
    """
    tools_path = Path(__file__).parent.parent / "tools"
    modules = _discover_modules(tools_path, TOOLS_PACKAGE)

    if only_modules:
        modules = [m for m in modules if m.rsplit(".", 1)[-1] in only_modules]
        logger.info(f"Filtered to {len(modules)} modules: {only_modules}")

    loaded = []
    for module_name in modules:
        success, message = _import_module_safe(module_name)
        if success:
            loaded.append(module_name)
            logger.debug(message)
        else:
            logger.warning(message)

    from .registry import get_tool_registry
    logger.info(f"Loaded {len(get_tool_registry())} capabilities from {len(loaded)} modules")
    return loaded
