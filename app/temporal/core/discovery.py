"""Import every workflow and activity module so their decorators register them."""

import importlib
import pkgutil

from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

DISCOVERY_PACKAGES = (
    "app.temporal.shared.activities",
    "app.temporal.shared.workflows",
)


def discover_all() -> None:
    for package_name in DISCOVERY_PACKAGES:
        package = importlib.import_module(package_name)
        for module_info in pkgutil.iter_modules(package.__path__):
            importlib.import_module(f"{package_name}.{module_info.name}")
            LOGGER.debug(f"Discovered {package_name}.{module_info.name}")
