# runtime/energy_manager.py

import importlib
import logging
from collections import Counter
from typing import Iterable

from core.exceptions import ConfigurationError

logger = logging.getLogger("elastic_projection")

# Every energy model must offer both the array kernel and the per-element path.
REQUIRED_FUNCTIONS = (
    "calculate_energy",
    "compute_energy_and_gradient_array",
    "element_forces",
)


class EnergyModuleManager:
    """Import strain energy models from ``modules.energy`` by name."""

    def __init__(self, module_names: Iterable[str]):
        self.modules = {}
        counted = Counter(module_names)
        for name, count in counted.items():
            if count > 1:
                logger.warning(
                    "Energy model '%s' specified %d times; using only one instance.",
                    name,
                    count,
                )

            try:
                module = importlib.import_module(f"modules.energy.{name}")
            except ImportError as exc:
                logger.error("Could not load energy model '%s': %s", name, exc)
                raise ConfigurationError(
                    f"Unknown energy model '{name}'", key="energy_model"
                ) from exc

            missing = [fn for fn in REQUIRED_FUNCTIONS if not hasattr(module, fn)]
            if missing:
                raise ConfigurationError(
                    f"Energy model '{name}' does not define {', '.join(missing)}",
                    key="energy_model",
                )
            self.modules[name] = module
            logger.debug("Loaded energy model: %s", name)

    def get_module(self, mod):
        """
        Retrieve a loaded energy model by name.
        """
        if mod in self.modules:
            return self.modules[mod]
        raise KeyError(f"Energy model '{mod}' not found.")
