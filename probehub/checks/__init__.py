"""Check plugins and the registry that wires them into schedule entries."""

from .config import check_config_from_env
from .registry import CHECK_FACTORIES, CheckDef, load_check_defs, setup_checks
