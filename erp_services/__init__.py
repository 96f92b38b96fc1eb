"""
Module: erp_services
Responsibility:
    The engine's outer surface: request structs validated at the boundary,
    read-only query endpoints, transactional commands and the operator CLI.

Architecture position:
    Services -- top layer.  May import erp_kernel, erp_engines, erp_modules
    and erp_config.  Nothing imports erp_services.
"""

from erp_services.commands import CommandResult, ErpCommands
from erp_services.queries import ErpQueries

__all__ = ["CommandResult", "ErpCommands", "ErpQueries"]
