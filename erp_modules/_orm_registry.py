"""
Import every ORM model so ``Base.metadata`` is complete.

Called by ``erp_kernel.db.engine.create_tables`` and by anything else that
needs all tables and immutability rules declared (CLI, tests).
"""


def import_all_orm_models() -> None:
    import erp_kernel.services.sequence_service  # noqa: F401
    import erp_modules.billing.orm  # noqa: F401
    import erp_modules.catalog.orm  # noqa: F401
    import erp_modules.fulfillment.orm  # noqa: F401
    import erp_modules.inventory.orm  # noqa: F401
