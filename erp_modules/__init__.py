"""
Module: erp_modules
Responsibility:
    Domain modules of the engine: catalog, inventory (stock ledger and stock
    documents), fulfillment (source orders, quantity ledger, goods receipts
    and waybills) and billing (invoices and payments).

Architecture position:
    Modules -- stateful domain services over the ORM.
    May import erp_kernel and erp_engines.
    MUST NOT import erp_services.

Dependency order between modules:
    catalog <- inventory <- fulfillment <- billing
"""
