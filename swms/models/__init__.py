# Importing the module registers tables with Base for create_all()
from .core import (  # noqa: F401
    # Enums
    MaterialCategory, WarehouseType, VendorType, TxStatus, Stage,
    SettlementStatus, Direction, AnomalyType, Severity, AnomalyStatus,

    # Reference registry
    Site, Warehouse, MaterialType, Vendor,

    # Ledger
    Flow, InboundTransaction, OutboundTransaction,
    InventorySnapshot, InventoryAdjustment,

    # Timeline
    ProcessEvent,

    # Settlements
    Settlement, SettlementItem, SettlementDocument,

    # Weighbridge, generation log & anomalies
    Weighing, Anomaly, Generation,
)

__all__ = [
    # Enums
    "MaterialCategory", "WarehouseType", "VendorType", "TxStatus", "Stage",
    "SettlementStatus", "Direction", "AnomalyType", "Severity", "AnomalyStatus",

    # Reference registry
    "Site", "Warehouse", "MaterialType", "Vendor",

    # Ledger
    "Flow", "InboundTransaction", "OutboundTransaction",
    "InventorySnapshot", "InventoryAdjustment",

    # Timeline
    "ProcessEvent",

    # Settlements
    "Settlement", "SettlementItem", "SettlementDocument",

    # Weighbridge, generation log & anomalies
    "Weighing", "Anomaly", "Generation",
]
