"""
core/errors.py -- Exception taxonomy for the EquipCare maintenance engine.

Every error carries a stable machine-readable `code` so the CLI and the API
can report it without inspecting the exception class. Batch operations catch
the per-item errors (everything except StoreUnavailable) and report them as
ItemFailure entries; StoreUnavailable always propagates to the trigger.

Layer rule: core/ is the kernel. This module imports nothing from the project.
"""


class EquipCareError(Exception):
    """Base class for all domain errors."""

    code = "equipcare_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidPolicy(EquipCareError):
    """Maintenance frequency is unusable (count <= 0 or unknown unit)."""

    code = "invalid_policy"


class AssetNotFound(EquipCareError):
    code = "asset_not_found"

    def __init__(self, asset_id: int) -> None:
        super().__init__(f"Asset {asset_id} not found")
        self.asset_id = asset_id


class DuplicateActiveSchedule(EquipCareError):
    """An active ScheduledWork already exists for the (asset, kind) pair."""

    code = "duplicate_active_schedule"

    def __init__(self, asset_id: int, kind: str) -> None:
        super().__init__(f"Asset {asset_id} already has active {kind} work")
        self.asset_id = asset_id
        self.kind = kind


class RuleNotFound(EquipCareError):
    code = "rule_not_found"

    def __init__(self, entity_type: str) -> None:
        super().__init__(f"No active escalation rules for entity type '{entity_type}'")
        self.entity_type = entity_type


class WorkNotFound(EquipCareError):
    code = "work_not_found"

    def __init__(self, work_id: int) -> None:
        super().__init__(f"Scheduled work {work_id} not found or no longer active")
        self.work_id = work_id


class StoreUnavailable(EquipCareError):
    """Persistence failure. Fatal for the current operation; the trigger retries."""

    code = "store_unavailable"
