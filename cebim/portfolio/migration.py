"""
Migration Adapters

Asset records have gone through three shapes:

    v1  flat        {"id", "name", "type", "amount", "cost", "price"}
    v2  lot-based   {"id", "name", "type", "lots": [...], "sales": [...]}
    v3  periods     {..., "schemaVersion": 3, "periods": [...], "currentPeriodId"}

Records written before the schemaVersion field existed have their version
inferred ONCE at the boundary (detect_schema_version); everything after
that dispatches on the version number. Every step is a pure function of
the input record: it never mutates its argument, never reads the clock,
and applying it to an already-upgraded record returns an equal record.
"""

from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import ValidationError as SchemaValidationError

from cebim.models.portfolio import (
    QUANTITY_EPSILON,
    SCHEMA_VERSION,
    Asset,
)
from cebim.portfolio.periods import sync_legacy_mirror


Record = dict[str, Any]

# Epoch milliseconds after 2001-09-09; ids above this are creation timestamps.
_MIN_EPOCH_MS = 1_000_000_000_000


class MigrationError(Exception):
    """A stored record cannot be interpreted as any known asset shape."""
    pass


def detect_schema_version(record: Record) -> int:
    """
    Return the schema version of a raw record.

    Legacy records carry no version: the presence of periods, lots or a
    flat amount tells them apart.
    """
    version = record.get("schemaVersion")
    if version is not None:
        try:
            return int(version)
        except (TypeError, ValueError):
            raise MigrationError(f"Invalid schemaVersion: {version!r}")
    if "periods" in record:
        return 3
    if "lots" in record:
        return 2
    if "amount" in record:
        return 1
    raise MigrationError(
        f"Record {record.get('id')!r} has neither periods, lots nor amount"
    )


def _legacy_timestamp(record: Record) -> Optional[Any]:
    """Best creation time of a flat record without touching the clock."""
    for key in ("addedAt", "createdAt"):
        if record.get(key) is not None:
            return record[key]
    asset_id = record.get("id")
    if isinstance(asset_id, (int, float)) and asset_id >= _MIN_EPOCH_MS:
        return int(asset_id)
    if isinstance(asset_id, str) and asset_id.isdigit() and int(asset_id) >= _MIN_EPOCH_MS:
        return int(asset_id)
    return None


def _timestamp_key(value: Any) -> float:
    """Sort key for a stored timestamp (epoch ms number or ISO string)."""
    if value is None:
        return float("-inf")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        moment = value
    else:
        try:
            moment = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return float("-inf")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp() * 1000


def migrate_flat_asset_to_lots(record: Record) -> Record:
    """
    v1 -> v2: turn a flat asset into a lot-based asset with one lot.

    Records that already have lots are returned unchanged (as a copy).
    """
    if detect_schema_version(record) >= 2:
        return deepcopy(record)

    migrated = {
        key: deepcopy(value)
        for key, value in record.items()
        if key not in ("amount", "cost", "price", "addedAt", "createdAt")
    }
    migrated["lots"] = [{
        "id": f"lot_{record.get('id')}_0",
        "amount": record.get("amount"),
        "cost": record.get("cost", record.get("price", 0)),
        "price": record.get("price", 0),
        "addedAt": _legacy_timestamp(record),
    }]
    migrated["sales"] = []
    migrated["schemaVersion"] = 2
    return migrated


def migrate_asset_to_periods(record: Record) -> Record:
    """
    v2 -> v3: wrap the whole lot/sale history in one implicit period.

    The period is closed at the last sale when nothing is held anymore.
    Period-based records are returned unchanged (as a copy).
    """
    if detect_schema_version(record) >= 3:
        return deepcopy(record)
    if detect_schema_version(record) < 2:
        record = migrate_flat_asset_to_lots(record)

    lots = deepcopy(record.get("lots") or [])
    sales = deepcopy(record.get("sales") or [])

    purchased = sum(float(lot.get("amount") or 0) for lot in lots)
    sold = sum(float(sale.get("amount") or 0) for sale in sales)
    closed_at = None
    if sales and purchased - sold <= QUANTITY_EPSILON:
        closed_at = max(
            (sale.get("soldAt") for sale in sales),
            key=_timestamp_key,
        )

    period_id = f"period_{record.get('id')}_1"
    migrated = {
        key: deepcopy(value)
        for key, value in record.items()
        if key not in ("lots", "sales", "expanded")
    }
    migrated["periods"] = [{
        "id": period_id,
        "lots": lots,
        "sales": sales,
        "closedAt": closed_at,
    }]
    migrated["currentPeriodId"] = None if closed_at is not None else period_id
    migrated["lots"] = [] if closed_at is not None else deepcopy(lots)
    migrated["sales"] = [] if closed_at is not None else deepcopy(sales)
    migrated["schemaVersion"] = 3
    return migrated


# version -> step producing the next version
_UPGRADE_STEPS: dict[int, Callable[[Record], Record]] = {
    1: migrate_flat_asset_to_lots,
    2: migrate_asset_to_periods,
}


def upgrade_record(record: Record) -> Record:
    """Apply every migration step from the record's version up to the current one."""
    version = detect_schema_version(record)
    if version > SCHEMA_VERSION or version < 1:
        raise MigrationError(f"Unsupported schemaVersion {version} for {record.get('id')!r}")

    upgraded = deepcopy(record)
    while version < SCHEMA_VERSION:
        upgraded = _UPGRADE_STEPS[version](upgraded)
        version = detect_schema_version(upgraded)
    return upgraded


def upgrade(record: Record) -> Asset:
    """
    Read a stored record of any known shape as a current Asset.

    Raises:
        MigrationError: if the record is not an asset record
    """
    if not record.get("name") or not record.get("type"):
        raise MigrationError(f"Record {record.get('id')!r} is missing name or type")

    try:
        asset = Asset.model_validate(upgrade_record(record))
    except SchemaValidationError as e:
        raise MigrationError(f"Record {record.get('id')!r} is not a valid asset: {e}") from e
    sync_legacy_mirror(asset)
    return asset
