"""
JSON-file-backed local position store.

Layout under data_dir:
    positions.json   list of Position.to_dict() records
    trades.json      list of trade records (trade_id, position_id, ...)

File I/O runs in a worker thread; a single asyncio.Lock serialises
read-modify-write cycles. Writes go to a temp file and are renamed into place.
"""
import asyncio
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from position_recon import constants
from position_recon.domain.models import Position, PositionStatus, TradeRecord
from position_recon.exceptions import PersistenceError
from position_recon.monitoring.logger import get_logger

logger = get_logger(__name__)


def _read_json_list(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        return []
    with open(path, "r") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise PersistenceError(f"Expected a JSON list in {path}")
    return data


def _write_json_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w") as f:
        json.dump(data, f, indent=2, default=str)
    os.replace(tmp, path)


class JsonPositionStore:
    """LocalPositionStore implementation over two JSON files."""

    def __init__(
        self,
        data_dir: str | Path = "data",
        positions_file: str = "positions.json",
        trades_file: str = "trades.json",
    ):
        self.data_dir = Path(data_dir)
        self.positions_path = self.data_dir / positions_file
        self.trades_path = self.data_dir / trades_file
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, storage_config) -> "JsonPositionStore":
        return cls(
            data_dir=storage_config.data_dir,
            positions_file=storage_config.positions_file,
            trades_file=storage_config.trades_file,
        )

    async def _load_positions(self) -> List[Dict[str, Any]]:
        try:
            return await asyncio.to_thread(_read_json_list, self.positions_path)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Failed to read {self.positions_path}: {e}") from e

    async def _save_positions(self, records: List[Dict[str, Any]]) -> None:
        try:
            await asyncio.to_thread(_write_json_atomic, self.positions_path, records)
        except OSError as e:
            raise PersistenceError(f"Failed to write {self.positions_path}: {e}") from e

    async def list_open_positions(self, wallet_id: str, trading_mode: str) -> List[Position]:
        async with self._lock:
            records = await self._load_positions()
        positions: List[Position] = []
        for record in records:
            if record.get("wallet_id") != wallet_id or record.get("trading_mode") != trading_mode:
                continue
            try:
                position = Position.from_dict(record)
            except (KeyError, ValueError) as e:
                logger.warning("Skipping unreadable position record", record_id=record.get("id"), error=str(e))
                continue
            if position.is_reconcilable:
                positions.append(position)
        return positions

    async def get_position(self, position_id: str) -> Optional[Position]:
        async with self._lock:
            records = await self._load_positions()
        for record in records:
            if str(record.get("id")) == position_id:
                return Position.from_dict(record)
        return None

    async def get_trade_history(self, position_id: str) -> List[TradeRecord]:
        async with self._lock:
            try:
                records = await asyncio.to_thread(_read_json_list, self.trades_path)
            except (OSError, json.JSONDecodeError) as e:
                raise PersistenceError(f"Failed to read {self.trades_path}: {e}") from e
        return [TradeRecord.from_dict(r) for r in records if str(r.get("position_id")) == position_id]

    async def save_position(self, position: Position) -> None:
        """Insert or replace a position by id."""
        async with self._lock:
            records = await self._load_positions()
            records = [r for r in records if str(r.get("id")) != position.id]
            records.append(position.to_dict())
            await self._save_positions(records)

    async def add_trade(self, trade: TradeRecord) -> None:
        async with self._lock:
            try:
                records = await asyncio.to_thread(_read_json_list, self.trades_path)
                records.append({
                    "trade_id": trade.trade_id,
                    "position_id": trade.position_id,
                    "symbol": trade.symbol,
                    "side": trade.side,
                    "quantity": str(trade.quantity),
                    "price": str(trade.price),
                    "timestamp": trade.timestamp.isoformat(),
                })
                await asyncio.to_thread(_write_json_atomic, self.trades_path, records)
            except (OSError, json.JSONDecodeError) as e:
                raise PersistenceError(f"Failed to update {self.trades_path}: {e}") from e

    async def mark_closed(self, position_id: str) -> None:
        async with self._lock:
            records = await self._load_positions()
            for record in records:
                if str(record.get("id")) == position_id:
                    record["status"] = PositionStatus.CLOSED.value
                    record["closed_at"] = datetime.now(timezone.utc).isoformat()
                    record["exit_reason"] = constants.GHOST_EXIT_REASON
                    break
            else:
                raise PersistenceError(f"Position not found: {position_id}")
            await self._save_positions(records)

    async def delete(self, position_id: str) -> None:
        async with self._lock:
            records = await self._load_positions()
            remaining = [r for r in records if str(r.get("id")) != position_id]
            if len(remaining) == len(records):
                raise PersistenceError(f"Position not found: {position_id}")
            await self._save_positions(remaining)
