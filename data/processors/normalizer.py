"""
Data Normalizer - Maps indexer records into the engine's typed models
Ensures consistent data format across all analyzers
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from data.storage.models import (
    LiquidityLock,
    SupplySnapshot,
    TokenBalance,
    TokenInfo,
    Transaction,
    VenueQuote,
)
from utils.constants import DEFAULT_DEX_FEE, DEX, DEX_FEES
from utils.errors import MalformedResponseError
from utils.helpers import is_valid_address, is_valid_tx_hash, parse_quantity, to_utc


def _pick(record: Dict[str, Any], *names: str, default: Any = None) -> Any:
    """First present key among aliases"""
    for name in names:
        if name in record and record[name] is not None:
            return record[name]
    return default


class DataNormalizer:
    """
    Converts already-shaped indexer payloads into frozen models.

    Every record is validated; the first invalid one aborts the batch with
    ``MalformedResponseError`` so partial garbage never reaches the analyzers.
    """

    def __init__(self):
        # DEX mappings
        self.dex_mappings = {
            "uni": DEX.UNISWAP_V2.value,
            "uniswap": DEX.UNISWAP_V2.value,
            "uniswapv2": DEX.UNISWAP_V2.value,
            "uniswapv3": DEX.UNISWAP_V3.value,
            "pancake": DEX.PANCAKESWAP.value,
            "sushi": DEX.SUSHISWAP.value,
            "quick": DEX.QUICKSWAP.value,
            "traderjoe": DEX.TRADER_JOE.value
        }

    # ============= Scalars =============

    def normalize_address(self, address: Any, chain_id: Optional[int] = None) -> str:
        """Lowercased 20-byte hex address"""
        if not is_valid_address(address):
            raise MalformedResponseError(f"Invalid address: {address!r}", chain_id)
        return address.lower()

    def normalize_timestamp(self, value: Any, chain_id: Optional[int] = None) -> datetime:
        """Aware UTC datetime from unix seconds, milliseconds or ISO text"""
        try:
            return to_utc(value)
        except (ValueError, TypeError, OverflowError, OSError) as e:
            raise MalformedResponseError(f"Invalid timestamp: {value!r}", chain_id) from e

    def normalize_amount(self, value: Any, chain_id: Optional[int] = None) -> int:
        """Non-negative integer base-unit amount"""
        try:
            amount = parse_quantity(value) if not isinstance(value, float) else int(value)
        except (ValueError, TypeError) as e:
            raise MalformedResponseError(f"Invalid amount: {value!r}", chain_id) from e
        if amount < 0:
            raise MalformedResponseError(f"Negative amount: {value!r}", chain_id)
        return amount

    def normalize_decimal(self, value: Any, chain_id: Optional[int] = None) -> Decimal:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, TypeError) as e:
            raise MalformedResponseError(f"Invalid number: {value!r}", chain_id) from e
        if not result.is_finite():
            raise MalformedResponseError(f"Invalid number: {value!r}", chain_id)
        return result

    def normalize_dex(self, name: str) -> str:
        key = str(name).lower().replace(" ", "").replace("-", "").replace("_", "")
        return self.dex_mappings.get(key, str(name).lower())

    def normalize_gas_price(self, value: Any, chain_id: Optional[int] = None) -> int:
        return self.normalize_amount(value, chain_id)

    # ============= Records =============

    def normalize_token_balance(self, record: Dict[str, Any], chain_id: int) -> TokenBalance:
        """Map a balance record, nested ``token`` or flat contract fields"""
        if not isinstance(record, dict):
            raise MalformedResponseError(f"Balance record is not an object: {record!r}", chain_id)
        token = record.get("token") if isinstance(record.get("token"), dict) else record

        try:
            decimals = int(_pick(token, "decimals", "contract_decimals", default=18))
        except (TypeError, ValueError) as e:
            raise MalformedResponseError(f"Invalid decimals in {record!r}", chain_id) from e

        info = TokenInfo(
            chain_id=chain_id,
            address=self.normalize_address(
                _pick(token, "address", "contract_address"), chain_id
            ),
            symbol=str(_pick(token, "symbol", "contract_ticker_symbol", default="")).upper(),
            decimals=decimals
        )

        created_at = _pick(record, "created_at", "token_created_at")
        holders = _pick(record, "holder_count", "holders")

        return TokenBalance(
            token=info,
            balance=self.normalize_amount(_pick(record, "balance", default=0), chain_id),
            quote_usd=float(self.normalize_decimal(_pick(record, "quote_usd", "quote", default=0), chain_id)),
            created_at=self.normalize_timestamp(created_at, chain_id) if created_at is not None else None,
            holder_count=self.normalize_amount(holders, chain_id) if holders is not None else None
        )

    def normalize_transaction(self, record: Dict[str, Any], chain_id: int) -> Transaction:
        """Map a transaction record"""
        if not isinstance(record, dict):
            raise MalformedResponseError(f"Transaction record is not an object: {record!r}", chain_id)

        tx_hash = _pick(record, "hash", "tx_hash")
        if not is_valid_tx_hash(tx_hash):
            raise MalformedResponseError(f"Invalid transaction hash: {tx_hash!r}", chain_id)

        to_address = _pick(record, "to", "to_address")
        pool = _pick(record, "pool", "pool_address")
        value_out = _pick(record, "value_out")
        gas_price = _pick(record, "gas_price")
        block_number = _pick(record, "block_number", "block_height")
        tx_index = _pick(record, "tx_index", "transaction_index")

        return Transaction(
            hash=tx_hash.lower(),
            from_address=self.normalize_address(_pick(record, "from", "from_address"), chain_id),
            # Contract creations carry no recipient
            to_address=self.normalize_address(to_address, chain_id) if to_address is not None else None,
            value=self.normalize_amount(_pick(record, "value", default=0), chain_id),
            timestamp=self.normalize_timestamp(
                _pick(record, "timestamp", "block_signed_at"), chain_id
            ),
            block_number=self.normalize_amount(block_number, chain_id) if block_number is not None else None,
            tx_index=self.normalize_amount(tx_index, chain_id) if tx_index is not None else None,
            pool=self.normalize_address(pool, chain_id) if pool is not None else None,
            value_out=self.normalize_amount(value_out, chain_id) if value_out is not None else None,
            gas_price=self.normalize_amount(gas_price, chain_id) if gas_price is not None else None
        )

    def normalize_venue_quote(self, record: Dict[str, Any], chain_id: int) -> VenueQuote:
        """Map a DEX venue record"""
        if not isinstance(record, dict):
            raise MalformedResponseError(f"Venue record is not an object: {record!r}", chain_id)

        dex = self.normalize_dex(_pick(record, "dex", "dex_id", default="unknown"))
        fee = _pick(record, "fee")
        if fee is None:
            fee = next((v for k, v in DEX_FEES.items() if k.value == dex), DEFAULT_DEX_FEE)
        gas_estimate = _pick(record, "gas_estimate")

        quote = VenueQuote(
            dex=dex,
            liquidity_usd=self.normalize_decimal(_pick(record, "liquidity_usd", "liquidity", default=0), chain_id),
            reserve_in=self.normalize_decimal(_pick(record, "reserve_in"), chain_id),
            reserve_out=self.normalize_decimal(_pick(record, "reserve_out"), chain_id),
            fee=self.normalize_decimal(fee, chain_id),
            price_in_usd=self.normalize_decimal(_pick(record, "price_in_usd", "price_usd", default=0), chain_id),
            gas_estimate=self.normalize_amount(gas_estimate, chain_id) if gas_estimate is not None else None
        )
        if quote.reserve_in < 0 or quote.reserve_out < 0 or not (0 <= quote.fee < 1):
            raise MalformedResponseError(f"Inconsistent venue record: {record!r}", chain_id)
        return quote

    def normalize_supply(self, record: Dict[str, Any], chain_id: int) -> SupplySnapshot:
        """Map a token supply record with its liquidity locks"""
        if not isinstance(record, dict):
            raise MalformedResponseError(f"Supply record is not an object: {record!r}", chain_id)

        locks = []
        for lock in record.get("locks") or []:
            if not isinstance(lock, dict):
                raise MalformedResponseError(f"Lock record is not an object: {lock!r}", chain_id)
            claimed = _pick(lock, "claimed_days", "claimed_lock_days")
            locks.append(LiquidityLock(
                amount=self.normalize_decimal(_pick(lock, "amount"), chain_id),
                locked_at=self.normalize_timestamp(_pick(lock, "locked_at", "lock_date"), chain_id),
                unlock_at=self.normalize_timestamp(_pick(lock, "unlock_at", "unlock_date"), chain_id),
                claimed_days=self.normalize_amount(claimed, chain_id) if claimed is not None else None
            ))

        return SupplySnapshot(
            token=self.normalize_address(_pick(record, "token", "address"), chain_id),
            total=self.normalize_decimal(_pick(record, "total_supply", "total"), chain_id),
            burned=self.normalize_decimal(_pick(record, "burned", default=0), chain_id),
            locks=tuple(locks),
            claims_locked=bool(_pick(record, "claims_locked", "liquidity_locked", default=False))
        )

    def normalize_price_series(self, records: Sequence[Any], chain_id: int) -> List[float]:
        """Prices ordered by time; accepts bare numbers or ``{timestamp, price}`` points"""
        if not isinstance(records, (list, tuple)):
            raise MalformedResponseError("Price history is not a list", chain_id)
        if records and isinstance(records[0], dict):
            points = sorted(
                records,
                key=lambda p: self.normalize_timestamp(_pick(p, "timestamp", "time"), chain_id)
            )
            values = [_pick(p, "price", "close") for p in points]
        else:
            values = list(records)
        return [float(self.normalize_decimal(v, chain_id)) for v in values]

    # ============= Batches =============

    def normalize_batch(self, records: Any, chain_id: int, kind: str) -> List[Any]:
        """
        Normalize a list of records of one kind

        Args:
            records: Raw list from the gateway
            chain_id: Chain the records belong to
            kind: One of ``balance``, ``transaction``, ``venue``

        Returns:
            List of typed models
        """
        handlers = {
            "balance": self.normalize_token_balance,
            "transaction": self.normalize_transaction,
            "venue": self.normalize_venue_quote
        }
        handler = handlers[kind]
        if not isinstance(records, list):
            raise MalformedResponseError(f"Expected a list of {kind} records", chain_id)

        try:
            return [handler(record, chain_id) for record in records]
        except MalformedResponseError as e:
            logger.warning(f"Rejected {kind} batch on chain {chain_id}: {e}")
            raise
