"""On-chain balance refresh for assets."""

import math
from abc import ABC, abstractmethod
from typing import Optional

import structlog

from ..errors import NotFoundError, ValidationError
from ..models import Asset
from ..persistence.store import PlannerStore

logger = structlog.get_logger(__name__)


class OnChainBalanceProvider(ABC):
    """Supplies the on-chain part of an asset balance."""

    @abstractmethod
    def fetch_balance(self, chain: str, address: str, symbol: Optional[str] = None) -> float:
        """
        Current on-chain balance for an address.

        Raises:
            Exception: Any failure; callers keep the last known balance
        """
        pass


class AssetBalanceService:
    """Keeps stored asset balances in step with their on-chain source."""

    def __init__(self, store: PlannerStore, provider: Optional[OnChainBalanceProvider] = None):
        self.store = store
        self.provider = provider
        self.logger = logger

    def refresh(self, asset_id: str) -> tuple[Asset, bool]:
        """
        Refresh an asset's on-chain amount.

        Returns:
            Tuple of (asset after refresh, whether the stored balance changed)
        """
        asset = self.store.get_asset(asset_id)
        if asset is None:
            raise NotFoundError(f"Asset {asset_id} not found", entity_type="asset", entity_id=asset_id)

        if self.provider is None or not asset.has_on_chain_source:
            return asset, False

        try:
            balance = float(self.provider.fetch_balance(asset.chain, asset.address, asset.symbol))
        except Exception as e:
            self.logger.warning(
                "On-chain balance fetch failed, keeping last known balance",
                asset_id=asset_id,
                chain=asset.chain,
                last_known=asset.on_chain_amount,
                error=str(e)
            )
            return asset, False

        if not math.isfinite(balance) or balance < 0:
            self.logger.warning("Ignoring invalid on-chain balance", asset_id=asset_id, balance=balance)
            return asset, False

        if balance == asset.on_chain_amount:
            return asset, False

        updated = asset.with_on_chain_amount(balance)
        with self.store.transaction("refresh_balance"):
            self.store.save_asset(updated)

        self.logger.info(
            "On-chain balance updated",
            asset_id=asset_id,
            old_balance=asset.on_chain_amount,
            new_balance=balance
        )
        return updated, True

    def set_manual_amount(self, asset_id: str, amount: float) -> Asset:
        """Replace the user-entered part of an asset balance."""
        if not math.isfinite(amount) or amount < 0:
            raise ValidationError("Manual amount must be a non-negative number", field="manual_amount", value=amount)

        with self.store.transaction("set_manual_amount"):
            asset = self.store.get_asset(asset_id)
            if asset is None:
                raise NotFoundError(f"Asset {asset_id} not found", entity_type="asset", entity_id=asset_id)
            updated = asset.with_manual_amount(amount)
            self.store.save_asset(updated)

        self.logger.info("Manual balance updated", asset_id=asset_id, amount=amount)
        return updated
