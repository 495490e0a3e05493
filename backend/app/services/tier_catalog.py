"""
Tier catalog: bidirectional mapping between our tiers and Stripe prices.

WHAT: Resolves (tier, interval) to a Stripe price ID and a Stripe price ID
back to a tier.

WHY: Price IDs are configured per environment in the Stripe Dashboard.
The catalog is built once from settings and passed into every component,
so tests can build one from fixture mappings instead of patching globals.

HOW: Frozen dataclass holding the forward table; the reverse table is
derived at construction.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from app.core.exceptions import PlanNotConfiguredError
from app.models.billing_record import BillingInterval, Tier


PriceKey = Tuple[Tier, BillingInterval]


@dataclass(frozen=True)
class TierCatalog:
    """
    Immutable tier <-> price lookup table.

    Unconfigured (empty) prices are dropped at construction, so a partially
    configured environment still answers every reverse lookup.
    """

    prices: Mapping[PriceKey, str]
    _tiers_by_price: Dict[str, Tier] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        configured = {key: price for key, price in self.prices.items() if price}
        object.__setattr__(self, "prices", configured)
        object.__setattr__(
            self,
            "_tiers_by_price",
            {price: tier for (tier, _interval), price in configured.items()},
        )

    @classmethod
    def from_settings(cls, settings) -> "TierCatalog":
        """
        Build the catalog from application settings.

        Args:
            settings: Settings instance with STRIPE_PRICE_* fields

        Returns:
            TierCatalog for the current environment
        """
        return cls(
            prices={
                (Tier.STARTER, BillingInterval.MONTH): settings.STRIPE_PRICE_STARTER_MONTHLY,
                (Tier.STARTER, BillingInterval.YEAR): settings.STRIPE_PRICE_STARTER_YEARLY,
                (Tier.GROWTH, BillingInterval.MONTH): settings.STRIPE_PRICE_GROWTH_MONTHLY,
                (Tier.GROWTH, BillingInterval.YEAR): settings.STRIPE_PRICE_GROWTH_YEARLY,
                (Tier.ENTERPRISE, BillingInterval.MONTH): settings.STRIPE_PRICE_ENTERPRISE_MONTHLY,
                (Tier.ENTERPRISE, BillingInterval.YEAR): settings.STRIPE_PRICE_ENTERPRISE_YEARLY,
            }
        )

    def price_id_for(self, tier: Tier, interval: BillingInterval) -> str:
        """
        Get the Stripe price ID for a tier and billing interval.

        Raises:
            PlanNotConfiguredError: If no price is configured for the pair
                (always the case for FREE)
        """
        tier = Tier(tier)
        interval = BillingInterval(interval)
        price_id = self.prices.get((tier, interval))
        if not price_id:
            raise PlanNotConfiguredError(
                message=f"Stripe price not configured for {tier.value}/{interval.value}",
                tier=tier.value,
                interval=interval.value,
            )
        return price_id

    def tier_for(self, price_id: Optional[str]) -> Tier:
        """
        Get the tier for a Stripe price ID.

        WHY: An unrecognized price must never block billing display, so
        anything we don't know maps to FREE.
        """
        if not price_id:
            return Tier.FREE
        return self._tiers_by_price.get(price_id, Tier.FREE)

    def configured_prices(self) -> List[Tuple[Tier, BillingInterval, str]]:
        """List every configured (tier, interval, price_id) triple."""
        return [(tier, interval, price) for (tier, interval), price in self.prices.items()]
