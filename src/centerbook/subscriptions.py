"""
Subscription management: list, purchase, freeze and unfreeze.

The backend decides whether a subscription is active, so every mutating call
is followed by a fresh GET instead of patching the local copy.
"""

import logging
from datetime import date
from typing import Optional

from .api.base import Subscription, SubscriptionType
from .api.center_client import CenterApi

logger = logging.getLogger(__name__)


class SubscriptionManager:
    def __init__(self, api: CenterApi, user_id: Optional[int] = None):
        self.api = api
        self.user_id = user_id

    async def _user_id(self) -> int:
        if self.user_id is None:
            self.user_id = (await self.api.current_user()).id
        return self.user_id

    async def fetch_all(self) -> list[Subscription]:
        """All of the user's subscriptions, newest start date first."""
        subscriptions = await self.api.list_subscriptions(await self._user_id())
        return sorted(subscriptions, key=lambda s: (s.start_date or date.min, s.id), reverse=True)

    async def usable(self) -> list[Subscription]:
        return [s for s in await self.fetch_all() if s.is_usable]

    async def purchase(
        self,
        subscription_type: SubscriptionType,
        section_id: Optional[int] = None,
    ) -> Subscription:
        subscription = await self.api.purchase_subscription(subscription_type, section_id)
        logger.info("Purchased %s subscription %s", subscription.type.value, subscription.id)
        return subscription

    async def freeze(self, subscription_id: int, freeze_days: int) -> Subscription:
        if freeze_days < 1:
            raise ValueError("freeze_days must be at least 1")
        await self.api.freeze_subscription(subscription_id, freeze_days)
        logger.info("Froze subscription %s for %s days", subscription_id, freeze_days)
        return await self.api.get_subscription(subscription_id)

    async def unfreeze(self, subscription_id: int) -> Subscription:
        await self.api.unfreeze_subscription(subscription_id)
        logger.info("Unfroze subscription %s", subscription_id)
        return await self.api.get_subscription(subscription_id)
