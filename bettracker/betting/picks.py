"""
Capper picks and the users who follow them.
"""
from datetime import datetime
from typing import Callable, List, Optional

from bettracker.betting.odds import validate_american_odds, validate_stake
from bettracker.core.protocols import RecordStore
from bettracker.exceptions import (
    AlreadySettledError,
    ForbiddenError,
    InvalidInputError,
    PickNotFoundError,
    UserNotFoundError,
)
from bettracker.schema import AccessTier, Pick, PickFollow, BetResult, User, utcnow
from bettracker.utils.money import money, to_decimal
from bettracker.utils.observability import Logger

logger = Logger(__name__)

# Which stored tiers each requested visibility level may see
VISIBLE_TIERS = {
    "public": [AccessTier.PUBLIC.value],
    "premium": [AccessTier.PUBLIC.value, AccessTier.PREMIUM.value],
    "all": None,
}


def _confidence(value) -> int:
    """Coerce a confidence rating to an int in 1..10."""
    if isinstance(value, bool):
        raise InvalidInputError(f"Confidence must be between 1 and 10: {value!r}")
    try:
        rating = to_decimal(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"Confidence must be between 1 and 10: {value!r}")
    if rating != rating.to_integral_value() or not 1 <= rating <= 10:
        raise InvalidInputError(f"Confidence must be between 1 and 10: {value!r}")
    return int(rating)


class PickBoard:
    """Publishing, listing and following picks within a tenant."""

    def __init__(self, store: RecordStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or utcnow

    def _user(self, user_id: int, tenant_id: str) -> User:
        user = self.store.get_user(user_id, tenant_id)
        if user is None:
            raise UserNotFoundError(user_id, tenant_id)
        return user

    def get_pick(self, pick_id: int, tenant_id: str) -> Pick:
        pick = self.store.get_pick(pick_id, tenant_id)
        if pick is None:
            raise PickNotFoundError(pick_id, tenant_id)
        return pick

    def create_pick(
        self,
        user_id: int,
        tenant_id: str,
        sport: str,
        bet_type: str,
        description: str,
        league: Optional[str] = None,
        reasoning: Optional[str] = None,
        confidence: Optional[int] = None,
        recommended_odds=None,
        recommended_units=None,
        max_bet_amount=None,
        access_tier: str = "public",
        is_premium: Optional[bool] = None,
        price=None,
        game_time: Optional[str] = None,
        expires_at: Optional[str] = None,
        capper_id: Optional[int] = None,
        is_admin: bool = False,
    ) -> Pick:
        """
        Publish a pick.

        The author must be a capper. An admin may post on behalf of another
        capper in the same tenant by passing ``capper_id``.

        Raises:
            UserNotFoundError: author or target capper missing
            ForbiddenError: author not a capper / not allowed to post for target
            InvalidInputError: malformed odds, units, tier or confidence
        """
        author = self._user(user_id, tenant_id)
        if capper_id is not None and capper_id != user_id:
            if not is_admin:
                raise ForbiddenError(f"User {user_id} cannot post picks for capper {capper_id}")
            capper = self._user(capper_id, tenant_id)
        else:
            capper = author
        if not capper.is_capper:
            raise ForbiddenError(f"User {capper.id} is not a capper")

        for value, name in ((sport, "sport"), (bet_type, "bet_type"), (description, "description")):
            if not value or not str(value).strip():
                raise InvalidInputError(f"Missing required field: {name}")
        try:
            tier = AccessTier(access_tier)
        except ValueError:
            raise InvalidInputError(f"Unknown access tier: {access_tier!r}")
        if confidence is not None:
            confidence = _confidence(confidence)

        pick = self.store.insert_pick({
            "capper_id": capper.id,
            "tenant_id": tenant_id,
            "sport": sport.strip(),
            "league": league,
            "bet_type": bet_type.strip(),
            "description": description.strip(),
            "reasoning": reasoning,
            "confidence": confidence,
            "recommended_odds_american": (
                validate_american_odds(recommended_odds) if recommended_odds is not None else None
            ),
            "recommended_units": (
                validate_stake(recommended_units, "recommended_units")
                if recommended_units is not None else None
            ),
            "max_bet_amount": (
                validate_stake(max_bet_amount, "max_bet_amount")
                if max_bet_amount is not None else None
            ),
            "access_tier": tier,
            "is_premium": tier is not AccessTier.PUBLIC if is_premium is None else is_premium,
            "price": money(to_decimal(price)) if price is not None else None,
            "result": BetResult.PENDING,
            "game_time": game_time,
            "expires_at": expires_at,
            "posted_at": self.clock(),
        })
        logger.log_event(
            "pick_created",
            pick_id=pick.id,
            tenant_id=tenant_id,
            capper_id=capper.id,
            posted_by=user_id,
            access_tier=tier.value,
        )
        return pick

    def list_picks(
        self,
        tenant_id: str,
        access_tier: str = "public",
        capper_id: Optional[int] = None,
        sport: Optional[str] = None,
        limit: Optional[int] = 50,
    ) -> List[Pick]:
        """
        Newest picks visible at ``access_tier``: public sees public, premium
        sees public and premium, all sees every tier.
        """
        if access_tier not in VISIBLE_TIERS:
            raise InvalidInputError(
                f"Unknown access tier filter {access_tier!r}. "
                f"Must be one of: {', '.join(VISIBLE_TIERS)}"
            )
        return self.store.list_picks(
            tenant_id,
            access_tiers=VISIBLE_TIERS[access_tier],
            capper_ids=[capper_id] if capper_id is not None else None,
            sport=sport,
            limit=limit,
        )

    def record_view(self, pick_id: int, tenant_id: str) -> Pick:
        if not self.store.increment_pick_views(pick_id, tenant_id):
            raise PickNotFoundError(pick_id, tenant_id)
        return self.get_pick(pick_id, tenant_id)

    def follow_pick(
        self,
        pick_id: int,
        user_id: int,
        tenant_id: str,
        bet_amount=None,
        actual_odds=None,
    ) -> PickFollow:
        """
        Follow a pending pick, optionally recording the follower's own stake
        and odds. One follow per user per pick.
        """
        self._user(user_id, tenant_id)
        pick = self.get_pick(pick_id, tenant_id)
        if pick.is_settled:
            raise InvalidInputError(f"Pick {pick_id} is already settled ({pick.result.value})")

        fields = {
            "pick_id": pick_id,
            "user_id": user_id,
            "capper_id": pick.capper_id,
            "tenant_id": tenant_id,
            "bet_amount": validate_stake(bet_amount, "bet_amount") if bet_amount is not None else None,
            "actual_odds_american": (
                validate_american_odds(actual_odds) if actual_odds is not None else None
            ),
            "result": BetResult.PENDING,
            "created_at": self.clock(),
        }
        try:
            follow = self.store.insert_follow(fields)
        except AlreadySettledError as e:
            raise InvalidInputError(f"Pick {pick_id} is already settled ({e.result})") from e
        if follow is None:
            raise InvalidInputError(f"User {user_id} already follows pick {pick_id}")
        logger.log_event("pick_followed", pick_id=pick_id, user_id=user_id, tenant_id=tenant_id)
        return follow

    def unfollow_pick(self, pick_id: int, user_id: int, tenant_id: str) -> bool:
        """Returns False if the user was not following the pick."""
        removed = self.store.delete_follow(pick_id, user_id, tenant_id)
        if removed:
            logger.log_event("pick_unfollowed", pick_id=pick_id, user_id=user_id, tenant_id=tenant_id)
        return removed

    def list_follows(self, pick_id: int, tenant_id: str) -> List[PickFollow]:
        self.get_pick(pick_id, tenant_id)
        return self.store.list_follows(pick_id, tenant_id)
