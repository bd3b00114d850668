"""
Upload tokens.

Each game consumes one token from a designated pool: team games draw from the
team pool and opponent scouting games from the opponent pool. Each pool has a
subscription part, refreshed monthly with capped rollover, and a purchased
part that never expires. Subscription tokens are spent first.

Balance updates are compare-and-set: the UPDATE is filtered on the value that
was read, so a concurrent write makes it match zero rows instead of
double-spending or losing a credit; the caller re-reads and retries.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from coachhub.core.errors import CoachHubError, InvalidRequestError, NotFoundError
from coachhub.db import database as db
from coachhub.models.schemas import (
    ConsumeTokenResult,
    GameType,
    SubscriptionStatus,
    TokenBalanceSummary,
    TokenSource,
    TokenTransactionType,
)
from coachhub.services import tiers

logger = logging.getLogger(__name__)

PERIOD_DAYS = 30
MAX_CAS_ATTEMPTS = 3

NO_TOKENS_MESSAGES = {
    GameType.TEAM.value: "No team tokens available. Purchase additional tokens or wait for your next billing period.",
    GameType.OPPONENT.value: "No opponent tokens available. Purchase additional tokens or wait for your next billing period.",
}


def _columns(game_type: str) -> dict[str, str]:
    return {
        "subscription": f"{game_type}_subscription_tokens_available",
        "used": f"{game_type}_subscription_tokens_used_this_period",
        "purchased": f"{game_type}_purchased_tokens_available",
    }


def _pool_total(balance: dict, game_type: str) -> int:
    cols = _columns(game_type)
    return (balance.get(cols["subscription"]) or 0) + (balance.get(cols["purchased"]) or 0)


def _validate_game_type(game_type: str) -> str:
    value = game_type.value if isinstance(game_type, GameType) else game_type
    if value not in (GameType.TEAM.value, GameType.OPPONENT.value):
        raise InvalidRequestError(f"Invalid game type: {game_type}")
    return value


def _log_transaction(
    team_id: str,
    transaction_type: TokenTransactionType,
    amount: int,
    balance_after: int,
    source: Optional[TokenSource],
    game_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    reference_type: Optional[str] = None,
    notes: Optional[str] = None,
    created_by: Optional[str] = None,
) -> None:
    client = db.require_client()
    client.table("token_transactions").insert({
        "team_id": str(team_id),
        "transaction_type": transaction_type.value,
        "amount": amount,
        "balance_after": balance_after,
        "source": source.value if source else None,
        "game_type": game_type,
        "reference_id": str(reference_id) if reference_id else None,
        "reference_type": reference_type,
        "notes": notes,
        "created_by": str(created_by) if created_by else None,
    }).execute()


# =============================================================================
# Balance reads
# =============================================================================

def _read_balance(team_id: str) -> Optional[dict]:
    client = db.require_client()
    result = client.table("token_balance").select("*").eq("team_id", str(team_id)).limit(1).execute()
    return db.first_row(result)


def _add_to_column(team_id: str, balance: dict, column: str, delta: int) -> Optional[tuple[int, dict]]:
    """
    Compare-and-set ``column += delta``, floored at zero.

    Returns the value that was replaced and the updated row, or None when the
    row kept changing underneath us or disappeared.
    """
    client = db.require_client()
    for _ in range(MAX_CAS_ATTEMPTS):
        previous = balance.get(column)
        current = previous or 0
        query = (
            client.table("token_balance")
            .update({column: max(0, current + delta), "updated_at": db.now_iso()})
            .eq("team_id", str(team_id))
        )
        query = query.is_(column, "null") if previous is None else query.eq(column, previous)
        result = query.execute()
        if result.data:
            return current, result.data[0]

        logger.warning(f"Token balance for team {team_id} changed while updating {column}; retrying")
        balance = _read_balance(team_id)
        if not balance:
            return None
    return None


def get_balance(team_id: str) -> Optional[dict]:
    """Current token balance row, refreshing an expired period first."""
    balance = _read_balance(team_id)
    if not balance:
        return None

    period_end = db.parse_timestamp(balance.get("period_end"))
    if period_end and period_end < db.utc_now():
        subscription = tiers.get_subscription(team_id)
        if subscription and subscription.get("tier"):
            now = db.utc_now()
            logger.info(f"Token period expired for team {team_id}; refreshing")
            refresh_subscription_tokens(team_id, subscription["tier"], now, now + timedelta(days=PERIOD_DAYS))
            balance = _read_balance(team_id)

    return balance


def get_balance_summary(team_id: str) -> TokenBalanceSummary:
    balance = get_balance(team_id)
    subscription = tiers.get_subscription(team_id)
    config = tiers.get_tier_config((subscription or {}).get("tier"))
    status = (subscription or {}).get("status")

    summary = TokenBalanceSummary(
        team_id=team_id,
        monthly_team_allocation=config.team_allocation,
        monthly_opponent_allocation=config.opponent_allocation,
        team_rollover_cap=config.team_rollover_cap,
        opponent_rollover_cap=config.opponent_rollover_cap,
        has_active_subscription=status in (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value),
    )
    if not balance:
        return summary

    team_cols = _columns(GameType.TEAM.value)
    opp_cols = _columns(GameType.OPPONENT.value)
    summary.team_subscription_available = balance.get(team_cols["subscription"]) or 0
    summary.team_purchased_available = balance.get(team_cols["purchased"]) or 0
    summary.team_used_this_period = balance.get(team_cols["used"]) or 0
    summary.opponent_subscription_available = balance.get(opp_cols["subscription"]) or 0
    summary.opponent_purchased_available = balance.get(opp_cols["purchased"]) or 0
    summary.opponent_used_this_period = balance.get(opp_cols["used"]) or 0
    summary.team_available = summary.team_subscription_available + summary.team_purchased_available
    summary.opponent_available = summary.opponent_subscription_available + summary.opponent_purchased_available
    summary.total_available = summary.team_available + summary.opponent_available
    summary.period_start = db.parse_timestamp(balance.get("period_start"))
    summary.period_end = db.parse_timestamp(balance.get("period_end"))
    return summary


def has_available_token(team_id: str, game_type: str) -> bool:
    balance = get_balance(team_id)
    return bool(balance) and _pool_total(balance, _validate_game_type(game_type)) > 0


# =============================================================================
# Consumption and purchase
# =============================================================================

def consume_designated_token(
    team_id: str,
    game_id: str,
    game_type: str,
    user_id: Optional[str] = None,
) -> ConsumeTokenResult:
    """Spend one token from the game's pool: subscription first, then purchased."""
    try:
        game_type = _validate_game_type(game_type)
    except InvalidRequestError as e:
        return ConsumeTokenResult(success=False, message=e.message)

    client = db.require_client()
    cols = _columns(game_type)

    for _ in range(MAX_CAS_ATTEMPTS):
        balance = get_balance(team_id)
        if not balance:
            return ConsumeTokenResult(success=False, message="No token balance found for this team.")

        subscription_left = balance.get(cols["subscription"]) or 0
        purchased_left = balance.get(cols["purchased"]) or 0

        if subscription_left > 0:
            source = TokenSource.SUBSCRIPTION
            update = {
                cols["subscription"]: subscription_left - 1,
                cols["used"]: (balance.get(cols["used"]) or 0) + 1,
            }
            guard_col, guard_val = cols["subscription"], subscription_left
        elif purchased_left > 0:
            source = TokenSource.PURCHASED
            update = {cols["purchased"]: purchased_left - 1}
            guard_col, guard_val = cols["purchased"], purchased_left
        else:
            return ConsumeTokenResult(success=False, message=NO_TOKENS_MESSAGES[game_type], game_type=game_type)

        update["updated_at"] = db.now_iso()
        result = (
            client.table("token_balance")
            .update(update)
            .eq("team_id", str(team_id))
            .eq(guard_col, guard_val)
            .execute()
        )
        if result.data:
            _log_transaction(
                team_id,
                TokenTransactionType.CONSUMPTION,
                amount=-1,
                balance_after=_pool_total(result.data[0], game_type),
                source=source,
                game_type=game_type,
                reference_id=game_id,
                reference_type="game",
                created_by=user_id,
            )
            logger.info(f"Team {team_id} consumed a {game_type} {source.value} token for game {game_id}")
            return ConsumeTokenResult(success=True, source=source, game_type=game_type)

        logger.warning(f"Token balance for team {team_id} changed during consumption; retrying")

    return ConsumeTokenResult(success=False, message="Token balance is busy. Please try again.", game_type=game_type)


def refund_token(
    team_id: str,
    game_id: str,
    game_type: str,
    notes: str,
    user_id: Optional[str] = None,
) -> bool:
    """Return a token to the game's subscription pool."""
    game_type = _validate_game_type(game_type)
    balance = _read_balance(team_id)
    if not balance:
        return False

    updated = _add_to_column(team_id, balance, _columns(game_type)["subscription"], 1)
    if updated is None:
        logger.error(f"Could not refund a {game_type} token to team {team_id} for game {game_id}")
        return False

    _log_transaction(
        team_id,
        TokenTransactionType.REFUND,
        amount=1,
        balance_after=_pool_total(updated[1], game_type),
        source=TokenSource.SUBSCRIPTION,
        game_type=game_type,
        reference_id=game_id,
        reference_type="game",
        notes=notes,
        created_by=user_id,
    )
    return True


def _transaction_exists(reference_id: str) -> bool:
    client = db.require_client()
    result = (
        client.table("token_transactions")
        .select("id")
        .eq("reference_id", str(reference_id))
        .eq("transaction_type", TokenTransactionType.PURCHASE.value)
        .limit(1)
        .execute()
    )
    return bool(result.data)


def add_purchased_tokens(
    team_id: str,
    amount: int,
    payment_id: str,
    game_type: str = GameType.TEAM.value,
) -> bool:
    """Credit purchased tokens once per payment id. Returns False for a duplicate."""
    if amount <= 0:
        raise InvalidRequestError("Token amount must be positive")
    game_type = _validate_game_type(game_type)

    if _transaction_exists(payment_id):
        logger.info(f"Purchase {payment_id} already credited to team {team_id}")
        return False

    column = _columns(game_type)["purchased"]
    balance = _read_balance(team_id)

    if balance:
        updated = _add_to_column(team_id, balance, column, amount)
        if updated is None:
            raise CoachHubError("Token balance is busy. Please try again.", status_code=409, code="BALANCE_BUSY")
        row = updated[1]
    else:
        result = db.require_client().table("token_balance").insert({
            "team_id": str(team_id),
            column: amount,
        }).execute()
        row = result.data[0] if result.data else {column: amount}

    _log_transaction(
        team_id,
        TokenTransactionType.PURCHASE,
        amount=amount,
        balance_after=_pool_total(row, game_type),
        source=TokenSource.PURCHASED,
        game_type=game_type,
        reference_id=payment_id,
        reference_type="stripe_payment",
    )
    logger.info(f"Credited {amount} purchased {game_type} token(s) to team {team_id}")
    return True


# =============================================================================
# Subscription allocation
# =============================================================================

def initialize_subscription_tokens(team_id: str, tier: str, period_start: datetime, period_end: datetime) -> dict:
    """Set both pools to the tier's full monthly allocation for a new period."""
    config = tiers.get_tier_config(tier)
    client = db.require_client()

    team_cols = _columns(GameType.TEAM.value)
    opp_cols = _columns(GameType.OPPONENT.value)
    existing = _read_balance(team_id) or {}

    row = {
        "team_id": str(team_id),
        team_cols["subscription"]: config.team_allocation,
        team_cols["used"]: 0,
        team_cols["purchased"]: existing.get(team_cols["purchased"]) or 0,
        opp_cols["subscription"]: config.opponent_allocation,
        opp_cols["used"]: 0,
        opp_cols["purchased"]: existing.get(opp_cols["purchased"]) or 0,
        "period_start": period_start.isoformat(),
        "period_end": period_end.isoformat(),
        "updated_at": db.now_iso(),
    }
    result = client.table("token_balance").upsert(row, on_conflict="team_id").execute()

    _log_transaction(
        team_id,
        TokenTransactionType.MONTHLY_ALLOCATION,
        amount=config.team_allocation + config.opponent_allocation,
        balance_after=_pool_total(row, GameType.TEAM.value) + _pool_total(row, GameType.OPPONENT.value),
        source=TokenSource.SUBSCRIPTION,
        notes=f"Initial {tier} allocation",
    )
    return result.data[0] if result.data else row


def refresh_subscription_tokens(team_id: str, tier: str, period_start: datetime, period_end: datetime) -> Optional[dict]:
    """
    Start a new billing period.

    Unused subscription tokens roll over, but each pool is capped:
    new = min(unused + monthly allocation, rollover cap).
    """
    balance = _read_balance(team_id)
    if not balance:
        return initialize_subscription_tokens(team_id, tier, period_start, period_end)

    config = tiers.get_tier_config(tier)
    client = db.require_client()

    update = {
        "period_start": period_start.isoformat(),
        "period_end": period_end.isoformat(),
        "updated_at": db.now_iso(),
    }
    plans = [
        (GameType.TEAM.value, config.team_allocation, config.team_rollover_cap),
        (GameType.OPPONENT.value, config.opponent_allocation, config.opponent_rollover_cap),
    ]
    for game_type, allocation, cap in plans:
        cols = _columns(game_type)
        unused = balance.get(cols["subscription"]) or 0
        cap = max(cap, allocation)
        new_total = min(unused + allocation, cap)
        rolled = max(0, new_total - allocation)
        update[cols["subscription"]] = new_total
        update[cols["used"]] = 0

        if rolled > 0:
            _log_transaction(
                team_id,
                TokenTransactionType.ROLLOVER,
                amount=rolled,
                balance_after=new_total + (balance.get(cols["purchased"]) or 0),
                source=TokenSource.SUBSCRIPTION,
                game_type=game_type,
            )
        _log_transaction(
            team_id,
            TokenTransactionType.MONTHLY_ALLOCATION,
            amount=new_total - rolled,
            balance_after=new_total + (balance.get(cols["purchased"]) or 0),
            source=TokenSource.SUBSCRIPTION,
            game_type=game_type,
        )

    result = client.table("token_balance").update(update).eq("team_id", str(team_id)).execute()
    logger.info(f"Refreshed tokens for team {team_id} on {tier}")
    return result.data[0] if result.data else None


# =============================================================================
# Admin and history
# =============================================================================

def admin_adjust_tokens(
    team_id: str,
    game_type: str,
    delta: int,
    notes: Optional[str],
    admin_user_id: str,
) -> dict:
    """Add or remove tokens from a pool's purchased part; never below zero."""
    game_type = _validate_game_type(game_type)
    cols = _columns(game_type)
    client = db.require_client()

    balance = _read_balance(team_id)
    if not balance:
        if db.get_team(team_id) is None:
            raise NotFoundError("Team not found")
        balance = client.table("token_balance").insert({"team_id": str(team_id)}).execute().data[0]

    result = _add_to_column(team_id, balance, cols["purchased"], delta)
    if result is None:
        raise CoachHubError("Token balance is busy. Please try again.", status_code=409, code="BALANCE_BUSY")
    current, updated = result
    new_value = updated.get(cols["purchased"]) or 0

    _log_transaction(
        team_id,
        TokenTransactionType.ADMIN_ADJUSTMENT,
        amount=new_value - current,
        balance_after=_pool_total(updated, game_type),
        source=TokenSource.PURCHASED,
        game_type=game_type,
        notes=notes,
        created_by=admin_user_id,
    )
    return updated


def get_transactions(team_id: str, limit: int = 50, transaction_type: Optional[str] = None) -> list[dict]:
    client = db.require_client()
    query = client.table("token_transactions").select("*").eq("team_id", str(team_id))
    if transaction_type:
        query = query.eq("transaction_type", transaction_type)
    return query.order("created_at", desc=True).limit(limit).execute().data or []
