"""Pending order lifecycle: trigger on target price, expire, execute."""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from datetime import datetime
from typing import TYPE_CHECKING, Awaitable, Callable

from optiondesk.config.constants import PendingStatus, TradeSide
from optiondesk.data.models import ExecutionResult, PendingOrder, utcnow

if TYPE_CHECKING:
    from optiondesk.data.models import PriceTick
    from optiondesk.data.repository import Repository

logger = logging.getLogger(__name__)

Executor = Callable[[PendingOrder], Awaitable[ExecutionResult]]

_ORDER_SIDES = {TradeSide.BUY, TradeSide.SELL}


class OrderValidationError(ValueError):
    """Raised when a pending order cannot be created."""


class PendingOrderManager:
    """Watches price ticks against user-defined target prices.

    A pending BUY fires once the price drops to its target, a pending
    SELL once the price rises to it. Fired orders are executed after a
    short fixed delay through *executor*. Orders only ever move forward::

        pending → triggered → executed
        pending → triggered → cancelled   (execution failed)
        pending → triggered (queued) → executed | cancelled   (broker offline)
        pending → expired
        pending → cancelled

    Parameters
    ----------
    repository:
        Persistence for the order list; rewritten on every change.
    executor:
        Coroutine that places the trade for a triggered order.
    execution_delay:
        Seconds between triggering and execution.
    clock:
        Returns the current UTC time. Injected by tests.
    """

    def __init__(
        self,
        repository: "Repository",
        executor: Executor,
        execution_delay: float = 0.1,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repo = repository
        self._executor = executor
        self._delay = execution_delay
        self._clock = clock
        self._orders: list[PendingOrder] = []
        self._in_flight: set[asyncio.Task] = set()  # type: ignore[type-arg]

    async def load(self) -> list[PendingOrder]:
        """Restore the order list from storage.

        Orders stored as triggered were interrupted before their trade
        ran (the broker queue is not persisted) and are cancelled.
        """
        self._orders = await self._repo.get_pending_orders()
        interrupted = [o for o in self._orders if o.status == PendingStatus.TRIGGERED]
        for order in interrupted:
            order.status = PendingStatus.CANCELLED
            order.note = "Interrupted before execution"
            logger.warning("Pending order %s was interrupted, cancelling", order.id)
        if interrupted:
            await self._persist()
        logger.info("Loaded %d pending orders", len(self._orders))
        return list(self._orders)

    async def add_order(
        self,
        symbol: str,
        side: TradeSide | str,
        amount: float,
        target_price: float | None,
        timeframe: str = "1m",
        stop_loss: float | None = None,
        take_profit: float | None = None,
        expiry_time: datetime | None = None,
    ) -> PendingOrder:
        """Create and persist a new pending order (newest first)."""
        if not symbol:
            raise OrderValidationError("Symbol is required")
        try:
            side = TradeSide(side)
        except ValueError:
            raise OrderValidationError(f"Invalid side: {side}") from None
        if side not in _ORDER_SIDES:
            raise OrderValidationError("Pending orders must be BUY or SELL")
        if target_price is None or target_price <= 0:
            raise OrderValidationError("Please enter a target price")
        if amount is None or amount < 1:
            raise OrderValidationError("Amount must be at least $1")
        if expiry_time is not None and expiry_time.tzinfo is None:
            raise OrderValidationError("Expiry time must be timezone-aware")

        order = PendingOrder(
            id=_order_id(),
            symbol=symbol,
            side=side,
            amount=float(amount),
            target_price=float(target_price),
            timeframe=timeframe,
            stop_loss=stop_loss,
            take_profit=take_profit,
            expiry_time=expiry_time,
            created_at=self._clock(),
        )
        self._orders.insert(0, order)
        await self._persist()

        logger.info(
            "Pending %s %s %.2f @ %.5f (id=%s)",
            order.side.value,
            order.symbol,
            order.amount,
            order.target_price,
            order.id,
        )
        return order

    async def cancel(self, order_id: str) -> PendingOrder | None:
        """Cancel a pending order. Returns ``None`` if unknown or already final."""
        order = self.get(order_id)
        if order is None or order.status != PendingStatus.PENDING:
            return None
        order.status = PendingStatus.CANCELLED
        await self._persist()
        logger.info("Cancelled pending order %s", order_id)
        return order

    async def evaluate(self, tick: "PriceTick") -> list[PendingOrder]:
        """Check every pending order of the tick's symbol.

        Returns the orders whose status changed. A target hit wins over
        expiry when both hold on the same tick.
        """
        now = self._clock()
        changed: list[PendingOrder] = []

        for order in self._orders:
            if order.status != PendingStatus.PENDING or order.symbol != tick.symbol:
                continue

            if self.target_reached(order, tick.price):
                order.status = PendingStatus.TRIGGERED
                changed.append(order)
                logger.info(
                    "Pending order %s triggered at %.5f (target %.5f)",
                    order.id,
                    tick.price,
                    order.target_price,
                )
                self._schedule_execution(order)
            elif order.expiry_time is not None and now > order.expiry_time:
                order.status = PendingStatus.EXPIRED
                changed.append(order)
                logger.info("Pending order %s expired", order.id)

        if changed:
            await self._persist()
        return changed

    @staticmethod
    def target_reached(order: PendingOrder, price: float) -> bool:
        if order.side.is_bullish:
            return price <= order.target_price
        return price >= order.target_price

    def get(self, order_id: str) -> PendingOrder | None:
        for order in self._orders:
            if order.id == order_id:
                return order
        return None

    def list_orders(self, status: PendingStatus | None = None) -> list[PendingOrder]:
        if status is None:
            return list(self._orders)
        return [o for o in self._orders if o.status == status]

    def summary(self) -> dict[str, int]:
        """Number of orders per status."""
        counts = {status.value: 0 for status in PendingStatus}
        for order in self._orders:
            counts[order.status.value] += 1
        return counts

    async def wait_for_executions(self) -> None:
        """Block until every delayed execution has finished."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def _schedule_execution(self, order: PendingOrder) -> None:
        task = asyncio.create_task(self._execute_later(order))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _execute_later(self, order: PendingOrder) -> None:
        await asyncio.sleep(self._delay)
        try:
            result = await self._executor(order)
        except Exception as e:
            logger.exception("Execution of pending order %s raised", order.id)
            result = ExecutionResult(success=False, message=str(e))

        if result.queued:
            order.note = result.message
            logger.info("Pending order %s waiting in the broker queue", order.id)
            await self._persist()
            return
        await self._apply_result(order, result)

    async def resolve(self, order_id: str, result: ExecutionResult) -> PendingOrder | None:
        """Settle a triggered order whose trade waited in the broker queue."""
        order = self.get(order_id)
        if order is None or order.status != PendingStatus.TRIGGERED:
            return None
        await self._apply_result(order, result)
        return order

    async def _apply_result(self, order: PendingOrder, result: ExecutionResult) -> None:
        if result.success:
            order.status = PendingStatus.EXECUTED
            order.executed_at = self._clock()
            order.note = ""
            logger.info("Pending order %s executed", order.id)
        else:
            order.status = PendingStatus.CANCELLED
            order.note = result.message
            logger.warning("Pending order %s not executed: %s", order.id, result.message)
        await self._persist()

    async def _persist(self) -> None:
        if not await self._repo.save_pending_orders(self._orders):
            logger.warning("Pending orders could not be saved")


def _order_id() -> str:
    return f"pending_{int(time.time() * 1000)}_{secrets.token_hex(3)}"
