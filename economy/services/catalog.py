"""
Catalog Service - products, bots and API plans managed by the back office.

NO DICTIONARIES - All operations use strongly typed domain models.
"""

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from economy.config import settings
from economy.db.models import ApiPlan, Product, TelegramBot
from economy.exceptions import DuplicateResourceError, ResourceNotFoundError
from economy.models.domain import ApiPlanData, BotData, ProductData
from economy.services.ledger import to_money

logger = get_logger(__name__)


def product_to_domain(product: Product) -> ProductData:
    return ProductData(
        product_id=product.id,
        title=product.title,
        product_type=product.product_type,
        category=product.category,
        description=product.description,
        is_free=product.is_free,
        coin_price=product.coin_price,
        unlock_by_ads=product.unlock_by_ads,
        ad_credits_required=product.ad_credits_required,
        is_active=product.is_active,
    )


def bot_to_domain(bot: TelegramBot) -> BotData:
    return BotData(
        bot_id=bot.id,
        name=bot.name,
        description=bot.description,
        price=to_money(bot.price),
        webhook_url=bot.webhook_url,
        is_active=bot.is_active,
        total_sales=bot.total_sales,
    )


def plan_to_domain(plan: ApiPlan) -> ApiPlanData:
    return ApiPlanData(
        plan_id=plan.id,
        name=plan.name,
        price=to_money(plan.price),
        requests=plan.requests,
        validity_days=plan.validity_days,
        is_active=plan.is_active,
    )


class CatalogService:
    """Create, update and list catalog entries. Public listings show active entries only."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ========================================================================
    # Products
    # ========================================================================

    async def create_product(
        self,
        product_id: str,
        title: str,
        product_type: str = "other",
        category: str = "general",
        description: str = "",
        is_free: bool = False,
        coin_price: int = 0,
        unlock_by_ads: bool = False,
        ad_credits_required: int = 0,
        is_active: bool = True,
    ) -> ProductData:
        product = Product(
            id=product_id,
            title=title,
            product_type=product_type,
            category=category,
            description=description,
            is_free=is_free,
            coin_price=coin_price,
            unlock_by_ads=unlock_by_ads,
            ad_credits_required=ad_credits_required,
            is_active=is_active,
        )
        await self._insert(product, "Product", product_id)
        logger.info("product_created", product_id=product_id, coin_price=coin_price)
        return product_to_domain(product)

    async def update_product(
        self,
        product_id: str,
        title: str | None = None,
        description: str | None = None,
        is_free: bool | None = None,
        coin_price: int | None = None,
        unlock_by_ads: bool | None = None,
        ad_credits_required: int | None = None,
        is_active: bool | None = None,
    ) -> ProductData:
        product = await self.session.get(Product, product_id, with_for_update=True)
        if product is None:
            raise ResourceNotFoundError("Product", product_id)
        if title is not None:
            product.title = title
        if description is not None:
            product.description = description
        if is_free is not None:
            product.is_free = is_free
        if coin_price is not None:
            product.coin_price = coin_price
        if unlock_by_ads is not None:
            product.unlock_by_ads = unlock_by_ads
        if ad_credits_required is not None:
            product.ad_credits_required = ad_credits_required
        if is_active is not None:
            product.is_active = is_active
        await self.session.flush()
        await self.session.commit()
        logger.info("product_updated", product_id=product_id)
        return product_to_domain(product)

    async def list_products(self, active_only: bool = True) -> list[ProductData]:
        stmt = select(Product).order_by(Product.created_at.desc())
        if active_only:
            stmt = stmt.where(Product.is_active.is_(True))
        result = await self.session.execute(stmt)
        return [product_to_domain(product) for product in result.scalars().all()]

    # ========================================================================
    # Bots
    # ========================================================================

    async def create_bot(
        self,
        bot_id: str,
        name: str,
        price: Decimal,
        description: str = "",
        webhook_url: str | None = None,
        is_active: bool = True,
    ) -> BotData:
        bot = TelegramBot(
            id=bot_id,
            name=name,
            description=description,
            price=to_money(price),
            webhook_url=webhook_url,
            is_active=is_active,
            total_sales=0,
        )
        await self._insert(bot, "Bot", bot_id)
        logger.info("bot_created", bot_id=bot_id, price=str(price))
        return bot_to_domain(bot)

    async def update_bot(
        self,
        bot_id: str,
        name: str | None = None,
        description: str | None = None,
        price: Decimal | None = None,
        webhook_url: str | None = None,
        is_active: bool | None = None,
    ) -> BotData:
        bot = await self.session.get(TelegramBot, bot_id, with_for_update=True)
        if bot is None:
            raise ResourceNotFoundError("Bot", bot_id)
        if name is not None:
            bot.name = name
        if description is not None:
            bot.description = description
        if price is not None:
            bot.price = to_money(price)
        if webhook_url is not None:
            bot.webhook_url = webhook_url or None
        if is_active is not None:
            bot.is_active = is_active
        await self.session.flush()
        await self.session.commit()
        logger.info("bot_updated", bot_id=bot_id)
        return bot_to_domain(bot)

    async def list_bots(self, active_only: bool = True) -> list[BotData]:
        stmt = select(TelegramBot).order_by(TelegramBot.created_at.desc())
        if active_only:
            stmt = stmt.where(TelegramBot.is_active.is_(True))
        result = await self.session.execute(stmt)
        return [bot_to_domain(bot) for bot in result.scalars().all()]

    # ========================================================================
    # API plans
    # ========================================================================

    async def create_plan(
        self,
        plan_id: str,
        name: str,
        price: Decimal,
        requests: int,
        validity_days: int | None = None,
        is_active: bool = True,
    ) -> ApiPlanData:
        plan = ApiPlan(
            id=plan_id,
            name=name,
            price=to_money(price),
            requests=requests,
            validity_days=validity_days or settings.default_plan_validity_days,
            is_active=is_active,
        )
        await self._insert(plan, "API plan", plan_id)
        logger.info("api_plan_created", plan_id=plan_id, price=str(price), requests=requests)
        return plan_to_domain(plan)

    async def update_plan(
        self,
        plan_id: str,
        name: str | None = None,
        price: Decimal | None = None,
        requests: int | None = None,
        validity_days: int | None = None,
        is_active: bool | None = None,
    ) -> ApiPlanData:
        """Update a plan. Existing purchases keep the terms they were bought with."""
        plan = await self.session.get(ApiPlan, plan_id, with_for_update=True)
        if plan is None:
            raise ResourceNotFoundError("API plan", plan_id)
        if name is not None:
            plan.name = name
        if price is not None:
            plan.price = to_money(price)
        if requests is not None:
            plan.requests = requests
        if validity_days is not None:
            plan.validity_days = validity_days
        if is_active is not None:
            plan.is_active = is_active
        await self.session.flush()
        await self.session.commit()
        logger.info("api_plan_updated", plan_id=plan_id)
        return plan_to_domain(plan)

    async def list_plans(self, active_only: bool = True) -> list[ApiPlanData]:
        stmt = select(ApiPlan).order_by(ApiPlan.price.asc())
        if active_only:
            stmt = stmt.where(ApiPlan.is_active.is_(True))
        result = await self.session.execute(stmt)
        return [plan_to_domain(plan) for plan in result.scalars().all()]

    async def _insert(self, row: Product | TelegramBot | ApiPlan, kind: str, row_id: str) -> None:
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            raise DuplicateResourceError(kind, row_id) from e
        await self.session.commit()
