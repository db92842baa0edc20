"""
API依赖项 - 认证、授权与服务装配
"""
from dataclasses import dataclass
from typing import Callable, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from application.ports.payment_gateway import PaymentGateway
from application.services.checkout_service import CheckoutApplicationService
from application.services.payout_service import PayoutApplicationService
from application.services.policy import SettlementPolicy
from application.services.settlement_service import SettlementApplicationService
from core.config import settings
from core.exceptions import ForbiddenException, UnauthorizedException
from core.logging_config import get_logger
from infrastructure.external import payments as payment_clients
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


logger = get_logger(__name__)

http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)

_gateway: Optional[PaymentGateway] = None


@dataclass(frozen=True)
class CurrentUser:
    """访问令牌中的身份声明"""
    id: str
    is_admin: bool = False


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> CurrentUser:
    """解析 Bearer 令牌（HS256，sub 为用户ID）"""
    if credentials is None or not credentials.credentials:
        raise UnauthorizedException("Authentication credentials were not provided")
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedException("Token has expired")
    except jwt.PyJWTError as e:
        logger.warning("invalid_access_token", error=str(e))
        raise UnauthorizedException("Invalid authentication credentials")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedException("Invalid authentication credentials")
    return CurrentUser(id=str(user_id), is_admin=bool(payload.get("is_superuser", False)))


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise ForbiddenException()
    return user


def get_uow_factory() -> Callable[..., SQLAlchemyUnitOfWork]:
    return SQLAlchemyUnitOfWork


def get_payment_gateway() -> PaymentGateway:
    """进程级网关客户端（复用 httpx 连接池），首次使用时创建"""
    global _gateway
    if _gateway is None:
        _gateway = payment_clients.get_payment_gateway()
    return _gateway


async def close_payment_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.aclose()
        _gateway = None


def get_settlement_policy() -> SettlementPolicy:
    return SettlementPolicy.from_settings()


def get_checkout_service(
    uow_factory=Depends(get_uow_factory),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    policy: SettlementPolicy = Depends(get_settlement_policy),
) -> CheckoutApplicationService:
    return CheckoutApplicationService(uow_factory=uow_factory, gateway=gateway, policy=policy)


def get_settlement_service(
    uow_factory=Depends(get_uow_factory),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    policy: SettlementPolicy = Depends(get_settlement_policy),
) -> SettlementApplicationService:
    return SettlementApplicationService(uow_factory=uow_factory, gateway=gateway, policy=policy)


def get_payout_service(
    uow_factory=Depends(get_uow_factory),
    policy: SettlementPolicy = Depends(get_settlement_policy),
) -> PayoutApplicationService:
    return PayoutApplicationService(uow_factory=uow_factory, max_retries=policy.max_apply_retries)
