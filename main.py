"""
FastAPI应用主入口 - 订单/支付/结算核心
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from api.dependencies import close_payment_gateway
from api.middleware import LoggingMiddleware, RequestIDMiddleware
from api.routes import checkout as checkout_routes
from api.routes import payouts as payouts_routes
from api.routes import webhooks as webhooks_routes
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import error_response, success_response
from core.settings import payment_settings
from infrastructure.database import create_tables, engine
from shared.codes import BusinessCode


# 初始化日志：在入口处显式配置，避免模块导入时的副作用
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 启动时创建数据库表（仅开发环境）。生产应使用 Alembic 迁移
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")
    else:
        logger.info(
            "database_migrations_required",
            message="No auto-create in production, use Alembic migrations (alembic upgrade head)"
        )

    yield

    # 关闭网关连接池与数据库连接
    await close_payment_gateway()
    await engine.dispose()
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="旅游市场订单、支付与卖家结算核心",
)

# 添加中间件（注意顺序：从下往上执行）
# 1. Request ID中间件（最先执行，为后续中间件提供request_id）
app.add_middleware(RequestIDMiddleware)

# 2. 日志中间件（依赖request_id）
app.add_middleware(LoggingMiddleware)

# 3. CORS中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册全局异常处理器
register_exception_handlers(app)


# 注册路由
app.include_router(checkout_routes.router, prefix="/api/v1")
app.include_router(webhooks_routes.router, prefix="/api/v1")
app.include_router(payouts_routes.router, prefix="/api/v1")


@app.get("/", tags=["Root"])
async def root():
    """API根路径"""
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/docs",
            "redoc": "/redoc"
        },
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查：数据库可连通即视为健康（网关按需连接，不在此探测）"""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("health_check_database_failed", error=str(exc))
        return JSONResponse(
            status_code=503,
            content=error_response(
                code=BusinessCode.SERVICE_UNAVAILABLE, message="Database unreachable", error_type="ServiceUnavailable"
            ).model_dump(mode="json"),
        )
    return success_response(
        data={"status": "healthy", "database": "ok", "paymentProvider": payment_settings.default_provider}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
