"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager
from typing import Optional, Tuple

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import auth as auth_routes
from api.routes import vlogs as vlog_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from application.ports.view_cache import CacheUnavailableError, ViewDedupCache
from application.ports.rate_limiter import RateLimiter
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.logging_config import get_logger, configure_logging
from infrastructure.adapters.notifications import CeleryNotificationAdapter
from infrastructure.adapters.rate_limiter import InMemoryRateLimiter, RedisRateLimiter
from infrastructure.adapters.view_cache import InMemoryViewDedupCache, RedisViewDedupCache
from infrastructure.database import create_tables, engine
from infrastructure.external.cache import RedisClient, create_redis_client
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


# 初始化日志：在入口处显式配置，避免模块导入时的副作用
configure_logging()
logger = get_logger(__name__)


async def _connect_redis() -> Optional[RedisClient]:
    if not settings.redis.url:
        return None
    try:
        return await create_redis_client()
    except CacheUnavailableError as exc:
        logger.error("redis_init_failed", error=str(exc))
        return None


def _select_view_cache(redis_client: Optional[RedisClient]) -> Optional[ViewDedupCache]:
    """
    按 VIEW_CACHE_BACKEND 选择去重缓存

    - memory: 进程内缓存
    - redis: 必须使用 Redis；不可用时返回 None，浏览计数进入降级模式
    - auto: 有 Redis 用 Redis，否则退回进程内缓存
    """
    backend = settings.VIEW_CACHE_BACKEND
    if backend == "memory":
        return InMemoryViewDedupCache()
    if redis_client is not None:
        return RedisViewDedupCache(redis_client)
    if backend == "redis":
        logger.warning("view_cache_redis_missing", message="Redis unavailable, view counting runs degraded")
        return None
    return InMemoryViewDedupCache()


def _select_rate_limiter(redis_client: Optional[RedisClient]) -> RateLimiter:
    if redis_client is not None:
        return RedisRateLimiter(redis_client)
    return InMemoryRateLimiter()


def build_state(redis_client: Optional[RedisClient]) -> Tuple[Optional[ViewDedupCache], RateLimiter]:
    return _select_view_cache(redis_client), _select_rate_limiter(redis_client)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理：所有共享资源挂在 app.state 上"""
    # 启动时创建数据库表（仅开发环境）。生产应使用 Alembic 迁移
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")
    else:
        logger.info(
            "database_migrations_required",
            message="No auto-create outside debug, use Alembic migrations (alembic upgrade head)"
        )

    redis_client = await _connect_redis()
    view_cache, rate_limiter = build_state(redis_client)

    app.state.redis = redis_client
    app.state.view_cache = view_cache
    app.state.rate_limiter = rate_limiter
    app.state.uow_factory = SQLAlchemyUnitOfWork
    app.state.notifier = CeleryNotificationAdapter()
    logger.info(
        "application_started",
        view_cache=getattr(view_cache, "backend", None),
        rate_limiter=type(rate_limiter).__name__,
    )

    yield

    if redis_client is not None:
        await redis_client.close()
        logger.info("redis_client_closed")
    await engine.dispose()
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="VlogSphere 会话轮转与浏览计数服务",
)

# 添加中间件（注意顺序：从下往上执行）
# 1. 日志中间件（依赖request_id）
app.add_middleware(LoggingMiddleware)

# 2. Request ID中间件（最先执行，为后续中间件提供request_id）
app.add_middleware(RequestIDMiddleware)

# 3. CORS中间件（携带 Cookie 需要 allow_credentials）
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
app.include_router(auth_routes.router, prefix="/api/v1")
app.include_router(vlog_routes.router, prefix="/api/v1")


# 根路径
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
        message=f"Welcome to {settings.PROJECT_NAME}"
    )


# 健康检查
@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查端点"""
    return success_response(data={"status": "healthy"}, message="OK")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
