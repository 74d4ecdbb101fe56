"""
ParkSpot 主应用入口
停车位预订：可用性、计价、优惠、预订提交、争议与退款
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.config import settings
from app.database import configure_database, dispose_db, init_db
from app.routers import locations, prices, promotions, quotes, reservations, disputes, refunds, audit_logs
from core.notification import LoggingChannel, NotificationDispatcher

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理

    启动时绑定数据库并建表、创建通知分发器；关闭时释放连接池
    """
    engine = configure_database()
    init_db(engine)
    app.state.notifier = NotificationDispatcher([LoggingChannel()])
    logger.info(f"{settings.APP_NAME} started")

    yield

    dispose_db()
    logger.info(f"{settings.APP_NAME} stopped")


# 创建应用
app = FastAPI(
    title=f"{settings.APP_NAME} - 停车位预订引擎",
    description="停车位容量与计价引擎",
    version="1.0.0",
    lifespan=lifespan
)

# CORS 配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 生产环境应限制具体域名
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(locations.router)
app.include_router(prices.router)
app.include_router(promotions.router)
app.include_router(quotes.router)
app.include_router(reservations.router)
app.include_router(disputes.router)
app.include_router(refunds.router)
app.include_router(audit_logs.router)


@app.get("/")
def root():
    """根路径"""
    return {
        "name": settings.APP_NAME,
        "version": "1.0.0",
        "description": "停车位容量与计价引擎"
    }


@app.get("/health")
def health_check():
    """健康检查"""
    return {"status": "healthy"}
