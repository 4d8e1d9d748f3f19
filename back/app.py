#####################################################
#                                                   #
#                앱 상태 정의 및 관리                  #
#                                                   #
#####################################################

from fastapi import APIRouter, FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from logs.logging_util import LoggerSingleton
from contextlib import asynccontextmanager
from config.clients import initialize_clients
from config.exception import register_exception_handlers
from database import Base, engine
from availability.router import router as availability_router
from appointment.router import router as appointment_router
from payment.router import router as payment_router
from admin.router import router as admin_router
import models.user  # noqa: F401  (매퍼 등록)
import models.availability  # noqa: F401
import models.appointment  # noqa: F401
import models.payment  # noqa: F401
import logging

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"\n{'=' * 80}\n"
        f"| {' ' * 27} 🗓️ SCHEDULING ENGINE START 🗓️ {' ' * 18} |\n"
        f"{'=' * 80}\n"
    )

    Base.metadata.create_all(bind=engine)
    logger.info(
        f"\n{'=' * 80}\n"
        f"| {' ' * 29} 🛢️ DATABASE INITIATED 🛢️ {' ' * 23} |\n"
        f"{'=' * 80}\n"
    )

    # 앱 상태에 클라이언트 컨테이너를 저장할 객체 초기화
    app.state.client_container = initialize_clients()

    yield
    # 종료시 클린업 작업은 여기서
    engine.dispose()
    logger.info(
        f"\n{'=' * 80}\n"
        f"| {' ' * 31} 🛑 ENGINE SHUTDOWN 🛑 {' ' * 24} |\n"
        f"{'=' * 80}\n"
    )

# FastAPI 앱 인스턴스 생성
app = FastAPI(lifespan=lifespan)

# Prometheus FastAPI 미들웨어 설정
Instrumentator().instrument(app).expose(app)

# 전역 예외 핸들러
register_exception_handlers(app)

# 라우터 등록 (/api 하위)
api_router = APIRouter(prefix="/api")
routers = [availability_router, appointment_router, payment_router, admin_router]

for router in routers:
    api_router.include_router(router)

app.include_router(api_router)

# 로거 설정
logger = LoggerSingleton.get_logger(logger_name="app", level=logging.INFO)
