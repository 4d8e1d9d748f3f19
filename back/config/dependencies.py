#####################################################
#                                                   #
#                의존성 주입 함수 정의                 #
#                                                   #
#####################################################

from datetime import datetime, timezone
from fastapi import Request
from payment.gateway import PaymentGateway

##### 클라이언트 의존성 주입 함수 정의 #####
# app.py lifespan 에서 초기화된 클라이언트를 반환
# Depends를 위한 헬퍼 함수

# stripe
def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.client_container.payment_gateway


##### 시계 #####
# 서비스 계층은 현재 시각을 직접 읽지 않고 인자로 받음 (테스트에서 override)
def get_now() -> datetime:
    return datetime.now(timezone.utc)
