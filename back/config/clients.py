#####################################################
#                                                   #
#               클라이언트 의존성 정의                 #
#                                                   #
#####################################################

from payment.gateway import StripePaymentGateway
from config import settings


# 모든 클라이언트 인스턴스를 담을 컨테이너 클래스
class ClientContainer:
    def __init__(self):
        self.payment_gateway = None


# 클라이언트들을 초기화하는 함수
def initialize_clients() -> ClientContainer:
    container = ClientContainer()
    container.payment_gateway = StripePaymentGateway(
        api_key=settings.STRIPE_SECRET_KEY,
        currency=settings.STRIPE_CURRENCY,
    )
    return container
