#####################################################
#                                                   #
#                 환경 설정 값 정의                    #
#                                                   #
#####################################################

import os
from zoneinfo import ZoneInfo
from dotenv import load_dotenv

load_dotenv()

# 예약 시간 판단 기준 타임존 (요일/시각 비교, 오늘 여부 계산)
SCHEDULING_TIMEZONE = ZoneInfo(os.getenv("SCHEDULING_TIMEZONE", "UTC"))

# 결제되지 않은 PENDING 예약 자동 만료 시간 (분)
PENDING_EXPIRY_MINUTES = int(os.getenv("PENDING_EXPIRY_MINUTES", "15"))

# 내담자 1인당 동시 PENDING 예약 한도
MAX_PENDING_APPOINTMENTS = int(os.getenv("MAX_PENDING_APPOINTMENTS", "3"))

# 입장 가능 구간: 시작 5분 전 ~ 종료 15분 후
JOIN_WINDOW_BEFORE_MINUTES = int(os.getenv("JOIN_WINDOW_BEFORE_MINUTES", "5"))
JOIN_WINDOW_AFTER_MINUTES = int(os.getenv("JOIN_WINDOW_AFTER_MINUTES", "15"))

# 세션 길이 제한 (분)
MIN_SESSION_MINUTES = 15
MAX_SESSION_MINUTES = 180

# Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "usd")
